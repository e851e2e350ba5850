"""Plain-text extraction for the supported document types."""

import asyncio

import aiofiles
from bs4 import BeautifulSoup
from pypdf import PdfReader

from shared.models.document import map_file_type


class TextExtractor:
    """Reads a file and returns its text content.

    Markdown and plain text are read as-is, HTML is stripped to its visible
    text, PDF pages are extracted on a worker thread.
    """

    async def extract(self, file_path: str) -> str:
        """Extract the text of a file.

        Args:
            file_path (str): Path of the file to read.

        Returns:
            str: The text content, possibly empty.

        Raises:
            OSError: If the file cannot be read.
        """
        file_type = map_file_type(file_path)
        if file_type == "pdf":
            return await asyncio.to_thread(self._read_pdf, file_path)

        async with aiofiles.open(file_path, "r", encoding="utf-8", errors="ignore") as f:
            raw = await f.read()
        if file_type == "html":
            return self._strip_html(raw)
        return raw

    @staticmethod
    def _strip_html(html: str) -> str:
        soup = BeautifulSoup(html, "html.parser")
        for tag in soup(["script", "style", "noscript"]):
            tag.decompose()
        return soup.get_text(separator="\n", strip=True)

    @staticmethod
    def _read_pdf(file_path: str) -> str:
        reader = PdfReader(file_path)
        return "\n".join(page.extract_text() or "" for page in reader.pages)
