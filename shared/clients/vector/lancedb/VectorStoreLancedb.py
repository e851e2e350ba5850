import asyncio
import logging
import os
import shutil
from datetime import timedelta
from typing import Any

from shared.clients.vector.VectorStoreInterface import VectorStoreInterface
from shared.models.search import ChunkRecord, ScoredChunk

# lancedb pulls in pyarrow; keep module import cheap for code paths that never touch a store
_lancedb = None


def _get_lancedb():
    global _lancedb
    if _lancedb is None:
        import lancedb

        _lancedb = lancedb
    return _lancedb


class VectorStoreLancedb(VectorStoreInterface):
    """LanceDB table per topic: <db_path>/<topic_id>.lance"""

    def __init__(self, db_path: str, table_name: str, logger: logging.Logger | None = None):
        super().__init__(db_path=db_path, table_name=table_name, logger=logger)
        self._db = None
        self._table = None

    ##########################################
    ################ GETTER ##################
    ##########################################

    def _get_native_suffix(self) -> str:
        return ".lance"

    @property
    def db(self):
        """Lazy database connection."""
        if self._db is None:
            os.makedirs(self.db_path, exist_ok=True)
            # see writes of other handles on the same directory immediately
            self._db = _get_lancedb().connect(self.db_path, read_consistency_interval=timedelta(0))
        return self._db

    def _open_table(self):
        if self._table is None:
            if self.table_name not in self.db.table_names():
                return None
            self._table = self.db.open_table(self.table_name)
        return self._table

    async def exists(self) -> bool:
        return await asyncio.to_thread(lambda: self._open_table() is not None)

    async def count(self) -> int:
        def _count() -> int:
            table = self._open_table()
            return table.count_rows() if table is not None else 0

        return await asyncio.to_thread(_count)

    ##########################################
    ################# WRITE ##################
    ##########################################

    async def add_chunks(self, chunks: list[ChunkRecord]) -> int:
        if not chunks:
            return 0
        records = [chunk.model_dump() for chunk in chunks]

        def _add() -> None:
            table = self._open_table()
            if table is None:
                self._table = self.db.create_table(self.table_name, data=records)
            else:
                table.add(records)

        await asyncio.to_thread(_add)
        self.logging.debug("Stored %d chunks in table '%s'", len(records), self.table_name)
        return len(records)

    async def delete_by_document_name(self, document_name: str) -> None:
        escaped = document_name.replace("'", "''")

        def _delete() -> None:
            table = self._open_table()
            if table is not None:
                table.delete(f"document_name = '{escaped}'")

        await asyncio.to_thread(_delete)

    async def drop(self) -> None:
        def _drop() -> None:
            if self.table_name in self.db.table_names():
                self.db.drop_table(self.table_name)
            self._table = None
            native_path = self.get_native_path()
            if os.path.isdir(native_path):
                shutil.rmtree(native_path, ignore_errors=True)

        await asyncio.to_thread(_drop)

    ##########################################
    ################# READ ###################
    ##########################################

    async def similarity_search(self, vector: list[float], k: int) -> list[ScoredChunk]:
        def _search() -> list[dict[str, Any]]:
            table = self._open_table()
            if table is None:
                return []
            return table.search(vector).distance_type("cosine").limit(k).to_list()

        rows = await asyncio.to_thread(_search)
        results = []
        for row in rows:
            distance = float(row.pop("_distance", 1.0))
            row.pop("vector", None)
            results.append(ScoredChunk(chunk=ChunkRecord(**row), score=1.0 - distance))
        return results

    async def scan(self, limit: int | None = None) -> list[ChunkRecord]:
        def _scan() -> list[dict[str, Any]]:
            table = self._open_table()
            if table is None:
                return []
            arrow_table = table.to_arrow() if limit is None else table.head(limit)
            return arrow_table.drop_columns(["vector"]).to_pylist()

        rows = await asyncio.to_thread(_scan)
        return [ChunkRecord(**row) for row in rows]

    ##########################################
    ############### LIFECYCLE ################
    ##########################################

    def close(self) -> None:
        self._table = None
        self._db = None
