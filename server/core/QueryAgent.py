import re

from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.clients.vector.VectorStoreInterface import VectorStoreInterface
from shared.helper.constants import DEFAULT_HYBRID_ALPHA, DEFAULT_RETRIEVAL_STRATEGY, RETRIEVAL_STRATEGIES
from shared.models.search import ChunkRecord, QueryResult, ScoredChunk

_TERM_PATTERN = re.compile(r"\w+", re.UNICODE)

# hybrid retrieval re-ranks this many vector candidates per requested result
HYBRID_CANDIDATE_FACTOR = 3


def _terms(text: str) -> list[str]:
    """Lower-cased, de-duplicated word terms of a text in order of appearance."""
    seen: list[str] = []
    for term in _TERM_PATTERN.findall(text.lower()):
        if term not in seen:
            seen.append(term)
    return seen


def keyword_score(query_terms: list[str], text: str) -> float:
    """Fraction of query terms that occur in the text.

    Args:
        query_terms (list[str]): Terms of the query as returned by _terms().
        text (str): Chunk text.

    Returns:
        float: Score between 0.0 and 1.0.
    """
    if not query_terms:
        return 0.0
    chunk_terms = set(_TERM_PATTERN.findall(text.lower()))
    return sum(1 for term in query_terms if term in chunk_terms) / len(query_terms)


class QueryAgent:
    """Runs retrieval queries against the vector store of a single topic."""

    def __init__(
        self,
        store: VectorStoreInterface,
        embed_client: EmbedClientInterface,
        strategy: str = DEFAULT_RETRIEVAL_STRATEGY,
        alpha: float = DEFAULT_HYBRID_ALPHA,
    ) -> None:
        if strategy not in RETRIEVAL_STRATEGIES:
            raise ValueError(f"Unknown retrieval strategy '{strategy}'. Expected one of: {', '.join(RETRIEVAL_STRATEGIES)}")
        self._store = store
        self._embed_client = embed_client
        self.strategy = strategy
        self.alpha = min(max(alpha, 0.0), 1.0)

    ##########################################
    ################# CORE ###################
    ##########################################

    async def query(self, text: str, limit: int, model: str | None = None) -> QueryResult:
        """Retrieve the best matching chunks for a query.

        Args:
            text (str): The query text.
            limit (int): Maximum number of results.
            model (str | None): Embedding model for the query vector, the client's active model if None.

        Returns:
            QueryResult: Ranked chunks (highest score first) and the strategy used.
        """
        if self.strategy == "vector":
            results = await self._vector_search(text, limit, model)
        elif self.strategy == "keyword":
            results = await self._keyword_search(text, limit)
        else:
            results = await self._hybrid_search(text, limit, model)
        return QueryResult(results=results, total_results=len(results), strategy=self.strategy)

    async def _embed_query(self, text: str, model: str | None) -> list[float]:
        vectors = await self._embed_client.do_embed([text], model=model)
        return vectors[0]

    async def _vector_search(self, text: str, limit: int, model: str | None = None) -> list[ScoredChunk]:
        return await self._store.similarity_search(await self._embed_query(text, model), limit)

    async def _keyword_search(self, text: str, limit: int) -> list[ScoredChunk]:
        query_terms = _terms(text)
        chunks: list[ChunkRecord] = await self._store.scan()
        scored = [ScoredChunk(chunk=chunk, score=keyword_score(query_terms, chunk.text)) for chunk in chunks]
        scored = [item for item in scored if item.score > 0]
        scored.sort(key=lambda item: item.score, reverse=True)
        return scored[:limit]

    async def _hybrid_search(self, text: str, limit: int, model: str | None = None) -> list[ScoredChunk]:
        query_terms = _terms(text)
        candidates = await self._store.similarity_search(await self._embed_query(text, model), limit * HYBRID_CANDIDATE_FACTOR)
        rescored = [
            ScoredChunk(
                chunk=item.chunk,
                score=self.alpha * item.score + (1 - self.alpha) * keyword_score(query_terms, item.chunk.text),
            )
            for item in candidates
        ]
        rescored.sort(key=lambda item: item.score, reverse=True)
        return rescored[:limit]
