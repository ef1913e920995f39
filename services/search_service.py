from typing import Any, Dict, List, Optional

from db.qdrant_db import QdrantDB
from errors import ValidationError
from logger import get_logger
from utils.common import timing_decorator
from utils.embedding import Embedding
from utils.response_format import RankedResult

logger = get_logger(__name__)

DEFAULT_TOP_K = 5


def check_top_k(top_k: Any) -> int:
    if top_k is None:
        return DEFAULT_TOP_K
    if isinstance(top_k, bool) or not isinstance(top_k, int) or top_k <= 0:
        raise ValidationError(
            "top_k must be a positive integer",
            details=[{"field": "top_k", "message": f"got {top_k!r}"}],
        )
    return top_k


class SearchService:
    """Nearest-neighbour lookup over stored embeddings."""

    def __init__(self, embedding: Embedding, vector_db: QdrantDB):
        self.embedding = embedding
        self.vector_db = vector_db

    @timing_decorator
    async def search(
        self,
        query: Any,
        top_k: Optional[int] = DEFAULT_TOP_K,
        kind: str = "question",
        filters: Optional[Dict[str, Any]] = None,
    ) -> List[RankedResult]:
        """
        Finds the records most similar to query.

        Args:
            query: Free text or a structured record.
            top_k: Maximum number of results.
            kind: Which kind of point to search ("question" or "topic").
            filters: Extra payload equality filters, e.g. {"subject_id": ...}.

        Returns:
            Results by descending score; equal scores ordered by ref_id.
        """
        top_k = check_top_k(top_k)
        if query is None or (isinstance(query, str) and not query.strip()):
            raise ValidationError("Query cannot be empty")

        vector = await self.embedding.embed(query)
        hits = await self.vector_db.search_by_vector(
            vector, limit=top_k, filters={**(filters or {}), "kind": kind}
        )
        hits.sort(key=lambda hit: (-hit["score"], str(hit["payload"].get("ref_id", ""))))

        results = [
            RankedResult(
                ref_id=str(hit["payload"].get("ref_id", hit["id"])),
                kind=hit["payload"].get("kind", kind),
                score=hit["score"],
                rank=rank,
                payload=hit["payload"],
            )
            for rank, hit in enumerate(hits[:top_k], start=1)
        ]
        logger.debug(f"Search for {kind} returned {len(results)} result(s)")
        return results
