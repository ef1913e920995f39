from typing import Any, List, Optional

import httpx
import numpy as np

from logger import get_logger
from utils.common import canonical_json

logger = get_logger(__name__)


class EmbeddingDimensionError(ValueError):
    pass


class Embedding:
    """Client for an external text-embedding endpoint.

    The endpoint takes {"inputs": [...]} and answers with one vector per
    input. Structured values are serialized with sorted keys before they are
    sent, so logically equal records always embed identically.
    """

    def __init__(
        self,
        api_url: str,
        dimension: Optional[int] = None,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_url = api_url
        self.dimension = dimension
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)
        logger.info(f"Initialized Embedding with API URL: {self.api_url}")

    @staticmethod
    def to_text(value: Any) -> str:
        if isinstance(value, str):
            return value
        return canonical_json(value)

    async def embed_texts(self, texts: List[str]) -> List[List[float]]:
        """Embed a list of texts using the external API."""
        if not texts:
            return []
        try:
            response = await self.client.post(self.api_url, json={"inputs": texts})
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as e:
            logger.error(f"Error calling embedding API: {e}")
            raise
        return self._validate(self._unwrap(body), len(texts))

    async def embed(self, value: Any) -> List[float]:
        """Embed one text or structured record."""
        vectors = await self.embed_texts([self.to_text(value)])
        return vectors[0]

    @staticmethod
    def _unwrap(body: Any) -> Any:
        # Some servers wrap the vectors: {"embeddings": [...]} or {"data": [{"embedding": ...}]}
        if isinstance(body, dict):
            if "embeddings" in body:
                return body["embeddings"]
            if "data" in body:
                return [item["embedding"] for item in body["data"]]
        return body

    def _validate(self, vectors: Any, expected: int) -> List[List[float]]:
        try:
            matrix = np.asarray(vectors, dtype=float)
        except (TypeError, ValueError) as e:
            raise ValueError(f"Embedding API returned malformed vectors: {e}") from e

        if matrix.ndim == 1 and expected == 1:
            matrix = matrix.reshape(1, -1)
        if matrix.ndim != 2 or matrix.shape[0] != expected:
            raise ValueError(
                f"Embedding API returned shape {matrix.shape} for {expected} inputs"
            )
        if self.dimension is not None and matrix.shape[1] != self.dimension:
            raise EmbeddingDimensionError(
                f"Expected {self.dimension}-dimensional vectors, got {matrix.shape[1]}"
            )
        if not np.isfinite(matrix).all():
            raise ValueError("Embedding API returned non-finite values")
        return matrix.tolist()

    async def close(self):
        if self._owns_client:
            await self.client.aclose()
