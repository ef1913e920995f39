import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from qdrant_client import AsyncQdrantClient
from qdrant_client.http import models
from qdrant_client.http.models import Distance, VectorParams

from errors import PersistenceError
from logger import get_logger

logger = get_logger(__name__)


def build_filter(filters: Optional[Dict[str, Any]] = None) -> Optional[models.Filter]:
    """Turns {"key": value} pairs into a Qdrant must-filter.

    List values match any of their items.
    """
    if not filters:
        return None

    conditions = []
    for key, value in filters.items():
        if value is None:
            continue
        if isinstance(value, (list, tuple, set)):
            match = models.MatchAny(any=list(value))
        else:
            match = models.MatchValue(value=value)
        conditions.append(models.FieldCondition(key=key, match=match))
    return models.Filter(must=conditions) if conditions else None


class QdrantDB:
    """Vector store keyed by (kind, ref_id).

    Every point carries ref_id and kind in its payload; the point id itself
    is derived from both, so writing the same record twice overwrites it.
    """

    def __init__(
        self,
        client: AsyncQdrantClient,
        collection_name: str,
        vector_size: int,
    ):
        self.client = client
        self.collection_name = collection_name
        self.vector_size = vector_size

    @classmethod
    def connect(
        cls,
        host: str,
        port: int,
        collection_name: str,
        vector_size: int,
        api_key: Optional[str] = None,
        prefer_grpc: bool = False,
    ) -> "QdrantDB":
        client = AsyncQdrantClient(
            url=f"{host}:{port}",
            api_key=api_key,
            prefer_grpc=prefer_grpc,
        )
        logger.info(f"Connected to Qdrant at {host}:{port} (gRPC: {prefer_grpc})")
        return cls(client, collection_name, vector_size)

    @staticmethod
    def point_id(kind: str, ref_id: str) -> str:
        return str(uuid.uuid5(uuid.NAMESPACE_URL, f"{kind}:{ref_id}"))

    async def create_collection(self, distance: Distance = Distance.COSINE):
        """Creates the collection unless it already exists."""
        try:
            if await self.client.collection_exists(self.collection_name):
                logger.info(f"Collection '{self.collection_name}' already exists.")
                return
            await self.client.create_collection(
                collection_name=self.collection_name,
                vectors_config=VectorParams(size=self.vector_size, distance=distance),
            )
            logger.info(f"Collection '{self.collection_name}' created successfully.")
        except Exception as e:
            logger.exception(f"Error creating collection '{self.collection_name}': {e}")
            raise PersistenceError(f"Could not create vector collection: {e}") from e

    async def create_payload_index(
        self,
        field_name: str,
        field_schema: models.PayloadSchemaType = models.PayloadSchemaType.KEYWORD,
    ):
        try:
            await self.client.create_payload_index(
                collection_name=self.collection_name,
                field_name=field_name,
                field_schema=field_schema,
            )
            logger.info(
                f"Index created for field '{field_name}' in collection '{self.collection_name}'."
            )
        except Exception as e:
            logger.exception(
                f"Error creating index for field '{field_name}' in '{self.collection_name}': {e}"
            )
            raise PersistenceError(f"Could not create payload index: {e}") from e

    def _point(
        self,
        kind: str,
        ref_id: str,
        vector: List[float],
        payload: Optional[Dict[str, Any]] = None,
    ) -> models.PointStruct:
        body = dict(payload or {})
        body.update(
            {
                "ref_id": ref_id,
                "kind": kind,
                "updated_at": datetime.now(timezone.utc).isoformat(),
            }
        )
        return models.PointStruct(
            id=self.point_id(kind, ref_id), vector=vector, payload=body
        )

    async def upsert_vector(
        self,
        kind: str,
        ref_id: str,
        vector: List[float],
        payload: Optional[Dict[str, Any]] = None,
    ):
        await self.upsert_vectors([(kind, ref_id, vector, payload)])

    async def upsert_vectors(self, items: Iterable[tuple]):
        """Upserts (kind, ref_id, vector, payload) tuples in one request."""
        points = [self._point(*item) for item in items]
        if not points:
            return
        try:
            await self.client.upsert(
                collection_name=self.collection_name, points=points, wait=True
            )
            logger.debug(f"Upserted {len(points)} points into '{self.collection_name}'")
        except Exception as e:
            logger.exception(f"Error upserting into '{self.collection_name}': {e}")
            raise PersistenceError(f"Vector write failed: {e}") from e

    async def delete_vector(self, kind: str, ref_id: str):
        """Deletes a point; deleting one that does not exist is a no-op."""
        await self.delete_vectors(kind, [ref_id])

    async def delete_vectors(self, kind: str, ref_ids: Iterable[str]):
        point_ids = [self.point_id(kind, ref_id) for ref_id in ref_ids]
        if not point_ids:
            return
        try:
            await self.client.delete(
                collection_name=self.collection_name,
                points_selector=models.PointIdsList(points=point_ids),
                wait=True,
            )
        except Exception as e:
            logger.exception(f"Error deleting {len(point_ids)} {kind} point(s): {e}")
            raise PersistenceError(f"Vector delete failed: {e}") from e

    async def search_by_vector(
        self,
        vector: List[float],
        limit: int = 5,
        filters: Optional[Dict[str, Any]] = None,
    ) -> List[Dict]:
        """Returns [{"id", "score", "payload"}] for the nearest points."""
        try:
            response = await self.client.query_points(
                collection_name=self.collection_name,
                query=vector,
                query_filter=build_filter(filters),
                limit=limit,
                with_payload=True,
            )
        except Exception as e:
            logger.exception(f"Error searching in '{self.collection_name}': {e}")
            raise PersistenceError(f"Vector search failed: {e}") from e

        return [
            {"id": hit.id, "score": hit.score, "payload": hit.payload or {}}
            for hit in response.points
        ]

    async def retrieve(
        self, kind: str, ref_ids: List[str], with_vectors: bool = False
    ) -> Dict[str, Any]:
        """Returns {ref_id: point} for the ref_ids that have a stored point."""
        if not ref_ids:
            return {}
        ids = {self.point_id(kind, ref_id): ref_id for ref_id in ref_ids}
        try:
            points = await self.client.retrieve(
                collection_name=self.collection_name,
                ids=list(ids),
                with_payload=True,
                with_vectors=with_vectors,
            )
        except Exception as e:
            logger.exception(f"Error retrieving points from '{self.collection_name}': {e}")
            raise PersistenceError(f"Vector read failed: {e}") from e
        return {ids[str(point.id)]: point for point in points}

    async def scroll_ref_ids(
        self,
        kind: str,
        filters: Optional[Dict[str, Any]] = None,
        batch_size: int = 256,
    ) -> List[str]:
        """Lists the ref_id of every point of the given kind matching filters."""
        ref_ids: List[str] = []
        offset = None
        try:
            while True:
                points, offset = await self.client.scroll(
                    collection_name=self.collection_name,
                    scroll_filter=build_filter({**(filters or {}), "kind": kind}),
                    limit=batch_size,
                    offset=offset,
                    with_payload=True,
                    with_vectors=False,
                )
                ref_ids.extend(point.payload["ref_id"] for point in points)
                if offset is None:
                    break
        except Exception as e:
            logger.exception(f"Error scrolling '{self.collection_name}': {e}")
            raise PersistenceError(f"Vector read failed: {e}") from e
        return ref_ids

    async def ping(self):
        await self.client.get_collections()

    async def close(self):
        """Closes the Qdrant client connection."""
        if self.client:
            await self.client.close()
            logger.info("Qdrant client connection closed.")
