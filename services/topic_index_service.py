from typing import Any, Dict, List

from db.qdrant_db import QdrantDB
from logger import get_logger
from services.taxonomy_service import TaxonomyService
from utils.common import canonical_json, timing_decorator
from utils.embedding import Embedding
from utils.mongo_util import localized_name

logger = get_logger(__name__)

TOPIC_KIND = "topic"
EMBED_BATCH_SIZE = 32


class TopicIndexService:
    """Embeds a subject's chapter/topic tree so it can be searched."""

    def __init__(
        self,
        taxonomy: TaxonomyService,
        embedding: Embedding,
        vector_db: QdrantDB,
        batch_size: int = EMBED_BATCH_SIZE,
    ):
        self.taxonomy = taxonomy
        self.embedding = embedding
        self.vector_db = vector_db
        self.batch_size = batch_size

    async def build_chunks(self, subject_id: str) -> List[Dict[str, Any]]:
        subject = await self.taxonomy.get_subject(subject_id)
        chunks = []
        for chapter in await self.taxonomy.list_chapters(subject_id):
            for topic in await self.taxonomy.list_topics(subject_id, chapter["_id"]):
                chunks.append(
                    {
                        "ref_id": str(topic["_id"]),
                        "chunk": {
                            "subject": localized_name(subject),
                            "chapter": localized_name(chapter),
                            "topic": localized_name(topic),
                            "aliases": topic.get("aliases") or {},
                        },
                    }
                )
        return chunks

    @timing_decorator
    async def index_subject(self, subject_id: str) -> int:
        """Replaces the subject's topic vectors. Returns how many were written.

        New points are written before stale ones are removed, so a failed
        run leaves the previous index searchable.
        """
        chunks = await self.build_chunks(subject_id)
        texts = [canonical_json(item["chunk"]) for item in chunks]

        for start in range(0, len(chunks), self.batch_size):
            batch = chunks[start:start + self.batch_size]
            batch_texts = texts[start:start + self.batch_size]
            vectors = await self.embedding.embed_texts(batch_texts)
            await self.vector_db.upsert_vectors(
                (
                    TOPIC_KIND,
                    item["ref_id"],
                    vector,
                    {"subject_id": subject_id, "chunk_text": text},
                )
                for item, text, vector in zip(batch, batch_texts, vectors)
            )

        current = {item["ref_id"] for item in chunks}
        indexed = await self.vector_db.scroll_ref_ids(
            TOPIC_KIND, filters={"subject_id": subject_id}
        )
        stale = [ref_id for ref_id in indexed if ref_id not in current]
        await self.vector_db.delete_vectors(TOPIC_KIND, stale)

        logger.info(
            f"Indexed {len(chunks)} topic(s) for subject {subject_id}, removed {len(stale)}"
        )
        return len(chunks)
