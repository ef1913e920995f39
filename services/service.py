"""Builds and owns every client and service the API uses."""

from typing import Dict, Optional

from config import Settings
from db.mongo_db import MongoDB
from db.qdrant_db import QdrantDB
from db.redis_db import RedisDB
from logger import get_logger
from services.extraction_service import ExtractionService
from services.llm_service import VisionLLMService
from services.question_service import QuestionService
from services.search_service import SearchService
from services.taxonomy_service import TaxonomyService
from services.topic_index_service import TopicIndexService
from utils.embedding import Embedding

logger = get_logger(__name__)

PAYLOAD_INDEXES = ("kind", "ref_id", "subject_id")


def build_llm_service(settings: Settings) -> VisionLLMService:
    if settings.llm_provider == "openrouter":
        from llm.llm_open_router import OpenRouterLLMService

        return OpenRouterLLMService(
            api_key=settings.openrouter_api_key,
            base_url=settings.openrouter_url,
            model=settings.openrouter_model,
        )
    if settings.llm_provider == "gemini":
        from llm.llm_gemini import GeminiLLMService

        return GeminiLLMService(
            api_key=settings.gemini_api_key, model_name=settings.gemini_model
        )
    raise ValueError(f"Unknown LLM_PROVIDER '{settings.llm_provider}'")


class ServiceContainer:
    def __init__(
        self,
        settings: Settings,
        questions,
        subjects,
        chapters,
        topics,
        vector_db: QdrantDB,
        embedding: Embedding,
        llm_service: VisionLLMService,
        publisher: Optional[RedisDB] = None,
        mongo: Optional[MongoDB] = None,
    ):
        self.settings = settings
        self.mongo = mongo
        self.vector_db = vector_db
        self.embedding = embedding
        self.llm_service = llm_service
        self.publisher = publisher

        self.taxonomy = TaxonomyService(subjects, chapters, topics)
        self.extraction = ExtractionService(llm_service, timeout=settings.extraction_timeout)
        self.search = SearchService(embedding, vector_db)
        self.questions = QuestionService(
            questions,
            self.taxonomy,
            embedding,
            vector_db,
            self.search,
            publisher=publisher,
        )
        self.topic_index = TopicIndexService(self.taxonomy, embedding, vector_db)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ServiceContainer":
        mongo = MongoDB(settings.mongo_uri, settings.mongo_db_name)
        vector_db = QdrantDB.connect(
            host=settings.qdrant_host,
            port=settings.qdrant_port,
            collection_name=settings.qdrant_collection_name,
            vector_size=settings.qdrant_vector_size,
            api_key=settings.qdrant_api_key,
        )
        embedding = Embedding(
            settings.embedding_api_url,
            dimension=settings.qdrant_vector_size,
            timeout=settings.embedding_timeout,
        )
        publisher = None
        if settings.redis_host:
            publisher = RedisDB(
                settings.redis_host,
                settings.redis_port,
                channel=settings.redis_channel,
                username=settings.redis_user,
                password=settings.redis_password,
            )
        return cls(
            settings=settings,
            questions=mongo.get_collection(settings.question_collection),
            subjects=mongo.get_collection(settings.subject_collection),
            chapters=mongo.get_collection(settings.chapter_collection),
            topics=mongo.get_collection(settings.topic_collection),
            vector_db=vector_db,
            embedding=embedding,
            llm_service=build_llm_service(settings),
            publisher=publisher,
            mongo=mongo,
        )

    async def startup(self):
        if self.mongo is not None:
            await self.mongo.ping()
            await self.mongo.ensure_question_indexes(self.settings.question_collection)
        await self.vector_db.create_collection()
        for field_name in PAYLOAD_INDEXES:
            await self.vector_db.create_payload_index(field_name)
        if self.publisher is not None:
            await self.publisher.ping()
        logger.info("Services started")

    async def health(self) -> Dict[str, bool]:
        """Pings every backing service; True means it answered."""
        checks = {"vector_db": self.vector_db.ping}
        if self.mongo is not None:
            checks["mongo"] = self.mongo.ping
        if self.publisher is not None:
            checks["redis"] = self.publisher.ping

        status = {}
        for name, check in checks.items():
            try:
                await check()
                status[name] = True
            except Exception as e:
                logger.warning(f"Health check for {name} failed: {e}")
                status[name] = False
        status["llm"] = await self.llm_service.health()
        return status

    async def close(self):
        await self.embedding.close()
        await self.vector_db.close()
        if self.publisher is not None:
            await self.publisher.close()
        if self.mongo is not None:
            await self.mongo.close()
        close_llm = getattr(self.llm_service, "close", None)
        if close_llm is not None:
            await close_llm()
        logger.info("Services closed")
