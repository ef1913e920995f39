import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return int(value)


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return float(value)


class Settings(BaseModel):
    """Process-wide configuration, read once by the composition root."""

    # MongoDB
    mongo_uri: str = "mongodb://localhost:27017"
    mongo_db_name: str = "academic"
    question_collection: str = "creativequestions"
    subject_collection: str = "subjects"
    chapter_collection: str = "chapters"
    topic_collection: str = "topics"

    # Qdrant
    qdrant_host: str = "http://localhost"
    qdrant_port: int = 6333
    qdrant_api_key: Optional[str] = None
    qdrant_collection_name: str = "academic-embeddings"
    qdrant_vector_size: int = 384

    # Embedding endpoint
    embedding_api_url: str = "http://localhost:8080/embed"
    embedding_timeout: float = 30.0

    # Vision LLM
    llm_provider: str = Field("gemini", description="gemini or openrouter")
    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-2.5-flash"
    openrouter_api_key: Optional[str] = None
    openrouter_url: str = "https://openrouter.ai/api/v1/chat/completions"
    openrouter_model: str = "google/gemini-2.5-flash"
    extraction_timeout: float = 120.0

    # Redis lifecycle events (disabled when host is unset)
    redis_host: Optional[str] = None
    redis_port: int = 6379
    redis_user: Optional[str] = None
    redis_password: Optional[str] = None
    redis_channel: str = "question-ingestion"

    # Uploads
    upload_dir: str = "/tmp/uploads"
    max_upload_files: int = 5

    @classmethod
    def from_env(cls) -> "Settings":
        defaults = cls()
        return cls(
            mongo_uri=os.getenv("MONGO_URI", defaults.mongo_uri),
            mongo_db_name=os.getenv("MONGO_DB_NAME", defaults.mongo_db_name),
            question_collection=os.getenv(
                "MONGO_QUESTION_COLLECTION", defaults.question_collection
            ),
            subject_collection=os.getenv(
                "MONGO_SUBJECT_COLLECTION", defaults.subject_collection
            ),
            chapter_collection=os.getenv(
                "MONGO_CHAPTER_COLLECTION", defaults.chapter_collection
            ),
            topic_collection=os.getenv(
                "MONGO_TOPIC_COLLECTION", defaults.topic_collection
            ),
            qdrant_host=os.getenv("QDRANT_HOST", defaults.qdrant_host),
            qdrant_port=_env_int("QDRANT_PORT", defaults.qdrant_port),
            qdrant_api_key=os.getenv("QDRANT_API_KEY") or None,
            qdrant_collection_name=os.getenv(
                "QDRANT_COLLECTION_NAME", defaults.qdrant_collection_name
            ),
            qdrant_vector_size=_env_int(
                "QDRANT_VECTOR_SIZE", defaults.qdrant_vector_size
            ),
            embedding_api_url=os.getenv(
                "EMBEDDING_API_URL", defaults.embedding_api_url
            ),
            embedding_timeout=_env_float(
                "EMBEDDING_TIMEOUT", defaults.embedding_timeout
            ),
            llm_provider=os.getenv("LLM_PROVIDER", defaults.llm_provider).lower(),
            gemini_api_key=os.getenv("GEMINI_API_KEY") or None,
            gemini_model=os.getenv("GEMINI_MODEL", defaults.gemini_model),
            openrouter_api_key=os.getenv("OPENROUTER_API_KEY") or None,
            openrouter_url=os.getenv("OPENROUTER_URL", defaults.openrouter_url),
            openrouter_model=os.getenv("OPEN_ROUTER_MODEL", defaults.openrouter_model),
            extraction_timeout=_env_float(
                "EXTRACTION_TIMEOUT", defaults.extraction_timeout
            ),
            redis_host=os.getenv("REDIS_HOST") or None,
            redis_port=_env_int("REDIS_PORT", defaults.redis_port),
            redis_user=os.getenv("REDIS_USER") or None,
            redis_password=os.getenv("REDIS_PASSWORD") or None,
            redis_channel=os.getenv("REDIS_CHANNEL", defaults.redis_channel),
            upload_dir=os.getenv("UPLOAD_DIR", defaults.upload_dir),
            max_upload_files=_env_int("MAX_UPLOAD_FILES", defaults.max_upload_files),
        )
