import asyncio
import hashlib
import json
from copy import deepcopy
from typing import Any, Dict, List, Optional

import httpx
import pytest
import pytest_asyncio
from bson import ObjectId
from pymongo import ReturnDocument
from qdrant_client import AsyncQdrantClient

from db.qdrant_db import QdrantDB
from services.llm_service import VisionLLMService
from services.question_service import QuestionService
from services.search_service import SearchService
from services.taxonomy_service import TaxonomyService
from utils.embedding import Embedding

DIM = 8

_MISSING = object()


# --- MongoDB double -------------------------------------------------------


def _get_path(doc: Dict[str, Any], path: str) -> Any:
    value: Any = doc
    for part in path.split("."):
        if not isinstance(value, dict) or part not in value:
            return _MISSING
        value = value[part]
    return value


def _set_path(doc: Dict[str, Any], path: str, value: Any):
    parts = path.split(".")
    for part in parts[:-1]:
        doc = doc.setdefault(part, {})
    doc[parts[-1]] = value


def _matches(doc: Dict[str, Any], query: Optional[Dict[str, Any]]) -> bool:
    for key, expected in (query or {}).items():
        actual = _get_path(doc, key)
        if isinstance(expected, dict) and "$in" in expected:
            if actual not in expected["$in"]:
                return False
        elif actual != expected:
            return False
    return True


class InsertOneResult:
    def __init__(self, inserted_id):
        self.inserted_id = inserted_id


class DeleteResult:
    def __init__(self, deleted_count):
        self.deleted_count = deleted_count


class FakeCursor:
    def __init__(self, docs: List[Dict[str, Any]]):
        self._docs = docs

    def sort(self, key_or_list, direction=1):
        keys = key_or_list if isinstance(key_or_list, list) else [(key_or_list, direction)]
        for key, key_direction in reversed(keys):
            self._docs.sort(
                key=lambda doc: (
                    _get_path(doc, key) is _MISSING,
                    _get_path(doc, key) if _get_path(doc, key) is not _MISSING else 0,
                ),
                reverse=key_direction < 0,
            )
        return self

    def limit(self, count: int):
        if count:
            self._docs = self._docs[:count]
        return self

    async def to_list(self, length: Optional[int] = None):
        return list(self._docs[:length] if length else self._docs)

    def __aiter__(self):
        self._iter = iter(list(self._docs))
        return self

    async def __anext__(self):
        try:
            return next(self._iter)
        except StopIteration:
            raise StopAsyncIteration


class FakeCollection:
    """Just enough of pymongo's AsyncCollection for the services."""

    def __init__(self, docs: Optional[List[Dict[str, Any]]] = None):
        self.docs: List[Dict[str, Any]] = [deepcopy(doc) for doc in docs or []]

    async def insert_one(self, document):
        document.setdefault("_id", ObjectId())
        self.docs.append(deepcopy(document))
        return InsertOneResult(document["_id"])

    async def find_one(self, query=None, projection=None):
        for doc in self.docs:
            if _matches(doc, query):
                return deepcopy(doc)
        return None

    def find(self, query=None, projection=None):
        return FakeCursor([deepcopy(doc) for doc in self.docs if _matches(doc, query)])

    async def find_one_and_update(
        self, query, update, return_document=ReturnDocument.BEFORE
    ):
        for doc in self.docs:
            if not _matches(doc, query):
                continue
            before = deepcopy(doc)
            for key, value in update.get("$set", {}).items():
                _set_path(doc, key, deepcopy(value))
            for key, value in update.get("$inc", {}).items():
                current = _get_path(doc, key)
                _set_path(doc, key, (0 if current is _MISSING else current) + value)
            return deepcopy(doc) if return_document == ReturnDocument.AFTER else before
        return None

    async def delete_one(self, query):
        for index, doc in enumerate(self.docs):
            if _matches(doc, query):
                del self.docs[index]
                return DeleteResult(1)
        return DeleteResult(0)

    async def count_documents(self, query):
        return sum(1 for doc in self.docs if _matches(doc, query))

    async def create_index(self, keys, **kwargs):
        return "_".join(str(key) for key, _ in keys)


# --- Embedding endpoint ---------------------------------------------------


def hash_vector(text: str) -> List[float]:
    digest = hashlib.sha256(text.encode("utf-8")).digest()
    return [(byte - 127.5) / 127.5 for byte in digest[:DIM]]


class FakeEmbeddingServer:
    """Deterministic embeddings: equal texts get equal vectors."""

    def __init__(self):
        self.calls: List[List[str]] = []
        self.fail = False

    def handler(self, request: httpx.Request) -> httpx.Response:
        if self.fail:
            return httpx.Response(500, json={"error": "model unavailable"})
        texts = json.loads(request.content)["inputs"]
        self.calls.append(texts)
        return httpx.Response(200, json=[hash_vector(text) for text in texts])

    def embedding(self) -> Embedding:
        client = httpx.AsyncClient(transport=httpx.MockTransport(self.handler))
        return Embedding("http://embeddings.test/embed", dimension=DIM, client=client)


# --- Vision model -----------------------------------------------------------


class StubVisionLLM(VisionLLMService):
    def __init__(self, response: str = "[]", error: Optional[Exception] = None, delay: float = 0):
        self.response = response
        self.error = error
        self.delay = delay
        self.healthy = True
        self.calls = []

    async def generate_from_images(self, image_parts, prompt):
        self.calls.append((image_parts, prompt))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.response

    async def health(self):
        return self.healthy


class RecordingPublisher:
    def __init__(self):
        self.events = []

    async def publish_event(self, event, question_id, **data):
        self.events.append((event, question_id))
        return 1


# --- Fixtures ---------------------------------------------------------------


PHYSICS_ID = ObjectId()
CHEMISTRY_ID = ObjectId()
MEASUREMENT_ID = ObjectId()
VECTOR_ID = ObjectId()
DYNAMICS_ID = ObjectId()
ORGANIC_ID = ObjectId()
VECTOR_ADDITION_ID = ObjectId()
SCALAR_PRODUCT_ID = ObjectId()


@pytest.fixture
def taxonomy_ids():
    return {
        "physics": str(PHYSICS_ID),
        "chemistry": str(CHEMISTRY_ID),
        "measurement": str(MEASUREMENT_ID),
        "vector": str(VECTOR_ID),
        "dynamics": str(DYNAMICS_ID),
        "organic": str(ORGANIC_ID),
        "vector_addition": str(VECTOR_ADDITION_ID),
        "scalar_product": str(SCALAR_PRODUCT_ID),
    }


@pytest.fixture
def taxonomy_collections():
    subjects = FakeCollection(
        [
            {
                "_id": PHYSICS_ID,
                "name": {"en": "Physics", "bn": "পদার্থবিজ্ঞান"},
                "level": "HSC",
                "group": "SCIENCE",
            },
            {
                "_id": CHEMISTRY_ID,
                "name": {"en": "Chemistry", "bn": "রসায়ন"},
                "level": "HSC",
                "group": "SCIENCE",
            },
        ]
    )
    chapters = FakeCollection(
        [
            {
                "_id": DYNAMICS_ID,
                "subjectId": PHYSICS_ID,
                "chapterNo": 3,
                "name": {"en": "Newtonian Mechanics", "bn": "নিউটনিয়ান বলবিদ্যা"},
                "aliases": {"english": ["Dynamics"], "bangla": [], "banglish": []},
            },
            {
                "_id": MEASUREMENT_ID,
                "subjectId": PHYSICS_ID,
                "chapterNo": 1,
                "name": {"en": "Physical World and Measurement", "bn": "ভৌতজগৎ ও পরিমাপ"},
                "aliases": {"english": [], "bangla": [], "banglish": []},
            },
            {
                "_id": VECTOR_ID,
                "subjectId": PHYSICS_ID,
                "chapterNo": 2,
                "name": {"en": "Vector", "bn": "ভেক্টর"},
                "aliases": {"english": ["Vectors"], "bangla": [], "banglish": ["vektor"]},
            },
            {
                "_id": ORGANIC_ID,
                "subjectId": CHEMISTRY_ID,
                "chapterNo": 1,
                "name": {"en": "Organic Chemistry", "bn": "জৈব রসায়ন"},
                "aliases": {"english": [], "bangla": [], "banglish": []},
            },
        ]
    )
    topics = FakeCollection(
        [
            {
                "_id": SCALAR_PRODUCT_ID,
                "subjectId": PHYSICS_ID,
                "chapterId": VECTOR_ID,
                "order": 2,
                "name": {"en": "Scalar product", "bn": "স্কেলার গুণন"},
                "aliases": {"english": ["Dot product"], "bangla": [], "banglish": []},
            },
            {
                "_id": VECTOR_ADDITION_ID,
                "subjectId": PHYSICS_ID,
                "chapterId": VECTOR_ID,
                "order": 1,
                "name": {"en": "Vector addition", "bn": "ভেক্টরের যোগ"},
                "aliases": {"english": [], "bangla": [], "banglish": []},
            },
        ]
    )
    return subjects, chapters, topics


@pytest.fixture
def taxonomy(taxonomy_collections):
    return TaxonomyService(*taxonomy_collections)


@pytest.fixture
def embedding_server():
    return FakeEmbeddingServer()


@pytest.fixture
def embedding(embedding_server):
    return embedding_server.embedding()


@pytest_asyncio.fixture
async def vector_db():
    db = QdrantDB(AsyncQdrantClient(location=":memory:"), "test-embeddings", DIM)
    await db.create_collection()
    yield db
    await db.close()


@pytest.fixture
def questions_collection():
    return FakeCollection()


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def search_service(embedding, vector_db):
    return SearchService(embedding, vector_db)


@pytest.fixture
def question_service(questions_collection, taxonomy, embedding, vector_db, search_service, publisher):
    return QuestionService(
        questions_collection,
        taxonomy,
        embedding,
        vector_db,
        search_service,
        publisher=publisher,
    )


def _part(text: str, marks: int, chapter: Optional[str]) -> Dict[str, Any]:
    return {
        "question": [{"text": {"en": text, "bn": ""}, "images": [], "order": 1}],
        "answer": [],
        "marks": marks,
        "chapter": chapter,
        "topics": [],
        "types": [],
    }


@pytest.fixture
def make_question(taxonomy_ids):
    def _make(stem: str = r"A particle moves with velocity $\vec{v} = 3\hat{i} + 4\hat{j}$.", **overrides):
        vector = taxonomy_ids["vector"]
        payload = {
            "stem": [
                {
                    "text": {"en": stem, "bn": "একটি কণা বেগে চলছে।"},
                    "images": [
                        {
                            "url": "https://cdn.example.com/cq/velocity.png",
                            "caption": {"english": "Velocity diagram", "bangla": "বেগ চিত্র"},
                            "order": 1,
                        }
                    ],
                    "order": 1,
                }
            ],
            "a": _part("What is a unit vector?", 1, vector),
            "b": _part("Why is velocity a vector quantity?", 2, vector),
            "c": _part("Find the magnitude of the velocity.", 3, vector),
            "d": _part("Find the angle the velocity makes with the x-axis.", 4, vector),
            "meta": {
                "level": "HSC",
                "group": "science",
                "subject": {"_id": taxonomy_ids["physics"]},
                "mainChapter": {"_id": vector},
            },
            "source": {
                "sourceType": "BOARD",
                "source": "Dhaka Board 2023",
                "year": 2023,
                "board": "Dhaka",
            },
        }
        payload.update(overrides)
        return payload

    return _make


@pytest.fixture
def make_llm():
    return StubVisionLLM


@pytest.fixture
def vector_for():
    return hash_vector


@pytest.fixture
def make_collection():
    return FakeCollection
