"""Creates, updates and deletes creative questions.

Every question lives in two stores: the record in MongoDB and its embedding
in Qdrant. The record is always written first. When the embedding write
fails afterwards the record stays (an orphan), is logged and announced, and
reconcile_embeddings() repairs it later.
"""

from copy import deepcopy
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError
from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from db.qdrant_db import QdrantDB
from db.redis_db import RedisDB
from errors import Conflict, NotFound, PersistenceError, ValidationError
from logger import get_logger
from services.search_service import SearchService
from services.taxonomy_service import TaxonomyService
from utils.common import timing_decorator
from utils.embedding import Embedding
from utils.mongo_util import (
    get_docs_mongo,
    localized_name,
    serialize_document,
    to_object_id,
)
from utils.response_format import AnswerGroup, ExtractedQuestionSet
from utils.schema import (
    GROUPS,
    PART_MARKS,
    ExtractedMetadata,
    QuestionCreate,
    ReconcileReport,
    validation_details,
)

logger = get_logger(__name__)

QUESTION_KIND = "question"
SERVER_FIELDS = ("_id", "createdAt", "updatedAt", "version")


def _block_texts(blocks: Optional[List[Dict]]) -> List[Dict[str, str]]:
    return [block.get("text") or {} for block in blocks or []]


def _ref_ids(refs: Optional[List[Dict]], key: str) -> List[Dict[str, Any]]:
    return [{key: str(ref[key]), "weight": ref.get("weight", 1)} for ref in refs or []]


def build_embedding_projection(question: Dict[str, Any]) -> Dict[str, Any]:
    """Picks the content fields that decide what a question is about.

    Provenance, aliases, tags and timestamps are left out, so editing them
    does not move the question in vector space.
    """
    meta = question.get("meta") or {}
    subject = meta.get("subject") or {}
    main_chapter = meta.get("mainChapter") or {}

    projection: Dict[str, Any] = {
        "stem": _block_texts(question.get("stem")),
        "meta": {
            "level": meta.get("level"),
            "group": meta.get("group"),
            "subject": str(subject["_id"]) if subject.get("_id") else None,
            "mainChapter": str(main_chapter["_id"]) if main_chapter.get("_id") else None,
        },
    }
    for part in PART_MARKS:
        part_doc = question.get(part) or {}
        projection[part] = {
            "question": _block_texts(part_doc.get("question")),
            "answer": _block_texts(part_doc.get("answer")),
            "chapter": str(part_doc["chapter"]) if part_doc.get("chapter") else None,
            "topics": _ref_ids(part_doc.get("topics"), "topicId"),
            "types": _ref_ids(part_doc.get("types"), "typeId"),
        }
    return projection


def _text_block(en: str, bn: str) -> List[Dict[str, Any]]:
    if not (en or "").strip() and not (bn or "").strip():
        return []
    return [{"text": {"en": en, "bn": bn}, "images": [], "order": 1}]


def compose_question_payload(
    question_set: ExtractedQuestionSet,
    answers: Optional[List[AnswerGroup]] = None,
    marks: Optional[Dict[str, float]] = None,
) -> Dict[str, Any]:
    """Builds stem and parts a-d from an extracted pair and its answers.

    answers, when given, is [english, bangla].
    """
    groups = question_set.by_language()
    marks = {**PART_MARKS, **(marks or {})}

    payload: Dict[str, Any] = {"stem": _text_block(groups["en"].stem, groups["bn"].stem)}
    for part in PART_MARKS:
        answer = []
        if answers:
            answer = _text_block(answers[0].for_part(part), answers[1].for_part(part))
        payload[part] = {
            "question": _text_block(getattr(groups["en"], part), getattr(groups["bn"], part)),
            "answer": answer,
            "marks": marks[part],
            "chapter": None,
            "topics": [],
            "types": [],
        }
    return payload


class QuestionService:
    def __init__(
        self,
        questions,
        taxonomy: TaxonomyService,
        embedding: Embedding,
        vector_db: QdrantDB,
        search: SearchService,
        publisher: Optional[RedisDB] = None,
    ):
        self.questions = questions
        self.taxonomy = taxonomy
        self.embedding = embedding
        self.vector_db = vector_db
        self.search = search
        self.publisher = publisher

    async def _publish(self, event: str, question_id: str, **data):
        if self.publisher is None:
            return
        try:
            await self.publisher.publish_event(event, question_id, **data)
        except Exception as e:
            logger.warning(f"Could not publish {event} for {question_id}: {e}")

    @staticmethod
    def _validate(payload: Dict[str, Any]) -> QuestionCreate:
        try:
            return QuestionCreate.model_validate(payload)
        except PydanticValidationError as e:
            raise ValidationError(
                "Validation failed. Please check your input.",
                details=validation_details(e),
            ) from e

    async def _apply_extracted_metadata(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Fills chapters, topics, board, aliases and tags from bulk-ingestion hints.

        Values already present in the payload win over resolved ones.
        """
        raw_metadata = payload.pop("extractedMetadata", None)
        if not raw_metadata:
            return payload
        try:
            extracted = ExtractedMetadata.model_validate(raw_metadata)
        except PydanticValidationError as e:
            raise ValidationError(
                "Invalid extractedMetadata", details=validation_details(e)
            ) from e

        meta = payload.get("meta")
        subject = meta.get("subject") if isinstance(meta, dict) else None
        subject_id = subject.get("_id") if isinstance(subject, dict) else None
        if not subject_id:
            raise ValidationError(
                "meta.subject._id is required to resolve extracted metadata",
                details=[{"field": "meta.subject._id", "message": "Field required"}],
            )

        resolved = await self.taxonomy.resolve_extracted_metadata(subject_id, extracted)

        if not meta.get("mainChapter") and resolved.main_chapter:
            meta["mainChapter"] = {"_id": resolved.main_chapter}
        for part in PART_MARKS:
            part_doc = payload.get(part)
            if not isinstance(part_doc, dict):
                continue
            if not part_doc.get("chapter"):
                part_doc["chapter"] = resolved.part_chapters.get(part) or resolved.main_chapter
            if not part_doc.get("topics"):
                part_doc["topics"] = [
                    {"topicId": topic_id, "weight": 1}
                    for topic_id in resolved.part_topics.get(part, [])
                ]

        source = payload.get("source")
        if extracted.board and isinstance(source, dict) and not source.get("board"):
            source["board"] = extracted.board
        if extracted.aliases and not payload.get("aliases"):
            aliases = extracted.aliases
            payload["aliases"] = {
                "en": aliases.get("english", aliases.get("en")),
                "bn": aliases.get("bangla", aliases.get("bn")),
                "banglish": aliases.get("banglish"),
            }
        if extracted.tags and not payload.get("tags"):
            tags = extracted.tags
            payload["tags"] = {
                "en": tags.get("english", tags.get("en", [])),
                "bn": tags.get("bangla", tags.get("bn", [])),
            }
        return payload

    async def _denormalize(self, question: QuestionCreate):
        """Checks the subject and main chapter exist and copies their names."""
        subject = await self.taxonomy.get_subject(question.meta.subject.id)
        subject_name = localized_name(subject)
        question.meta.subject.name = subject_name["en"] or subject_name["bn"]

        main_chapter = question.meta.mainChapter
        if main_chapter is None:
            return
        chapter = await self.taxonomy.get_chapter(main_chapter.id)
        if str(chapter.get("subjectId")) != question.meta.subject.id:
            raise ValidationError(
                "Main chapter does not belong to the subject",
                details=[
                    {
                        "field": "meta.mainChapter._id",
                        "message": f"chapter {main_chapter.id} is not part of subject {question.meta.subject.id}",
                    }
                ],
            )
        chapter_name = localized_name(chapter)
        main_chapter.name = chapter_name["en"] or chapter_name["bn"]

    async def _find_question(self, object_id) -> Dict[str, Any]:
        try:
            question = await self.questions.find_one({"_id": object_id})
        except PyMongoError as e:
            logger.error(f"Error reading question {object_id}: {e}")
            raise PersistenceError(f"Database read failed: {e}") from e
        if question is None:
            raise NotFound(f"Question '{object_id}' not found")
        return question

    async def _write_embedding(self, document: Dict[str, Any], replacing: bool = False):
        """Embeds the stored record and upserts its vector.

        When replacing and the embedding fails, the previous vector is
        deleted so it cannot outlive the content it described.
        """
        question_id = str(document["_id"])
        meta = document.get("meta") or {}
        try:
            vector = await self.embedding.embed(build_embedding_projection(document))
            await self.vector_db.upsert_vector(
                QUESTION_KIND,
                question_id,
                vector,
                payload={
                    "subject_id": str((meta.get("subject") or {}).get("_id", "")),
                    "level": meta.get("level"),
                    "group": meta.get("group"),
                    "version": document.get("version"),
                },
            )
        except Exception as e:
            if replacing:
                try:
                    await self.vector_db.delete_vector(QUESTION_KIND, question_id)
                    logger.error(
                        f"Question {question_id} version {document.get('version')} was not "
                        f"re-embedded; its previous embedding was removed: {e}"
                    )
                except PersistenceError as delete_error:
                    logger.error(
                        f"Question {question_id} keeps an outdated embedding "
                        f"(version {document.get('version')} not embedded: {e}; "
                        f"delete failed: {delete_error})"
                    )
            else:
                logger.error(f"Question {question_id} is stored without an embedding: {e}")
            await self._publish("question.orphaned", question_id, reason=str(e))
            raise PersistenceError(
                f"Question {question_id} was saved but its embedding was not: {e}",
                orphan_id=question_id,
            ) from e

    @timing_decorator
    async def create_question(self, raw: Dict[str, Any]) -> Dict[str, Any]:
        if not isinstance(raw, dict):
            raise ValidationError("Question body must be an object")

        payload = await self._apply_extracted_metadata(deepcopy(raw))
        question = self._validate(payload)
        await self._denormalize(question)

        now = datetime.now(timezone.utc)
        document = question.to_document()
        document.update({"createdAt": now, "updatedAt": now, "version": 1})
        try:
            result = await self.questions.insert_one(document)
        except PyMongoError as e:
            logger.error(f"Error inserting question: {e}")
            raise PersistenceError(f"Database write failed: {e}") from e
        document["_id"] = result.inserted_id
        question_id = str(result.inserted_id)
        logger.info(f"Created question {question_id}")

        await self._write_embedding(document)
        await self._publish("question.created", question_id, version=1)
        return serialize_document(document)

    async def get_question_by_id(self, question_id: str) -> Dict[str, Any]:
        object_id = to_object_id(question_id, "question_id")
        return serialize_document(await self._find_question(object_id))

    async def list_questions(
        self,
        subject_id: str,
        level: Optional[str] = None,
        group: Optional[str] = None,
        limit: int = 100,
    ) -> List[Dict[str, Any]]:
        if limit <= 0:
            raise ValidationError("limit must be a positive integer")
        query: Dict[str, Any] = {"meta.subject._id": to_object_id(subject_id, "subject_id")}
        if level:
            query["meta.level"] = level.strip().upper()
        if group:
            group = group.strip().upper()
            query["meta.group"] = "ARTS" if group == "HUMANITIES" else group
            if query["meta.group"] not in GROUPS:
                raise ValidationError(f"Unknown group '{group}'")
        docs = await get_docs_mongo(
            self.questions, query, sort=[("createdAt", -1)], limit=limit
        )
        return [serialize_document(doc) for doc in docs]

    @timing_decorator
    async def update_question(
        self,
        question_id: str,
        patch: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Merges patch over the stored record's top-level keys and re-embeds it.

        With expected_version set, the update only applies to that revision.
        """
        object_id = to_object_id(question_id, "question_id")
        if not isinstance(patch, dict):
            raise ValidationError("Update body must be an object")

        current = await self._find_question(object_id)
        if expected_version is not None and current.get("version") != expected_version:
            raise Conflict(
                f"Question {question_id} is at version {current.get('version')}, not {expected_version}",
                current_version=current.get("version"),
            )

        merged = {
            key: value
            for key, value in serialize_document(current).items()
            if key not in SERVER_FIELDS
        }
        merged.update(
            {key: value for key, value in deepcopy(patch).items() if key not in SERVER_FIELDS}
        )
        merged = await self._apply_extracted_metadata(merged)
        question = self._validate(merged)
        await self._denormalize(question)

        document = question.to_document()
        document["updatedAt"] = datetime.now(timezone.utc)
        query: Dict[str, Any] = {"_id": object_id}
        if expected_version is not None:
            query["version"] = expected_version
        try:
            updated = await self.questions.find_one_and_update(
                query,
                {"$set": document, "$inc": {"version": 1}},
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as e:
            logger.error(f"Error updating question {question_id}: {e}")
            raise PersistenceError(f"Database write failed: {e}") from e

        if updated is None:
            # Changed or removed between the read and the write
            latest = await self.questions.find_one({"_id": object_id})
            if latest is None:
                raise NotFound(f"Question '{question_id}' not found")
            raise Conflict(
                f"Question {question_id} changed while updating",
                current_version=latest.get("version"),
            )

        logger.info(f"Updated question {question_id} to version {updated.get('version')}")
        await self._write_embedding(updated, replacing=True)
        await self._publish("question.updated", question_id, version=updated.get("version"))
        return serialize_document(updated)

    async def delete_question(self, question_id: str) -> bool:
        """Deletes the question and its embedding. Returns False if there was no question."""
        object_id = to_object_id(question_id, "question_id")
        try:
            result = await self.questions.delete_one({"_id": object_id})
        except PyMongoError as e:
            logger.error(f"Error deleting question {question_id}: {e}")
            raise PersistenceError(f"Database write failed: {e}") from e

        await self.vector_db.delete_vector(QUESTION_KIND, str(object_id))
        deleted = result.deleted_count > 0
        if deleted:
            logger.info(f"Deleted question {question_id}")
            await self._publish("question.deleted", question_id)
        return deleted

    async def ingest_extracted(
        self,
        question_set: ExtractedQuestionSet,
        answers: Optional[List[AnswerGroup]] = None,
        extracted_metadata: Optional[ExtractedMetadata] = None,
        base: Optional[Dict[str, Any]] = None,
        marks: Optional[Dict[str, float]] = None,
    ) -> Dict[str, Any]:
        """Creates a question from extraction output.

        base carries meta (at least meta.subject._id) and source. Missing
        level and group are taken from the subject.
        """
        base = deepcopy(base or {})
        meta = base.get("meta") or {}
        subject_id = (meta.get("subject") or {}).get("_id")
        if not subject_id:
            raise ValidationError(
                "meta.subject._id is required",
                details=[{"field": "meta.subject._id", "message": "Field required"}],
            )
        subject = await self.taxonomy.get_subject(subject_id)
        meta["level"] = meta.get("level") or subject.get("level")
        meta["group"] = meta.get("group") or subject.get("group")

        payload = compose_question_payload(question_set, answers, marks)
        payload.update({key: value for key, value in base.items() if key not in PART_MARKS})
        payload["meta"] = meta
        if extracted_metadata is not None:
            payload["extractedMetadata"] = extracted_metadata.model_dump()
        return await self.create_question(payload)

    async def find_similar_questions(
        self,
        query: Any,
        top_k: Optional[int] = 5,
        subject_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Searches question embeddings and loads the matching records.

        Hits whose record no longer exists are skipped.
        """
        filters = {"subject_id": subject_id} if subject_id else None
        results = await self.search.search(
            query, top_k=top_k, kind=QUESTION_KIND, filters=filters
        )
        if not results:
            return []

        docs = await get_docs_mongo(
            self.questions,
            {"_id": {"$in": [to_object_id(result.ref_id) for result in results]}},
        )
        by_id = {str(doc["_id"]): doc for doc in docs}

        hydrated = []
        for result in results:
            doc = by_id.get(result.ref_id)
            if doc is None:
                logger.warning(f"Embedding {result.ref_id} points to a missing question")
                continue
            hydrated.append(
                {
                    "ref_id": result.ref_id,
                    "score": result.score,
                    "rank": result.rank,
                    "question": serialize_document(doc),
                }
            )
        return hydrated

    async def _repair_batch(self, batch: List[Dict[str, Any]], report: ReconcileReport):
        existing = await self.vector_db.retrieve(
            QUESTION_KIND, [str(doc["_id"]) for doc in batch]
        )
        for doc in batch:
            report.checked += 1
            point = existing.get(str(doc["_id"]))
            # A point from an older version describes content that has changed
            if point is not None and (point.payload or {}).get("version") == doc.get("version"):
                continue
            try:
                await self._write_embedding(doc)
                report.repaired += 1
            except PersistenceError:
                report.failed += 1

    @timing_decorator
    async def reconcile_embeddings(self, batch_size: int = 100) -> ReconcileReport:
        """Re-embeds questions whose vector is missing or from an older version,
        and drops vectors without a question."""
        report = ReconcileReport()
        question_ids = set()
        batch: List[Dict[str, Any]] = []
        try:
            async for doc in self.questions.find({}):
                question_ids.add(str(doc["_id"]))
                batch.append(doc)
                if len(batch) >= batch_size:
                    await self._repair_batch(batch, report)
                    batch = []
        except PyMongoError as e:
            logger.error(f"Error scanning questions: {e}")
            raise PersistenceError(f"Database read failed: {e}") from e
        if batch:
            await self._repair_batch(batch, report)

        for ref_id in await self.vector_db.scroll_ref_ids(QUESTION_KIND):
            if ref_id not in question_ids:
                await self.vector_db.delete_vector(QUESTION_KIND, ref_id)
                report.removed += 1

        logger.info(
            f"Reconciled embeddings: checked={report.checked} repaired={report.repaired} "
            f"removed={report.removed} failed={report.failed}"
        )
        return report
