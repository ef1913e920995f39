"""Matches free-text chapter and topic names to taxonomy nodes.

Matching is exact after light normalization: English names and English or
Banglish aliases compare case-insensitively, Bangla compares as written.
There is no fuzzy matching; an unknown name resolves to None.
"""

from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, Field

from errors import NotFound
from logger import get_logger
from utils.mongo_util import (
    get_chapters_mongo,
    get_doc_by_id,
    get_topics_mongo,
    localized_name,
)
from utils.schema import PART_MARKS, ExtractedMetadata

logger = get_logger(__name__)


def _alias_list(aliases: Dict[str, Any], key: str) -> List[str]:
    value = aliases.get(key) or []
    if isinstance(value, str):
        value = [value]
    return [item for item in value if isinstance(item, str) and item.strip()]


class TaxonomyNode(BaseModel):
    id: str
    name_en: str = ""
    name_bn: str = ""
    aliases_english: List[str] = Field(default_factory=list)
    aliases_bangla: List[str] = Field(default_factory=list)
    aliases_banglish: List[str] = Field(default_factory=list)
    order: float = 0

    @classmethod
    def from_doc(cls, doc: Any, order_field: str = "chapterNo") -> "TaxonomyNode":
        if isinstance(doc, TaxonomyNode):
            return doc
        name = localized_name(doc)
        aliases = doc.get("aliases") or {}
        return cls(
            id=str(doc.get("_id", doc.get("id", ""))),
            name_en=name["en"],
            name_bn=name["bn"],
            aliases_english=_alias_list(aliases, "english"),
            aliases_bangla=_alias_list(aliases, "bangla"),
            aliases_banglish=_alias_list(aliases, "banglish"),
            order=doc.get(order_field) or 0,
        )


def _name_matches(query: str, node: TaxonomyNode) -> bool:
    folded = query.lower()
    if node.name_en and node.name_en.strip().lower() == folded:
        return True
    return bool(node.name_bn) and node.name_bn.strip() == query


def _alias_matches(query: str, node: TaxonomyNode) -> bool:
    folded = query.lower()
    for alias in node.aliases_english + node.aliases_banglish:
        if alias.strip().lower() == folded:
            return True
    return any(alias.strip() == query for alias in node.aliases_bangla)


def _resolve(
    name_query: Optional[str], candidates: Iterable[Any], order_field: str
) -> Optional[str]:
    if not name_query or not name_query.strip():
        return None
    query = name_query.strip()

    nodes = sorted(
        (TaxonomyNode.from_doc(doc, order_field) for doc in candidates),
        key=lambda node: (node.order, node.id),
    )
    for matcher in (_name_matches, _alias_matches):
        for node in nodes:
            if matcher(query, node):
                return node.id
    return None


def resolve_chapter(name_query: Optional[str], candidate_chapters: Iterable[Any]) -> Optional[str]:
    return _resolve(name_query, candidate_chapters, "chapterNo")


def resolve_topic(name_query: Optional[str], candidate_topics: Iterable[Any]) -> Optional[str]:
    return _resolve(name_query, candidate_topics, "order")


class ResolvedTaxonomy(BaseModel):
    main_chapter: Optional[str] = None
    part_chapters: Dict[str, Optional[str]] = Field(default_factory=dict)
    part_topics: Dict[str, List[str]] = Field(default_factory=dict)


class TaxonomyService:
    """Read-only access to subjects, chapters and topics."""

    def __init__(self, subjects, chapters, topics):
        self.subjects = subjects
        self.chapters = chapters
        self.topics = topics

    async def get_subject(self, subject_id: Any) -> Dict:
        subject = await get_doc_by_id(self.subjects, subject_id, "subject_id")
        if subject is None:
            raise NotFound(f"Subject '{subject_id}' not found")
        return subject

    async def get_chapter(self, chapter_id: Any) -> Dict:
        chapter = await get_doc_by_id(self.chapters, chapter_id, "chapter_id")
        if chapter is None:
            raise NotFound(f"Chapter '{chapter_id}' not found")
        return chapter

    async def list_chapters(self, subject_id: Any) -> List[Dict]:
        return await get_chapters_mongo(self.chapters, subject_id)

    async def list_topics(self, subject_id: Any, chapter_id: Any) -> List[Dict]:
        return await get_topics_mongo(self.topics, subject_id, chapter_id)

    async def resolve_extracted_metadata(
        self, subject_id: Any, extracted: ExtractedMetadata
    ) -> ResolvedTaxonomy:
        """Resolves every chapter and topic name in extracted to ids.

        Unknown names come back as None (chapters) or are dropped (topics).
        """
        chapters = await self.list_chapters(subject_id)
        resolved = ResolvedTaxonomy(
            main_chapter=resolve_chapter(extracted.mainChapter, chapters)
        )
        if extracted.mainChapter and resolved.main_chapter is None:
            logger.warning(f"Main chapter '{extracted.mainChapter}' did not match any chapter")

        topic_cache: Dict[str, List[Dict]] = {}
        for part in PART_MARKS:
            chapter_id = resolve_chapter(extracted.partChapters.get(part), chapters)
            resolved.part_chapters[part] = chapter_id

            topic_names = extracted.partTopics.get(part) or []
            lookup_chapter = chapter_id or resolved.main_chapter
            if not topic_names or lookup_chapter is None:
                resolved.part_topics[part] = []
                continue

            if lookup_chapter not in topic_cache:
                topic_cache[lookup_chapter] = await self.list_topics(subject_id, lookup_chapter)
            topic_ids = []
            for topic_name in topic_names:
                topic_id = resolve_topic(topic_name, topic_cache[lookup_chapter])
                if topic_id is None:
                    logger.warning(f"Topic '{topic_name}' for part {part} did not match")
                elif topic_id not in topic_ids:
                    topic_ids.append(topic_id)
            resolved.part_topics[part] = topic_ids

        return resolved
