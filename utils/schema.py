"""Schemas for creative questions and the API around them."""

from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from bson import ObjectId
from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError as PydanticValidationError,
    field_validator,
    model_validator,
)

from utils.response_format import AnswerGroup, ExtractedQuestionSet, RankedResult

LEVELS = ("SSC", "HSC")
GROUPS = ("SCIENCE", "ARTS", "COMMERCE")
SOURCE_TYPES = ("BOARD", "AI", "INSTITUTION")
BOARDS = (
    "Dhaka",
    "Rajshahi",
    "Chittagong",
    "Sylhet",
    "Comilla",
    "Jessore",
    "Dinajpur",
    "Mymensingh",
    "Madrasah",
    "Barishal",
)
PART_MARKS = {"a": 1, "b": 2, "c": 3, "d": 4}

_GROUP_ALIASES = {"HUMANITIES": "ARTS"}


def _check_object_id(value: str) -> str:
    if not ObjectId.is_valid(value):
        raise ValueError(f"'{value}' is not a valid id")
    return value


ObjectIdStr = Annotated[str, AfterValidator(_check_object_id)]


def validation_details(exc: PydanticValidationError) -> List[Dict[str, str]]:
    """Flattens pydantic errors into [{field, message}] for API responses."""
    return [
        {
            "field": ".".join(str(part) for part in error["loc"]),
            "message": error["msg"],
        }
        for error in exc.errors()
    ]


class LocalizedText(BaseModel):
    en: str = ""
    bn: str = ""

    @model_validator(mode="after")
    def _at_least_one_language(self):
        if not self.en.strip() and not self.bn.strip():
            raise ValueError("text needs an English or Bangla value")
        return self


class Caption(BaseModel):
    english: Optional[str] = None
    bangla: Optional[str] = None


class ImageRef(BaseModel):
    url: str = Field(..., min_length=1)
    caption: Caption = Field(default_factory=Caption)
    order: int = 0


class ContentBlock(BaseModel):
    text: LocalizedText
    images: List[ImageRef] = Field(default_factory=list)
    order: int = 1


class TopicRef(BaseModel):
    topicId: ObjectIdStr
    weight: int = Field(1, ge=1, le=5)


class TypeRef(BaseModel):
    typeId: ObjectIdStr
    weight: int = Field(1, ge=1, le=5)


class QuestionPart(BaseModel):
    question: List[ContentBlock] = Field(..., min_length=1)
    answer: List[ContentBlock] = Field(default_factory=list)
    marks: float = Field(..., ge=0)
    chapter: Optional[ObjectIdStr] = None
    topics: List[TopicRef] = Field(default_factory=list)
    types: List[TypeRef] = Field(default_factory=list)


class NamedRef(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: ObjectIdStr = Field(..., alias="_id")
    name: str = ""


class QuestionMeta(BaseModel):
    level: Literal["SSC", "HSC"]
    group: Literal["SCIENCE", "ARTS", "COMMERCE"]
    subject: NamedRef
    # None means "unassigned"
    mainChapter: Optional[NamedRef] = None

    @field_validator("level", mode="before")
    @classmethod
    def _upper_level(cls, value: Any) -> Any:
        return value.strip().upper() if isinstance(value, str) else value

    @field_validator("group", mode="before")
    @classmethod
    def _normalize_group(cls, value: Any) -> Any:
        if not isinstance(value, str):
            return value
        group = value.strip().upper()
        return _GROUP_ALIASES.get(group, group)


class QuestionSource(BaseModel):
    sourceType: Literal["BOARD", "AI", "INSTITUTION"]
    source: str = ""
    year: int
    board: Optional[str] = None
    examType: Optional[str] = None

    @field_validator("sourceType", mode="before")
    @classmethod
    def _upper_source_type(cls, value: Any) -> Any:
        return value.strip().upper() if isinstance(value, str) else value

    @field_validator("board", mode="before")
    @classmethod
    def _normalize_board(cls, value: Any) -> Any:
        if not isinstance(value, str) or not value.strip():
            return None
        name = value.strip()
        if name.lower().endswith(" board"):
            name = name[: -len(" board")]
        for board in BOARDS:
            if board.lower() == name.lower():
                return board
        raise ValueError(f"unknown board '{value}'")

    @field_validator("year")
    @classmethod
    def _year_in_range(cls, value: int) -> int:
        latest = datetime.now().year + 5
        if value < 2010 or value > latest:
            raise ValueError(f"year must be between 2010 and {latest}")
        return value

    @model_validator(mode="after")
    def _conditional_fields(self):
        if self.sourceType == "BOARD" and not self.board:
            raise ValueError("board is required when sourceType is BOARD")
        if self.sourceType == "INSTITUTION" and not (self.examType or "").strip():
            raise ValueError("examType is required when sourceType is INSTITUTION")
        return self


class Aliases(BaseModel):
    en: str = ""
    bn: str = ""
    banglish: str = ""

    @field_validator("*", mode="before")
    @classmethod
    def _join_lists(cls, value: Any) -> Any:
        # Extraction metadata sends alias lists; the record keeps one string
        if isinstance(value, list):
            return ", ".join(str(item) for item in value if item)
        return "" if value is None else value


class Tags(BaseModel):
    en: List[str] = Field(default_factory=list)
    bn: List[str] = Field(default_factory=list)


class QuestionCreate(BaseModel):
    """A creative question as validated before it is written."""

    model_config = ConfigDict(extra="ignore")

    stem: List[ContentBlock] = Field(..., min_length=1)
    a: QuestionPart
    b: QuestionPart
    c: QuestionPart
    d: QuestionPart
    meta: QuestionMeta
    source: QuestionSource
    aliases: Aliases = Field(default_factory=Aliases)
    tags: Tags = Field(default_factory=Tags)

    def to_document(self) -> Dict[str, Any]:
        """Dumps the question with ids converted to ObjectId for MongoDB."""
        document = self.model_dump(by_alias=True)

        meta = document["meta"]
        meta["subject"]["_id"] = ObjectId(meta["subject"]["_id"])
        if meta.get("mainChapter"):
            meta["mainChapter"]["_id"] = ObjectId(meta["mainChapter"]["_id"])

        for key in PART_MARKS:
            part = document[key]
            if part.get("chapter"):
                part["chapter"] = ObjectId(part["chapter"])
            for topic in part["topics"]:
                topic["topicId"] = ObjectId(topic["topicId"])
            for type_ref in part["types"]:
                type_ref["typeId"] = ObjectId(type_ref["typeId"])
        return document


class ExtractedMetadata(BaseModel):
    """Free-text taxonomy hints produced during bulk ingestion."""

    model_config = ConfigDict(extra="ignore")

    mainChapter: Optional[str] = None
    partChapters: Dict[str, Optional[str]] = Field(default_factory=dict)
    partTopics: Dict[str, List[str]] = Field(default_factory=dict)
    board: Optional[str] = None
    aliases: Dict[str, Any] = Field(default_factory=dict)
    tags: Dict[str, List[str]] = Field(default_factory=dict)


class IngestRequest(BaseModel):
    """Builds a question from an extracted set plus taxonomy hints."""

    question: ExtractedQuestionSet
    answers: Optional[List[AnswerGroup]] = None
    extracted_metadata: ExtractedMetadata = Field(default_factory=ExtractedMetadata)
    subject_id: ObjectIdStr
    source: Dict[str, Any]
    level: Optional[str] = None
    group: Optional[str] = None
    marks: Dict[str, float] = Field(default_factory=lambda: dict(PART_MARKS))

    @field_validator("answers")
    @classmethod
    def _two_answer_groups(cls, value):
        if value is not None and len(value) != 2:
            raise ValueError("answers must hold the English and Bangla groups")
        return value


class SearchRequest(BaseModel):
    query: Union[str, Dict[str, Any]]
    top_k: Optional[int] = 5
    kind: Literal["question", "topic"] = "question"
    subject_id: Optional[str] = None
    hydrate: bool = False


class SearchResponse(BaseModel):
    results: List[RankedResult]
    count: int


class ReconcileReport(BaseModel):
    checked: int = 0
    repaired: int = 0
    removed: int = 0
    failed: int = 0
