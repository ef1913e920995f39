import re
from typing import Any, Dict, List, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


PART_KEYS = ("a", "b", "c", "d")
ANSWER_KEYS = ("aAnswer", "bAnswer", "cAnswer", "dAnswer")

# Labels printed on Bangladeshi papers, mapped to the uniform keys
BENGALI_PART_LABELS = {"ক": "a", "খ": "b", "গ": "c", "ঘ": "d"}

_BENGALI_CHARS = re.compile(r"[\u0980-\u09FF]")


def contains_bengali(text: str) -> bool:
    return bool(text) and bool(_BENGALI_CHARS.search(text))


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return str(value)


class ImagePart(BaseModel):
    """One base64-encoded image handed to the vision model."""

    mime_type: str
    data: str = Field(..., description="Base64-encoded image bytes")


class QuestionGroup(BaseModel):
    """Stem plus the four sub-questions of one Srijonshil question."""

    model_config = ConfigDict(extra="ignore")

    stem: str = ""
    a: str = ""
    b: str = ""
    c: str = ""
    d: str = ""

    @model_validator(mode="before")
    @classmethod
    def _uniform_keys(cls, raw: Any) -> Any:
        if not isinstance(raw, dict):
            return raw
        values: Dict[str, str] = {"stem": _as_text(raw.get("stem"))}
        for key, value in raw.items():
            label = str(key).strip().rstrip(".")
            mapped = BENGALI_PART_LABELS.get(label, label.lower())
            if mapped in PART_KEYS and not values.get(mapped):
                values[mapped] = _as_text(value)
        return values

    @classmethod
    def from_raw(cls, raw: Dict[str, Any]) -> "QuestionGroup":
        return cls.model_validate(raw)


class ExtractedQuestionSet(BaseModel):
    """An extracted question and its translated sibling."""

    original: QuestionGroup
    translated: QuestionGroup

    @property
    def source_language(self) -> Literal["en", "bn"]:
        return "bn" if contains_bengali(self.original.stem) else "en"

    def by_language(self) -> Dict[str, QuestionGroup]:
        """Returns {"en": group, "bn": group} based on the stem's script."""
        if self.source_language == "bn":
            return {"en": self.translated, "bn": self.original}
        return {"en": self.original, "bn": self.translated}


class AnswerGroup(BaseModel):
    model_config = ConfigDict(extra="ignore")

    aAnswer: str = ""
    bAnswer: str = ""
    cAnswer: str = ""
    dAnswer: str = ""

    @field_validator("*", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        return _as_text(value)

    @classmethod
    def from_raw(cls, raw: Dict[str, Any]) -> "AnswerGroup":
        values = {}
        for key, value in raw.items():
            label = str(key).strip()
            # "কAnswer" style keys slip through now and then
            if label[:1] in BENGALI_PART_LABELS:
                label = BENGALI_PART_LABELS[label[:1]] + label[1:]
            if label in ANSWER_KEYS:
                values[label] = value
        return cls(**values)

    def for_part(self, part: str) -> str:
        return getattr(self, f"{part}Answer")


def flatten_question_sets(sets: List[ExtractedQuestionSet]) -> List[Dict[str, str]]:
    """Returns the original/translated pairs as one even-length list."""
    records: List[Dict[str, str]] = []
    for question_set in sets:
        records.append(question_set.original.model_dump())
        records.append(question_set.translated.model_dump())
    return records


class RankedResult(BaseModel):
    ref_id: str
    kind: str
    score: float
    rank: int
    payload: Dict[str, Any] = Field(default_factory=dict)
