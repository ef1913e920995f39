"""Turns photographed question and answer sheets into structured records.

Each call sends every image to the vision model in one request, repairs
the JSON it returns and checks its shape. Uploaded files are deleted once
the call finishes, whatever the outcome.
"""

import asyncio
from typing import Any, Dict, List, Optional

from errors import ExtractionFailed, InvalidResponseFormat, ServiceError, ValidationError
from logger import get_logger
from services.llm_service import VisionLLMService
from utils.common import parse_model_json, timing_decorator
from utils.file_util import cleanup_files, read_image_parts
from utils.response_format import (
    AnswerGroup,
    ExtractedQuestionSet,
    QuestionGroup,
    flatten_question_sets,
)

logger = get_logger(__name__)


def build_question_sets(parsed: Any) -> List[ExtractedQuestionSet]:
    """Pairs consecutive (original, translated) objects."""
    if not isinstance(parsed, list):
        raise InvalidResponseFormat(
            f"Expected a JSON array of questions, got {type(parsed).__name__}"
        )
    if not all(isinstance(item, dict) for item in parsed):
        raise InvalidResponseFormat("Every extracted question must be a JSON object")
    if len(parsed) % 2 != 0:
        raise InvalidResponseFormat(
            f"Expected original/translated pairs, got {len(parsed)} objects"
        )

    return [
        ExtractedQuestionSet(
            original=QuestionGroup.from_raw(parsed[i]),
            translated=QuestionGroup.from_raw(parsed[i + 1]),
        )
        for i in range(0, len(parsed), 2)
    ]


def build_answer_groups(parsed: Any) -> List[AnswerGroup]:
    """Returns [english, bangla] answer groups."""
    if not isinstance(parsed, list) or len(parsed) != 2:
        size = len(parsed) if isinstance(parsed, list) else type(parsed).__name__
        raise InvalidResponseFormat(
            f"Expected exactly two answer objects (English, Bangla), got {size}"
        )
    if not all(isinstance(item, dict) for item in parsed):
        raise InvalidResponseFormat("Every answer group must be a JSON object")
    return [AnswerGroup.from_raw(item) for item in parsed]


class ExtractionService:
    def __init__(self, llm_service: VisionLLMService, timeout: float = 120.0):
        self.llm_service = llm_service
        self.timeout = timeout

    async def _call_model(self, image_paths: List[str], request) -> Any:
        try:
            if not image_paths:
                raise ValidationError("At least one image is required")

            image_parts = await read_image_parts(image_paths)
            try:
                raw_text = await asyncio.wait_for(
                    request(image_parts), timeout=self.timeout
                )
            except asyncio.TimeoutError as e:
                logger.error(f"Vision model timed out after {self.timeout}s")
                raise ExtractionFailed(
                    f"Vision model did not answer within {self.timeout} seconds"
                ) from e
            except ServiceError:
                raise
            except Exception as e:
                logger.exception(f"Vision model call failed: {e}")
                raise ExtractionFailed(f"Vision model call failed: {e}") from e

            return parse_model_json(raw_text)
        finally:
            await cleanup_files(image_paths)

    @timing_decorator
    async def extract_questions(
        self,
        image_paths: List[str],
        num_blocks: Optional[int] = None,
        custom_instructions: Optional[str] = None,
    ) -> List[ExtractedQuestionSet]:
        parsed = await self._call_model(
            image_paths,
            lambda parts: self.llm_service.extract_question_text(
                parts, num_blocks=num_blocks, custom_instructions=custom_instructions
            ),
        )
        question_sets = build_question_sets(parsed)
        logger.info(f"Extracted {len(question_sets)} question set(s)")
        if num_blocks and len(question_sets) != num_blocks:
            logger.warning(
                f"Expected {num_blocks} question set(s), model returned {len(question_sets)}"
            )
        return question_sets

    async def extract_question_records(
        self,
        image_paths: List[str],
        num_blocks: Optional[int] = None,
        custom_instructions: Optional[str] = None,
    ) -> List[Dict[str, str]]:
        """Same as extract_questions, flattened to [original, translated, ...]."""
        question_sets = await self.extract_questions(
            image_paths, num_blocks=num_blocks, custom_instructions=custom_instructions
        )
        return flatten_question_sets(question_sets)

    @timing_decorator
    async def extract_answers(
        self,
        image_paths: List[str],
        custom_instructions: Optional[str] = None,
    ) -> List[AnswerGroup]:
        parsed = await self._call_model(
            image_paths,
            lambda parts: self.llm_service.extract_answer_text(
                parts, custom_instructions=custom_instructions
            ),
        )
        return build_answer_groups(parsed)
