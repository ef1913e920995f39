from abc import ABC, abstractmethod
from typing import List, Optional

from logger import get_logger
from utils.prompt import PromptService
from utils.response_format import ImagePart

logger = get_logger(__name__)


class VisionLLMService(ABC):
    """A multimodal model that reads page images and answers with text."""

    @abstractmethod
    async def generate_from_images(
        self, image_parts: List[ImagePart], prompt: str
    ) -> str:
        """
        Sends the images and the prompt in a single request.

        Args:
            image_parts: Base64-encoded images, in page order.
            prompt: Instructions for the model.

        Returns:
            The raw text the model produced.
        """
        pass

    @abstractmethod
    async def health(self) -> bool:
        """True when the model endpoint answers; reported by GET /health."""
        pass

    async def extract_question_text(
        self,
        image_parts: List[ImagePart],
        num_blocks: Optional[int] = None,
        custom_instructions: Optional[str] = None,
    ) -> str:
        prompt = PromptService.with_options(
            PromptService.get_extract_questions_prompt(),
            num_blocks=num_blocks,
            custom_instructions=custom_instructions,
        )
        logger.debug(f"Extracting questions from {len(image_parts)} image(s)")
        return await self.generate_from_images(image_parts, prompt)

    async def extract_answer_text(
        self,
        image_parts: List[ImagePart],
        custom_instructions: Optional[str] = None,
    ) -> str:
        prompt = PromptService.with_options(
            PromptService.get_extract_answers_prompt(),
            custom_instructions=custom_instructions,
        )
        logger.debug(f"Extracting answers from {len(image_parts)} image(s)")
        return await self.generate_from_images(image_parts, prompt)
