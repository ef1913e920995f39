import asyncio
import base64
from typing import List

import google.generativeai as genai

from logger import get_logger
from services.llm_service import VisionLLMService
from utils.response_format import ImagePart

logger = get_logger(__name__)


class GeminiLLMService(VisionLLMService):
    def __init__(
        self,
        api_key: str,
        model_name: str = "gemini-2.5-flash",
        temperature: float = 0.2,
        max_output_tokens: int = 16384,
    ):
        """Initialize the LLM service with Gemini API client."""
        if not api_key:
            raise ValueError("GEMINI_API_KEY not found in environment variables")

        genai.configure(api_key=api_key)

        self.model_name = model_name
        self.model = genai.GenerativeModel(self.model_name)
        self.generation_config = {
            "temperature": temperature,
            "max_output_tokens": max_output_tokens,
            "response_mime_type": "application/json",
        }

    async def list_models(self) -> List[str]:
        """Lists available Gemini models."""

        def _list():
            return [
                m.name
                for m in genai.list_models()
                if "generateContent" in m.supported_generation_methods
            ]

        return await asyncio.to_thread(_list)

    async def health(self) -> bool:
        """Checks if the Gemini API is accessible."""
        try:
            await self.list_models()
            return True
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            return False

    async def generate_from_images(
        self, image_parts: List[ImagePart], prompt: str
    ) -> str:
        contents = [
            {"mime_type": part.mime_type, "data": base64.b64decode(part.data)}
            for part in image_parts
        ]
        contents.append(prompt)

        logger.debug(f"Prompt: {prompt[:100]}...")
        response = await self.model.generate_content_async(
            contents,
            generation_config=self.generation_config,
        )
        return response.text
