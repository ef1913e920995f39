from typing import List, Optional

import httpx

from logger import get_logger
from services.llm_service import VisionLLMService
from utils.response_format import ImagePart

logger = get_logger(__name__)


class OpenRouterLLMService(VisionLLMService):
    def __init__(
        self,
        api_key: str,
        base_url: str,
        model: str,
        temperature: float = 0.2,
        referer: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the LLM service with OpenRouter."""
        if not api_key:
            raise ValueError("OPENROUTER_API_KEY not found in environment variables")

        self.api_key = api_key
        self.base_url = base_url
        self.model = model
        self.temperature = temperature
        self.referer = referer
        self.client = client or httpx.AsyncClient(timeout=None)

    def _headers(self):
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        if self.referer:
            headers["HTTP-Referer"] = self.referer
        return headers

    async def health(self) -> bool:
        """Checks if the OpenRouter API is accessible."""
        models_url = self.base_url.rsplit("/chat/completions", 1)[0] + "/models"
        try:
            response = await self.client.get(
                models_url, headers=self._headers(), timeout=10
            )
            return response.is_success
        except httpx.HTTPError as e:
            logger.error(f"Health check failed: {e}")
            return False

    async def generate_from_images(
        self, image_parts: List[ImagePart], prompt: str
    ) -> str:
        content = [{"type": "text", "text": prompt}]
        for part in image_parts:
            content.append(
                {
                    "type": "image_url",
                    "image_url": {"url": f"data:{part.mime_type};base64,{part.data}"},
                }
            )

        payload = {
            "model": self.model,
            "messages": [{"role": "user", "content": content}],
            "temperature": self.temperature,
        }

        logger.debug("Generating response -- Open Router")
        response = await self.client.post(
            self.base_url, headers=self._headers(), json=payload
        )
        if not response.is_success:
            raise RuntimeError(f"LLM API Error {response.status_code}: {response.text}")

        event = response.json()
        return event["choices"][0]["message"]["content"]

    async def close(self):
        await self.client.aclose()
