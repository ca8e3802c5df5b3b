import logging
from typing import List, Optional, AsyncIterator

import google.generativeai as genai
from google.generativeai import GenerationConfig

from . import config
from .errors import UpstreamGenerationError

logger = logging.getLogger(__name__)


class GeminiClient:
    """
    Thin async wrapper around google.generativeai.

    The model gives no structured-output guarantee here; callers get raw text
    and run it through ``teamflow.parsing``. Any SDK failure surfaces as
    UpstreamGenerationError. No retries and no explicit timeout: SDK defaults apply.
    """

    def __init__(self, api_key: Optional[str] = None, model_name: Optional[str] = None,
                 temperature: float = 0.6):
        self.api_key = api_key if api_key is not None else config.GOOGLE_API_KEY
        self.model_name = model_name or config.GEMINI_MODEL
        self.temperature = temperature
        self._model = None

    def _get_model(self):
        if self._model is None:
            if not self.api_key:
                logger.warning("⚠️ GOOGLE_API_KEY is not set; Gemini calls cannot be made.")
                raise UpstreamGenerationError("Generative model is not configured")
            genai.configure(api_key=self.api_key)
            self._model = genai.GenerativeModel(
                self.model_name,
                generation_config=GenerationConfig(temperature=self.temperature),
            )
        return self._model

    async def generate(self, prompt: str) -> str:
        """Single-shot completion; returns the full response text."""
        model = self._get_model()
        try:
            response = await model.generate_content_async(prompt)
            return response.text
        except Exception as e:
            logger.error(f"❌ Gemini call failed: {e}")
            raise UpstreamGenerationError("Failed to generate content") from e

    async def stream(self, prompt: str) -> AsyncIterator[str]:
        """Yield text increments as the model produces them."""
        model = self._get_model()
        try:
            response = await model.generate_content_async(prompt, stream=True)
            async for chunk in response:
                try:
                    text = chunk.text
                except ValueError:
                    # chunk without text parts (e.g. a safety/finish marker)
                    continue
                if text:
                    yield text
        except Exception as e:
            logger.error(f"❌ Gemini stream failed: {e}")
            raise UpstreamGenerationError("Streaming error") from e

    def list_models(self) -> List[str]:
        """Names of the models that support generateContent."""
        if not self.api_key:
            raise UpstreamGenerationError("Generative model is not configured")
        genai.configure(api_key=self.api_key)
        try:
            return [
                m.name for m in genai.list_models()
                if "generateContent" in m.supported_generation_methods
            ]
        except Exception as e:
            logger.error(f"❌ Listing Gemini models failed: {e}")
            raise UpstreamGenerationError("Failed to list models") from e
