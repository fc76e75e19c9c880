"""
Comic Creator — Gemini client.

Thin async wrapper over the google-genai SDK. Two call shapes are needed:
structured text (script, extension, suggestions) and image generation
(panels, marketing art). Retry policy lives in the callers.
"""

import logging
from typing import Optional

from google import genai
from google.genai import types

from comic_creator import config
from comic_creator.data_urls import parse_data_url, to_data_url

logger = logging.getLogger(__name__)


class GeminiClient:
    """Async access to Gemini text and image models."""

    def __init__(self, api_key: Optional[str] = None):
        self.api_key = api_key or config.GEMINI_API_KEY
        if not self.api_key:
            logger.warning("GEMINI_API_KEY not set — generation calls will fail")
        self._client: Optional[genai.Client] = None

    def _get_client(self) -> genai.Client:
        """Get or create the SDK client."""
        if self._client is None:
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    async def close(self):
        """Drop the SDK client."""
        self._client = None

    async def generate_text(
        self,
        contents: str,
        model: str = config.SCRIPT_MODEL,
        system_instruction: Optional[str] = None,
        response_schema: Optional[dict] = None,
        temperature: Optional[float] = None,
    ) -> str:
        """
        Generate text. With a response_schema the model is asked for JSON.

        Returns the stripped response text ("" if the model returned none).
        SDK/transport errors propagate.
        """
        generation_config = types.GenerateContentConfig(
            system_instruction=system_instruction,
            temperature=temperature,
            response_mime_type="application/json" if response_schema else None,
            response_schema=response_schema,
        )
        response = await self._get_client().aio.models.generate_content(
            model=model,
            contents=contents,
            config=generation_config,
        )
        return (response.text or "").strip()

    async def generate_image(
        self,
        prompt: str,
        reference_images: tuple = (),
        aspect_ratio: Optional[str] = None,
        model: str = config.IMAGE_MODEL,
    ) -> Optional[str]:
        """
        Generate one image.

        Args:
            prompt: Text instruction
            reference_images: Data URLs sent as inline parts before the text
            aspect_ratio: e.g. "3:4" (model default if None)

        Returns:
            Data URL of the first inline image, or None if the model
            answered with text only.
        """
        parts = []
        for ref in reference_images:
            mime_type, data = parse_data_url(ref)
            parts.append(types.Part.from_bytes(data=data, mime_type=mime_type))
        parts.append(types.Part.from_text(text=prompt))

        generation_config = None
        if aspect_ratio:
            generation_config = types.GenerateContentConfig(
                image_config=types.ImageConfig(aspect_ratio=aspect_ratio),
            )

        response = await self._get_client().aio.models.generate_content(
            model=model,
            contents=parts,
            config=generation_config,
        )

        candidates = response.candidates or []
        if not candidates or not candidates[0].content:
            return None
        for part in candidates[0].content.parts or []:
            inline = part.inline_data
            if inline and inline.data:
                return to_data_url(inline.data, inline.mime_type or "image/png")
        return None
