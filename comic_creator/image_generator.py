"""
Comic Creator — Panel Image Generator.

Generates panel artwork (and marketing artwork) with the Gemini image
model. The model sometimes answers with text instead of an image; that
is treated as transient and retried, up to MAX_ATTEMPTS calls in total.

Speech bubbles and captions are composited later by the page renderer,
so every prompt forbids text inside the artwork.
"""

import logging
from typing import Optional

from comic_creator import config
from comic_creator.errors import ImageGenerationError
from comic_creator.gemini_client import GeminiClient
from comic_creator.models import MarketingAssetType, PanelSpec, StylePreset

logger = logging.getLogger(__name__)

# Fixed attempt budget per image
MAX_ATTEMPTS = 3

PANEL_PROMPT = """Generate an image for a comic book panel.
Style Description: {style_name} - {style_description}.
{character_info}
Scene Description: {scene}.

Requirements:
- High quality, detailed, cinematic lighting.
- NO TEXT, NO SPEECH BUBBLES inside the artwork.
- STRICTLY RETURN AN IMAGE. Do not provide textual commentary."""

STYLE_REFERENCE_NOTE = (
    "\nStyle Reference: USE THE ATTACHED IMAGE AS A STRICT STYLE REFERENCE "
    "for line art style, color palette, and mood."
)

INTRO_PAGE_PROMPT = """Create a cinematic, high-quality comic book cover/intro page art.
Title concept: "{title}".
Author: "{author}".
Style: {style_name} ({style_description}).
Character: {character}.
Epic pose, dramatic lighting, vertical composition (Aspect Ratio 3:4).
Integrate the Title visually if possible, or leave space for it."""

BOX_MOCKUP_PROMPT = """Product photography, 3D render of a collector's box set for a comic book.
The box should have the comic art style: {style_name}.
Title on box: "{title}".
Isometric view, studio lighting, white background.
High quality, photorealistic 3D mockup."""

BOX_COVER_NOTE = "\nUse the attached image as the cover art on the box."

ASPECT_RATIOS = {
    MarketingAssetType.INTRO_PAGE: "3:4",
    MarketingAssetType.BOX_MOCKUP: "1:1",
}


def build_panel_prompt(
    panel: PanelSpec,
    style: StylePreset,
    character_name: str = "",
    has_style_reference: bool = False,
) -> str:
    character_info = (
        f"Main character is {character_name}. Keep appearance consistent."
        if character_name else ""
    )
    prompt = PANEL_PROMPT.format(
        style_name=style.name,
        style_description=style.description,
        character_info=character_info,
        scene=panel.visual_description,
    )
    if has_style_reference:
        prompt += STYLE_REFERENCE_NOTE
    return prompt


class PanelImageGenerator:
    """Generates comic panel images via the Gemini image model."""

    def __init__(self, client: Optional[GeminiClient] = None, model: str = config.IMAGE_MODEL):
        self._client = client
        self.model = model

    def _get_client(self) -> GeminiClient:
        if self._client is None:
            self._client = GeminiClient()
        return self._client

    async def close(self):
        if self._client is not None:
            await self._client.close()

    async def generate_panel_image(
        self,
        panel: PanelSpec,
        style: StylePreset,
        character_name: str = "",
        style_reference: Optional[str] = None,
    ) -> str:
        """
        Generate artwork for one panel.

        Args:
            panel: Panel spec (visual_description drives the scene)
            style: Style preset
            character_name: Main character kept consistent across panels
            style_reference: Optional data URL used as a strict style guide

        Returns:
            Data URL of the generated image

        Raises:
            ImageGenerationError: no image after MAX_ATTEMPTS calls
        """
        prompt = build_panel_prompt(panel, style, character_name, bool(style_reference))
        references = (style_reference,) if style_reference else ()
        logger.info(
            f"Generating panel {panel.panel_number}: {panel.visual_description[:60]}..."
        )
        return await self._generate_with_retry(
            prompt,
            references=references,
            label=f"panel {panel.panel_number}",
        )

    async def generate_marketing_asset(
        self,
        asset_type: MarketingAssetType,
        title: str,
        style: StylePreset,
        character_name: str = "",
        cover_image: Optional[str] = None,
        author: str = "",
    ) -> str:
        """
        Generate an intro page (3:4) or a box-set mockup (1:1).

        For BOX_MOCKUP, cover_image (a rendered cover as data URL) is
        attached and used as the box art.
        """
        references = ()
        if asset_type == MarketingAssetType.INTRO_PAGE:
            prompt = INTRO_PAGE_PROMPT.format(
                title=title,
                author=author or "Unknown",
                style_name=style.name,
                style_description=style.description,
                character=character_name,
            )
        else:
            prompt = BOX_MOCKUP_PROMPT.format(style_name=style.name, title=title)
            if cover_image:
                prompt += BOX_COVER_NOTE
                references = (cover_image,)

        logger.info(f"Generating marketing asset {asset_type.value} for '{title}'")
        return await self._generate_with_retry(
            prompt,
            references=references,
            aspect_ratio=ASPECT_RATIOS[asset_type],
            label=asset_type.value,
        )

    async def _generate_with_retry(
        self,
        prompt: str,
        references: tuple = (),
        aspect_ratio: Optional[str] = None,
        label: str = "image",
    ) -> str:
        """Call the model up to MAX_ATTEMPTS times until it returns an image."""
        client = self._get_client()
        last_error: Optional[Exception] = None

        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                image_url = await client.generate_image(
                    prompt,
                    reference_images=references,
                    aspect_ratio=aspect_ratio,
                    model=self.model,
                )
            except Exception as e:
                logger.warning(f"Attempt {attempt}/{MAX_ATTEMPTS} error for {label}: {e}")
                last_error = e
                continue

            if image_url:
                return image_url
            logger.warning(
                f"Attempt {attempt}/{MAX_ATTEMPTS}: model returned no image data for {label}"
            )

        message = f"Failed to generate {label} after {MAX_ATTEMPTS} attempts"
        if last_error is not None:
            raise ImageGenerationError(f"{message}: {last_error}") from last_error
        raise ImageGenerationError(f"{message} (no image data found)")
