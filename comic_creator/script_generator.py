"""
Comic Creator — Script Generator.

Takes a story prompt and uses Gemini to write a structured comic script:
a title plus panel-by-panel visual descriptions, dialogue and captions.
Also writes continuation panels for an existing story, and the small
helper texts the editor offers (story idea, hero name, dialogue options).

Output: Story / list[PanelSpec] ready for image generation.
"""

import json
import logging
from typing import Optional

from comic_creator import config
from comic_creator.errors import ScriptGenerationError
from comic_creator.gemini_client import GeminiClient
from comic_creator.models import PanelSpec, Panel, Story, StylePreset, new_project_id, now_ms

logger = logging.getLogger(__name__)

# Number of trailing panels summarised for an extension
CONTEXT_PANELS = 3

SCRIPT_PROMPT = """You are a comic book author.
Task: Create a comic script with {total_panels} panels, spread over {page_count} pages ({layout} per page).
Style: {style_name} ({style_description}).
{character_context}

REQUIREMENTS:
1. visual_description (ENGLISH): Describe the scene, character appearance, and setting for the Artist (AI).
2. dialogue ({lang_upper}): What characters say.
3. caption ({lang_upper}): Narrative description.
4. title ({lang_upper}): Title of the story.

The story must be coherent, having a beginning, middle, and end."""

EXTEND_PROMPT = """You are a comic book author continuing an existing story.
Title: "{title}"
Style: {style_name}
{character_context}

CONTEXT (Last {context_count} panels):
{recent_panels}

TASK:
Continue the story by generating {panels_to_add} NEW panels.
Start numbering from Panel {start_number}.

REQUIREMENTS:
1. visual_description (ENGLISH): Describe scene for AI Artist.
2. dialogue ({lang_upper}).
3. caption ({lang_upper})."""

DIALOGUE_PROMPT = """You are a comic dialogue editor.
Task: Generate 3 distinct dialogue options for a comic panel.

Panel Visuals: "{visual}"
Current Dialogue: "{dialogue}"
Character: "{character}"
Style: {style_name}
Language: {lang_name}

Return 3 options:
1. Standard/Consistent: Fits the story perfectly.
2. Dramatic/Intense: More emotional or action-packed.
3. Funny/Witty: A lighter or humorous take (if appropriate)."""

IDEA_MARKET_CONTEXT = (
    "Focus on high-concept, catchy themes popular in the USA market (e.g., Hollywood "
    "blockbusters, trending Netflix series, classic superhero tropes, or dark horse indie "
    "vibes). The idea should sound like a bestseller pitch."
)

IDEA_PROMPTS = {
    "pl": (
        "Wymyśl jeden kreatywny, chwytliwy pomysł na komiks, bazując na trendach z USA. "
        f"{IDEA_MARKET_CONTEXT} Zwróć tylko treść pomysłu w jednym lub dwóch zdaniach po polsku."
    ),
    "en": (
        "Come up with one creative, catchy comic book idea based on US market trends. "
        f"{IDEA_MARKET_CONTEXT} Return only the idea content in one or two sentences in English."
    ),
}

# Used when the model returns nothing / errors
FALLBACK_IDEAS = {
    "pl": "Kot detektyw rozwiązuje zagadkę w Nowym Jorku.",
    "en": "A detective cat solving a mystery in New York.",
}
FALLBACK_NAMES = {"pl": "Nieznajomy", "en": "Stranger"}
ERROR_NAME = "Hero"

LANGUAGE_NAMES = {"pl": "Polish", "en": "English"}


def _panel_item_schema(lang_name: str) -> dict:
    return {
        "type": "OBJECT",
        "properties": {
            "panel_number": {"type": "INTEGER"},
            "visual_description": {
                "type": "STRING",
                "description": (
                    "Detailed visual description of the scene for an IMAGE GENERATOR in "
                    "ENGLISH. Describe characters, lighting, action. Square or 4:3 aspect ratio."
                ),
            },
            "dialogue": {"type": "STRING", "description": f"Character dialogue in {lang_name}."},
            "character": {"type": "STRING", "description": "Name of the speaking character (if any)."},
            "caption": {
                "type": "STRING",
                "description": f"Narrative caption describing what is happening, in {lang_name}.",
            },
        },
        "required": ["panel_number", "visual_description"],
    }


def story_schema(total_panels: int, language: str) -> dict:
    """Response schema for a fresh script."""
    lang_name = LANGUAGE_NAMES.get(language, "English")
    return {
        "type": "OBJECT",
        "properties": {
            "title": {"type": "STRING", "description": f"Catchy comic title in {lang_name}."},
            "panels": {
                "type": "ARRAY",
                "description": f"Array of comic panels. Generate exactly {total_panels} items.",
                "items": _panel_item_schema(lang_name),
            },
        },
        "required": ["title", "panels"],
    }


def extension_schema(panels_to_add: int, start_number: int, language: str) -> dict:
    """Response schema for continuation panels (a bare array)."""
    lang_name = LANGUAGE_NAMES.get(language, "English")
    return {
        "type": "ARRAY",
        "description": (
            f"Array of {panels_to_add} new comic panels starting from number {start_number}."
        ),
        "items": _panel_item_schema(lang_name),
    }


def summarize_recent_panels(panels: list, count: int = CONTEXT_PANELS) -> str:
    """One line per trailing panel: caption, speaker, dialogue and visual."""
    lines = []
    for p in panels[-count:]:
        speaker = f"{p.character}:" if p.character else ""
        lines.append(
            f"Panel {p.panel_number}: {p.caption or ''} {speaker} {p.dialogue or ''} "
            f"(Visual: {p.visual_description})"
        )
    return "\n".join(lines)


class ScriptGenerator:
    """Generates structured comic scripts via Gemini."""

    def __init__(self, client: Optional[GeminiClient] = None, model: str = config.SCRIPT_MODEL):
        self._client = client
        self.model = model

    def _get_client(self) -> GeminiClient:
        """Lazy-load the Gemini client."""
        if self._client is None:
            self._client = GeminiClient()
        return self._client

    async def close(self):
        if self._client is not None:
            await self._client.close()

    async def generate_script(
        self,
        prompt: str,
        style: StylePreset,
        page_count: int,
        layout: int,
        character_name: str = "",
        language: str = "pl",
    ) -> Story:
        """
        Generate a comic script from a story prompt.

        Args:
            prompt: Free-text story description
            style: Style preset (name + description go into the instruction)
            page_count: Number of pages
            layout: Panels per page
            character_name: Optional main character
            language: Output language for title, dialogue and captions

        Returns:
            Story with a fresh id and created_at (no images yet)

        Raises:
            ScriptGenerationError: service failure or unparsable output
        """
        total_panels = page_count * layout
        system_instruction = SCRIPT_PROMPT.format(
            total_panels=total_panels,
            page_count=page_count,
            layout=layout,
            style_name=style.name,
            style_description=style.description,
            character_context=self._character_context(character_name),
            lang_upper=LANGUAGE_NAMES.get(language, "English").upper(),
        )

        logger.info(f"Generating comic script ({total_panels} panels) for: {prompt[:80]}...")
        raw_text = await self._call(
            contents=prompt,
            system_instruction=system_instruction,
            response_schema=story_schema(total_panels, language),
            temperature=0.7,
        )

        data = self._parse_json(raw_text)
        if not isinstance(data, dict) or "title" not in data or "panels" not in data:
            raise ScriptGenerationError("Script response is missing title or panels")

        story = Story(
            title=str(data["title"]),
            panels=self._parse_panels(data["panels"]),
            id=new_project_id(),
            created_at=now_ms(),
        )
        if len(story.panels) != total_panels:
            logger.warning(
                f"Requested {total_panels} panels, model returned {len(story.panels)}"
            )

        logger.info(f"Comic script ready: '{story.title}' — {len(story.panels)} panels")
        return story

    async def extend_script(
        self,
        existing_panels: list[PanelSpec],
        title: str,
        style: StylePreset,
        new_page_count: int,
        layout: int,
        character_name: str = "",
        language: str = "pl",
    ) -> list[PanelSpec]:
        """
        Write continuation panels for an existing story.

        New panels are numbered from len(existing_panels) + 1. The last
        three panels are summarised as context for continuity.
        """
        panels_to_add = new_page_count * layout
        start_number = len(existing_panels) + 1
        recent = existing_panels[-CONTEXT_PANELS:]

        system_instruction = EXTEND_PROMPT.format(
            title=title,
            style_name=style.name,
            character_context=self._character_context(character_name),
            context_count=len(recent),
            recent_panels=summarize_recent_panels(recent),
            panels_to_add=panels_to_add,
            start_number=start_number,
            lang_upper=LANGUAGE_NAMES.get(language, "English").upper(),
        )

        logger.info(f"Extending '{title}' by {panels_to_add} panels from #{start_number}")
        raw_text = await self._call(
            contents="Continue the story.",
            system_instruction=system_instruction,
            response_schema=extension_schema(panels_to_add, start_number, language),
            temperature=0.7,
        )

        data = self._parse_json(raw_text)
        if not isinstance(data, list):
            raise ScriptGenerationError("Extension response is not a list of panels")
        return self._parse_panels(data)

    async def generate_story_idea(self, language: str = "pl") -> str:
        """One or two sentence story pitch. Never raises."""
        try:
            text = await self._get_client().generate_text(
                contents=IDEA_PROMPTS.get(language, IDEA_PROMPTS["en"]),
                model=self.model,
                temperature=1.0,
            )
        except Exception as e:
            logger.error(f"Story idea generation failed: {e}")
            return FALLBACK_IDEAS.get(language, FALLBACK_IDEAS["en"])
        return text or FALLBACK_IDEAS.get(language, FALLBACK_IDEAS["en"])

    async def generate_character_name(
        self,
        story_description: str,
        style: StylePreset,
        language: str = "pl",
    ) -> str:
        """A fitting main-character name. Never raises."""
        prompt = (
            f'Based on the following story description: "{story_description or "A generic cool story"}"\n'
            f'And the art style: "{style.name}"\n\n'
            f"Generate a cool, fitting name for the MAIN CHARACTER.\n"
            f"It should sound appealing to a US audience but written in "
            f"{LANGUAGE_NAMES.get(language, 'English')} alphabet (if applicable).\n"
            f'Return ONLY the name (e.g., "Jack Reacher" or "Neon-X"). No extra text.'
        )
        try:
            text = await self._get_client().generate_text(
                contents=prompt,
                model=self.model,
                temperature=1.0,
            )
        except Exception as e:
            logger.error(f"Character name generation failed: {e}")
            return ERROR_NAME
        name = text.replace('"', "").replace("'", "").strip()
        return name or FALLBACK_NAMES.get(language, FALLBACK_NAMES["en"])

    async def generate_dialogue_suggestions(
        self,
        panel: Panel,
        style: StylePreset,
        language: str = "pl",
    ) -> list[dict]:
        """Three dialogue options (type, text, caption?). Returns [] on failure."""
        system_instruction = DIALOGUE_PROMPT.format(
            visual=panel.visual_description,
            dialogue=panel.dialogue or "",
            character=panel.character or "Unknown",
            style_name=style.name,
            lang_name=LANGUAGE_NAMES.get(language, "English"),
        )
        schema = {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "type": {"type": "STRING", "description": "Type of option (e.g., Dramatic, Funny)"},
                    "text": {"type": "STRING", "description": "The dialogue text"},
                    "caption": {"type": "STRING", "description": "Optional narrative caption to go with it"},
                },
                "required": ["type", "text"],
            },
        }
        try:
            text = await self._get_client().generate_text(
                contents="Generate dialogue options.",
                model=self.model,
                system_instruction=system_instruction,
                response_schema=schema,
                temperature=0.8,
            )
            options = json.loads(self._extract_json(text) or "[]")
        except Exception as e:
            logger.error(f"Dialogue suggestions failed: {e}")
            return []
        if not isinstance(options, list):
            return []
        return [o for o in options if isinstance(o, dict) and o.get("text")]

    async def _call(self, **kwargs) -> str:
        """Invoke the model; any failure or empty answer becomes ScriptGenerationError."""
        try:
            text = await self._get_client().generate_text(model=self.model, **kwargs)
        except Exception as e:
            logger.error(f"Script generation call failed: {e}")
            raise ScriptGenerationError(f"Language model call failed: {e}") from e
        if not text:
            raise ScriptGenerationError("No text returned from model")
        return text

    def _parse_json(self, raw_text: str):
        try:
            return json.loads(self._extract_json(raw_text))
        except json.JSONDecodeError as e:
            raise ScriptGenerationError(f"Model output is not valid JSON: {e}") from e

    def _parse_panels(self, items) -> list[PanelSpec]:
        if not isinstance(items, list):
            raise ScriptGenerationError("Panels field is not a list")
        panels = []
        try:
            for item in items:
                spec = PanelSpec.from_dict(item)
                if not spec.visual_description.strip():
                    raise ValueError(f"panel {spec.panel_number} has no visual description")
                panels.append(spec)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise ScriptGenerationError(f"Malformed panel in script: {e}") from e
        return panels

    def _extract_json(self, text: str) -> str:
        """Extract JSON from model response, handling markdown fences."""
        if "```json" in text:
            text = text.split("```json", 1)[1]
            text = text.rsplit("```", 1)[0]
        elif "```" in text:
            text = text.split("```", 1)[1]
            text = text.rsplit("```", 1)[0]
        return text.strip()

    def _character_context(self, character_name: str) -> str:
        return f"Main character is: {character_name}." if character_name else ""
