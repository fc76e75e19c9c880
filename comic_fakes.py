"""
Test doubles for the comic creator.

Stand-ins for the Gemini-backed generators and the project store so the
pipeline can be exercised without API keys or network access.
"""

import io

from PIL import Image

from comic_creator.data_urls import to_data_url
from comic_creator.errors import ImageGenerationError, PersistenceError, ScriptGenerationError
from comic_creator.models import PanelSpec, PanelStatus, Story, TERMINAL_STATUSES


def make_image_url(color=(120, 80, 60), size=(64, 48), fmt="PNG") -> str:
    """Small solid-colour image as a data URL."""
    buffer = io.BytesIO()
    Image.new("RGB", size, color=color).save(buffer, format=fmt)
    mime = "image/png" if fmt == "PNG" else "image/jpeg"
    return to_data_url(buffer.getvalue(), mime)


def make_specs(count: int, start: int = 1) -> list[PanelSpec]:
    return [
        PanelSpec(
            panel_number=n,
            visual_description=f"Scene {n}: a cat in a trench coat under a street lamp",
            dialogue=f"Line {n}",
            caption=f"Caption {n}" if n % 2 == 0 else None,
            character="Whiskers",
        )
        for n in range(start, start + count)
    ]


class FakeScriptGenerator:
    """Returns page_count * layout panels (or a fixed list) without a model."""

    def __init__(self, title="The Cat Detective", panels=None, fail=False):
        self.title = title
        self.panels = panels
        self.fail = fail
        self.calls = []

    async def generate_script(self, prompt, style, page_count, layout,
                              character_name="", language="pl"):
        self.calls.append(("script", prompt, page_count, layout))
        if self.fail:
            raise ScriptGenerationError("model unavailable")
        panels = self.panels if self.panels is not None else make_specs(page_count * layout)
        return Story(title=self.title, panels=list(panels), id="story-1", created_at=1000)

    async def extend_script(self, existing_panels, title, style, new_page_count, layout,
                            character_name="", language="pl"):
        self.calls.append(("extend", len(existing_panels), new_page_count, layout))
        if self.fail:
            raise ScriptGenerationError("model unavailable")
        return make_specs(new_page_count * layout, start=len(existing_panels) + 1)

    async def generate_dialogue_suggestions(self, panel, style, language="pl"):
        return [{"type": "Standard", "text": f"Option for {panel.panel_number}"}]

    async def generate_story_idea(self, language="pl"):
        return "A detective cat solving a mystery in New York."

    async def generate_character_name(self, description, style, language="pl"):
        return "Whiskers"

    async def close(self):
        pass


class FakeImageGenerator:
    """
    Records call order and checks, at call time, that every lower-numbered
    panel of the pipeline is already terminal.
    """

    def __init__(self, fail_panels=()):
        self.fail_panels = set(fail_panels)
        self.pipeline = None
        self.calls = []
        self.active = 0
        self.max_active = 0
        self.order_violations = []
        self.seen_images = {}
        self.marketing_calls = []

    async def generate_panel_image(self, panel, style, character_name="", style_reference=None):
        self.calls.append(panel.panel_number)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.pipeline is not None:
                current = {p.panel_number: p for p in self.pipeline.panels}
                self.seen_images[panel.panel_number] = current[panel.panel_number].image_url
                assert current[panel.panel_number].status == PanelStatus.GENERATING
                for number, p in current.items():
                    if number < panel.panel_number and p.status not in TERMINAL_STATUSES:
                        self.order_violations.append((panel.panel_number, number))
            if panel.panel_number in self.fail_panels:
                raise ImageGenerationError(f"Failed to generate panel {panel.panel_number} after 3 attempts")
            return make_image_url(color=(panel.panel_number * 20 % 255, 90, 140))
        finally:
            self.active -= 1

    async def generate_marketing_asset(self, asset_type, title, style, character_name="",
                                       cover_image=None, author=""):
        self.marketing_calls.append((asset_type, title, cover_image))
        if "marketing" in self.fail_panels:
            raise ImageGenerationError("no image data")
        if "marketing-crash" in self.fail_panels:
            raise RuntimeError("connection reset")
        return make_image_url(color=(10, 200, 10))

    async def close(self):
        pass


class MemoryStore:
    """Dict-backed ProjectStore stand-in that counts writes."""

    def __init__(self, fail=False):
        self.projects = {}
        self.puts = []
        self.fail = fail

    def put(self, project):
        if self.fail:
            raise PersistenceError("disk full")
        self.puts.append(project.copy())
        self.projects[project.id] = project.copy()

    def get(self, project_id):
        project = self.projects.get(project_id)
        return project.copy() if project else None

    def get_all(self):
        return sorted(self.projects.values(), key=lambda p: p.updated_at, reverse=True)

    def delete(self, project_id):
        self.projects.pop(project_id, None)


class FakeGeminiClient:
    """Replays queued text / image responses; an Exception entry is raised."""

    def __init__(self, texts=(), images=()):
        self.texts = list(texts)
        self.images = list(images)
        self.text_calls = []
        self.image_calls = []

    async def generate_text(self, contents, model=None, system_instruction=None,
                            response_schema=None, temperature=None):
        self.text_calls.append({
            "contents": contents,
            "system_instruction": system_instruction,
            "response_schema": response_schema,
            "temperature": temperature,
        })
        result = self.texts.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    async def generate_image(self, prompt, reference_images=(), aspect_ratio=None, model=None):
        self.image_calls.append({
            "prompt": prompt,
            "reference_images": tuple(reference_images),
            "aspect_ratio": aspect_ratio,
        })
        result = self.images.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    async def close(self):
        pass
