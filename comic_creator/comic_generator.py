"""
Comic Creator — Main Orchestrator.

ComicPipeline owns the current comic and drives it through:
  Prompt → Script → Panels (pending) → Images, one panel at a time

Panel state machine:
  pending → generating → completed | error
  error → generating only through regenerate_single_panel()

Every state change that matters is checkpointed to the ProjectStore as a
whole-project snapshot. Automatic checkpoints never interrupt generation;
only manual saves surface persistence errors.
"""

import asyncio
import logging
import math
import re
import threading
from typing import Callable, Optional

from comic_creator import config
from comic_creator.errors import (
    ExportError,
    PersistenceError,
    PipelineBusyError,
)
from comic_creator.image_generator import PanelImageGenerator
from comic_creator.models import (
    EDITABLE_FIELDS,
    LANGUAGES,
    LAYOUT_OPTIONS,
    TERMINAL_STATUSES,
    AssetStatus,
    ComicSettings,
    MarketingAsset,
    MarketingAssetType,
    Panel,
    PanelSpec,
    PanelStatus,
    Project,
    get_style,
    idle_marketing_assets,
    new_project_id,
    now_ms,
)
from comic_creator.panel_assembler import PanelAssembler
from comic_creator.project_store import ProjectStore
from comic_creator.script_generator import ScriptGenerator

logger = logging.getLogger(__name__)

# Pages an extension may add in one go
MAX_EXTENSION_PAGES = 5

SETTING_FIELDS = (
    "author", "logo", "style", "style_reference",
    "layout", "language", "character_name", "page_count",
)


def slugify(text: str) -> str:
    """Title → filesystem-safe name."""
    slug = re.sub(r"\s+", "_", text.strip())
    slug = re.sub(r"[^\w\-]", "", slug)
    return slug[:60] or "comic"


class ComicPipeline:
    """
    Stateful comic generation pipeline for one editing session.

    Usage:
        pipeline = ComicPipeline()
        project = await pipeline.run_full_generation(
            "A cat detective", page_count=1, layout=2,
        )
        await pipeline.extend(new_page_count=1)
        await pipeline.regenerate_single_panel(2)
    """

    def __init__(
        self,
        script_generator: Optional[ScriptGenerator] = None,
        image_generator: Optional[PanelImageGenerator] = None,
        store: Optional[ProjectStore] = None,
        assembler: Optional[PanelAssembler] = None,
        settings: Optional[ComicSettings] = None,
    ):
        self.script_generator = script_generator or ScriptGenerator()
        self.image_generator = image_generator or PanelImageGenerator()
        self.store = store or ProjectStore()
        self.assembler = assembler or PanelAssembler()
        self.settings = settings or ComicSettings()

        # Guards every read/write of the session state below
        self._lock = threading.RLock()
        self._running = False
        self._regenerating: set[int] = set()

        self.project_id = ""
        self.title = ""
        self.created_at = 0
        self.panels: list[Panel] = []
        self.marketing_assets = idle_marketing_assets()

    # ------------------------------------------------------------------
    # Session state
    # ------------------------------------------------------------------

    @property
    def is_busy(self) -> bool:
        with self._lock:
            return self._running or bool(self._regenerating)

    def snapshot(self) -> Optional[Project]:
        """
        Copy of the current project, or None if there is nothing to save
        (no project id or no panels).
        """
        with self._lock:
            if not self.project_id or not self.panels:
                return None
            return self._build_project()

    def state(self) -> dict:
        """Everything a front-end needs to render the session."""
        with self._lock:
            return {
                "project_id": self.project_id,
                "title": self.title,
                "panels": [p.to_dict() for p in self.panels],
                "settings": self.settings.to_dict(),
                "marketing_assets": {
                    t.value: a.to_dict() for t, a in self.marketing_assets.items()
                },
                "is_generating": self._running,
                "regenerating": sorted(self._regenerating),
            }

    def get_panel(self, panel_number: int) -> Panel:
        """Copy of one panel. Unknown numbers raise KeyError."""
        with self._lock:
            return Panel(**vars(self._find_panel(panel_number)))

    def update_settings(self, **changes) -> ComicSettings:
        """Change author, logo, style, layout, language, character, etc."""
        unknown = set(changes) - set(SETTING_FIELDS)
        if unknown:
            raise ValueError(f"Unknown settings: {', '.join(sorted(unknown))}")
        if "style" in changes:
            changes["style"] = get_style(changes["style"])
        if "layout" in changes and changes["layout"] not in LAYOUT_OPTIONS:
            raise ValueError(f"Layout must be one of {LAYOUT_OPTIONS}")
        if "language" in changes and changes["language"] not in LANGUAGES:
            raise ValueError(f"Language must be one of {LANGUAGES}")
        if "page_count" in changes:
            changes["page_count"] = int(changes["page_count"])
            if changes["page_count"] < 1:
                raise ValueError("Page count must be at least 1")

        with self._lock:
            for key, value in changes.items():
                setattr(self.settings, key, value)
            return self.settings

    def new_project(self):
        """Start over. Branding, style, layout and language are kept."""
        with self._lock:
            self._ensure_idle()
            self._reset_story()
            self.settings.character_name = ""
            self.settings.style_reference = None
            self.settings.page_count = 1
        logger.info("New project started")

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def run_full_generation(
        self,
        prompt: str,
        style=None,
        page_count: Optional[int] = None,
        layout: Optional[int] = None,
        character_name: Optional[str] = None,
        language: Optional[str] = None,
        on_progress: Optional[Callable] = None,
    ) -> Project:
        """
        Generate a complete comic: script, then every panel image in order.

        Args:
            prompt: Story description (non-empty)
            style: Style enum/preset/id (session style if None)
            page_count: Pages to write (>= 1)
            layout: Panels per page, one of 1, 2, 4, 6
            character_name: Optional main character
            language: "pl" or "en"
            on_progress: Optional callback(stage: str, details: dict)

        Returns:
            Project snapshot; every panel is completed or error

        Raises:
            ValueError: bad arguments
            PipelineBusyError: another run is in flight
            ScriptGenerationError: script failed, no panels were created
        """
        if not prompt or not prompt.strip():
            raise ValueError("Prompt must not be empty")

        changes = {"page_count": page_count, "layout": layout, "style": style,
                   "character_name": character_name, "language": language}

        self._begin_run()
        try:
            self.update_settings(**{k: v for k, v in changes.items() if v is not None})
            settings = self.settings
            with self._lock:
                self._reset_story()

            self._progress(on_progress, "script", {"prompt": prompt})
            logger.info("=" * 60)
            logger.info(f"COMIC GENERATION: {prompt[:60]}")
            logger.info("=" * 60)

            story = await self.script_generator.generate_script(
                prompt,
                settings.style,
                settings.page_count,
                settings.layout,
                settings.character_name,
                settings.language,
            )

            specs = self._normalize_numbers(story.panels, start=1)
            with self._lock:
                self.project_id = story.id or new_project_id()
                self.title = story.title
                self.created_at = story.created_at or now_ms()
                self.panels = [Panel.from_spec(s) for s in specs]

            logger.info(f"Script: '{story.title}' — {len(specs)} panels")
            await self._checkpoint_async()

            await self._generate_panels([s.panel_number for s in specs], on_progress)
        finally:
            self._end_run()

        project = self._current_project()
        self._report_done(project, on_progress)
        return project

    async def extend(
        self,
        new_page_count: int = 1,
        on_progress: Optional[Callable] = None,
    ) -> Project:
        """
        Append new_page_count pages of continuation panels and draw them.

        Existing panels are never touched. Raises ValueError when there is
        no story to extend, ScriptGenerationError if the extension call fails.
        """
        if not 1 <= new_page_count <= MAX_EXTENSION_PAGES:
            raise ValueError(f"Extension must add 1-{MAX_EXTENSION_PAGES} pages")

        self._begin_run()
        try:
            with self._lock:
                if not self.panels:
                    raise ValueError("There is no story to extend")
                existing = [p.to_spec() for p in self.panels]
                title = self.title
                settings = self.settings

            self._progress(on_progress, "script", {"extend_pages": new_page_count})
            new_specs = await self.script_generator.extend_script(
                existing,
                title,
                settings.style,
                new_page_count,
                settings.layout,
                settings.character_name,
                settings.language,
            )

            new_specs = self._normalize_numbers(new_specs, start=len(existing) + 1)
            with self._lock:
                self.panels.extend(Panel.from_spec(s) for s in new_specs)
                self.settings.page_count += new_page_count

            logger.info(
                f"Extended '{title}' by {len(new_specs)} panels "
                f"(total {len(existing) + len(new_specs)})"
            )
            await self._checkpoint_async()

            await self._generate_panels([s.panel_number for s in new_specs], on_progress)
        finally:
            self._end_run()

        project = self._current_project()
        self._report_done(project, on_progress)
        return project

    async def regenerate_single_panel(self, panel_number: int) -> Panel:
        """
        Redraw one panel. Only that panel's status/image change.

        The previous image stays visible while generating; a failed
        regeneration clears it and leaves the panel in error.

        Raises PipelineBusyError while a generation run or another redraw
        is in flight, so at most one image request runs at a time.
        """
        with self._lock:
            panel = self._find_panel(panel_number)
            if self._running:
                raise PipelineBusyError("A generation run is in progress")
            if self._regenerating:
                raise PipelineBusyError(f"Panel {min(self._regenerating)} is still being regenerated")
            self._regenerating.add(panel_number)
        try:
            await self._generate_one(panel)
        finally:
            with self._lock:
                self._regenerating.discard(panel_number)

        with self._lock:
            return Panel(**vars(panel))

    def edit_panel_text(self, panel_number: int, **updates) -> Panel:
        """Edit character/dialogue/caption. Status and image are untouched."""
        unknown = set(updates) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValueError(f"Only {', '.join(EDITABLE_FIELDS)} can be edited")

        with self._lock:
            panel = self._find_panel(panel_number)
            for key, value in updates.items():
                setattr(panel, key, value or None)
            edited = Panel(**vars(panel))

        self._checkpoint()
        return edited

    async def _generate_panels(self, panel_numbers: list[int], on_progress=None):
        """Draw panels strictly one after another, in ascending number order."""
        ordered = sorted(panel_numbers)
        for index, number in enumerate(ordered, 1):
            with self._lock:
                panel = self._find_panel(number)

            self._progress(on_progress, "panel", {
                "panel_number": number, "index": index, "total": len(ordered),
            })
            await self._generate_one(panel)

        wanted = set(ordered)
        with self._lock:
            done = [p for p in self.panels if p.panel_number in wanted]
        ok = sum(1 for p in done if p.status == PanelStatus.COMPLETED)
        logger.info(f"Images: {ok}/{len(done)} panels generated")

    async def _generate_one(self, panel: Panel):
        """Run one panel through generating → completed | error, then checkpoint."""
        with self._lock:
            panel.status = PanelStatus.GENERATING
            spec = panel.to_spec()
            settings = self.settings
            style = settings.style
            character_name = settings.character_name
            style_reference = settings.style_reference

        try:
            image_url = await self.image_generator.generate_panel_image(
                spec, style, character_name, style_reference,
            )
        except Exception as e:
            # Failures stay local to this panel
            logger.error(f"Panel {spec.panel_number} generation failed: {e}")
            with self._lock:
                panel.status = PanelStatus.ERROR
                panel.image_url = None
        else:
            with self._lock:
                panel.image_url = image_url
                panel.status = PanelStatus.COMPLETED
            logger.info(f"Panel {spec.panel_number} completed")

        await self._checkpoint_async()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self) -> Optional[Project]:
        """
        Manual save. Returns the saved snapshot (None if nothing to save).

        Raises:
            PersistenceError: the store write failed
        """
        project = self.snapshot()
        if project is None:
            return None
        try:
            self.store.put(project)
        except PersistenceError as e:
            logger.error(f"Manual save failed: {e}")
            raise
        logger.info(f"Project saved: '{project.title}' ({project.panel_count} panels)")
        return project

    def autosave(self) -> bool:
        """Checkpoint the latest state (used by the background timer)."""
        return self._checkpoint()

    def _checkpoint(self) -> bool:
        """Best-effort whole-snapshot save. Failures are logged, never raised."""
        project = self.snapshot()
        if project is None:
            return False
        return self._put_quietly(project)

    async def _checkpoint_async(self) -> bool:
        """_checkpoint for the generation loop; the write runs off the event loop."""
        project = self.snapshot()
        if project is None:
            return False
        return await asyncio.to_thread(self._put_quietly, project)

    def _put_quietly(self, project: Project) -> bool:
        try:
            self.store.put(project)
        except PersistenceError as e:
            logger.error(f"Checkpoint failed for {project.id}: {e}")
            return False
        return True

    def list_projects(self) -> list[Project]:
        return self.store.get_all()

    def load_project(self, project_id: str) -> Project:
        """
        Make a stored project the current one.

        A checkpoint can be taken while panels are still pending or
        generating. Nothing is drawing them after a load, so such panels
        come back as error (no image) and are redrawn through
        regenerate_single_panel().
        """
        project = self.store.get(project_id)
        if project is None:
            raise KeyError(f"No saved project with id {project_id}")

        panels = [Panel(**vars(p)) for p in project.panels]
        interrupted = [p.panel_number for p in panels if p.status not in TERMINAL_STATUSES]
        for panel in panels:
            if panel.panel_number in interrupted:
                panel.status = PanelStatus.ERROR
                panel.image_url = None
        if interrupted:
            logger.warning(f"Panels {interrupted} were interrupted mid-generation, marked as error")

        with self._lock:
            self._ensure_idle()
            self._reset_story()
            self.project_id = project.id
            self.title = project.title
            self.created_at = project.created_at
            self.panels = panels
            self.settings.author = project.author
            self.settings.style = project.style
            self.settings.logo = project.logo
            self.settings.style_reference = project.style_reference
            self.settings.layout = project.layout
            self.settings.language = project.language
            self.settings.page_count = max(1, math.ceil(len(project.panels) / (project.layout or 1)))

        logger.info(f"Loaded project '{project.title}' ({project.panel_count} panels)")
        return project

    def delete_project(self, project_id: str):
        """Delete a stored project; resets the session if it was current."""
        with self._lock:
            is_current = project_id == self.project_id
            if is_current:
                self._ensure_idle()
        self.store.delete(project_id)
        if is_current:
            self.new_project()

    # ------------------------------------------------------------------
    # Export & marketing
    # ------------------------------------------------------------------

    def export_pdf(self, output_path: Optional[str] = None) -> str:
        project = self._exportable_project()
        path = output_path or str(config.EXPORT_DIR / f"{slugify(project.title)}_comic.pdf")
        return self.assembler.export_pdf(project, path, language=project.language)

    def export_zip(self, output_path: Optional[str] = None) -> str:
        project = self._exportable_project()
        path = output_path or str(config.EXPORT_DIR / f"{slugify(project.title)}_comic_pack.zip")
        return self.assembler.export_zip(project, path, language=project.language)

    async def generate_marketing_asset(self, asset_type: MarketingAssetType) -> MarketingAsset:
        """
        Generate an intro page or box mockup for the current comic.

        Any failure marks the asset as error and is re-raised
        (ImageGenerationError when the model returns no image).
        """
        asset_type = MarketingAssetType(asset_type)
        with self._lock:
            asset = self.marketing_assets[asset_type]
            asset.status = AssetStatus.GENERATING
            project = self._build_project()

        cover = None
        if asset_type == MarketingAssetType.BOX_MOCKUP:
            try:
                cover = self.assembler.render_cover_data_url(project, language=project.language)
            except ExportError as e:
                logger.warning(f"Cover capture failed, box mockup without cover art: {e}")

        try:
            image_url = await self.image_generator.generate_marketing_asset(
                asset_type,
                project.title,
                project.style,
                self.settings.character_name,
                cover_image=cover,
                author=project.author,
            )
        except Exception as e:
            logger.error(f"Marketing asset {asset_type.value} failed: {e}")
            with self._lock:
                asset.status = AssetStatus.ERROR
            raise

        with self._lock:
            asset.image_url = image_url
            asset.status = AssetStatus.COMPLETED
            return MarketingAsset(type=asset.type, status=asset.status, image_url=asset.image_url)

    async def close(self):
        """Clean up resources."""
        await self.script_generator.close()
        await self.image_generator.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _begin_run(self):
        with self._lock:
            if self._running:
                raise PipelineBusyError("A generation run is already in progress")
            if self._regenerating:
                raise PipelineBusyError("A panel is still being regenerated")
            self._running = True

    def _end_run(self):
        with self._lock:
            self._running = False

    def _ensure_idle(self):
        if self._running or self._regenerating:
            raise PipelineBusyError("Generation in progress")

    def _reset_story(self):
        self.project_id = ""
        self.title = ""
        self.created_at = 0
        self.panels = []
        self.marketing_assets = idle_marketing_assets()

    def _find_panel(self, panel_number: int) -> Panel:
        for panel in self.panels:
            if panel.panel_number == panel_number:
                return panel
        raise KeyError(f"No panel number {panel_number}")

    def _build_project(self) -> Project:
        """Caller holds the lock."""
        s = self.settings
        return Project(
            id=self.project_id,
            title=self.title,
            panels=[Panel(**vars(p)) for p in self.panels],
            author=s.author,
            style=s.style,
            logo=s.logo,
            style_reference=s.style_reference,
            layout=s.layout,
            language=s.language,
            created_at=self.created_at or now_ms(),
            updated_at=now_ms(),
        )

    def _current_project(self) -> Project:
        with self._lock:
            return self._build_project()

    def _exportable_project(self) -> Project:
        with self._lock:
            if not self.panels:
                raise ExportError("There is nothing to export yet")
            return self._build_project()

    def _normalize_numbers(self, specs: list[PanelSpec], start: int) -> list[PanelSpec]:
        """Keep panel numbers unique and contiguous from start, in returned order."""
        expected = list(range(start, start + len(specs)))
        if [s.panel_number for s in specs] == expected:
            return list(specs)
        logger.warning(f"Model numbered panels {[s.panel_number for s in specs]}, renumbering from {start}")
        return [
            PanelSpec(
                panel_number=number,
                visual_description=s.visual_description,
                dialogue=s.dialogue,
                caption=s.caption,
                character=s.character,
            )
            for number, s in zip(expected, specs)
        ]

    def _report_done(self, project: Project, on_progress):
        ok = sum(1 for p in project.panels if p.status == PanelStatus.COMPLETED)
        failed = sum(1 for p in project.panels if p.status == PanelStatus.ERROR)
        self._progress(on_progress, "complete", {
            "project_id": project.id, "completed": ok, "errors": failed,
        })
        logger.info("=" * 60)
        logger.info("COMIC GENERATION COMPLETE")
        logger.info(f"  Title: {project.title}")
        logger.info(f"  Panels: {ok} completed, {failed} failed")
        logger.info("=" * 60)

    def _progress(self, callback, stage: str, details: dict):
        """Report progress if callback is set."""
        if callback:
            try:
                callback(stage, details)
            except Exception as e:
                logger.debug(f"Progress callback failed: {e}")
