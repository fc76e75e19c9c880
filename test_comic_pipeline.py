"""
Comic Pipeline — Test Suite.

Drives ComicPipeline end-to-end with fake generators (no API keys needed).

Usage:
    python test_comic_pipeline.py                          # Run all tests
    python test_comic_pipeline.py test_full_generation     # Run specific test
    pytest test_comic_pipeline.py
"""

import asyncio
import sys
import tempfile
from pathlib import Path

# Ensure project root is on path
sys.path.insert(0, str(Path(__file__).parent))

from comic_fakes import (
    FakeImageGenerator,
    FakeScriptGenerator,
    MemoryStore,
    make_image_url,
    make_specs,
)


def make_pipeline(fail_panels=(), store=None, script=None, images=None):
    from comic_creator.comic_generator import ComicPipeline

    images = images or FakeImageGenerator(fail_panels=fail_panels)
    store = store if store is not None else MemoryStore()
    pipeline = ComicPipeline(
        script_generator=script or FakeScriptGenerator(),
        image_generator=images,
        store=store,
    )
    images.pipeline = pipeline
    return pipeline, images, store


# ============================================================
# Test 1: Full generation
# ============================================================

def test_full_generation():
    """"A cat detective", 1 page, layout 2 → 2 panels, 3 checkpoints."""
    from comic_creator.models import PanelStatus

    pipeline, images, store = make_pipeline()
    project = asyncio.run(pipeline.run_full_generation("A cat detective", page_count=1, layout=2))

    assert project.panel_count == 2
    numbers = [p.panel_number for p in project.panels]
    assert numbers == [1, 2]
    assert len(set(numbers)) == len(numbers)
    assert all(p.status == PanelStatus.COMPLETED for p in project.panels)
    assert all(p.image_url.startswith("data:image/png;base64,") for p in project.panels)

    # After script, after panel 1, after panel 2
    assert len(store.puts) == 3, f"Expected 3 checkpoints, got {len(store.puts)}"
    assert len(store.projects) == 1
    assert [p.status for p in store.puts[0].panels] == [PanelStatus.PENDING] * 2
    assert not pipeline.is_busy

    print("  PASS: 2 panels completed with 3 checkpoints")


def test_panels_generated_sequentially():
    """Panel k+1 never starts before panel k is terminal."""
    pipeline, images, _ = make_pipeline(fail_panels={3})
    asyncio.run(pipeline.run_full_generation("A heist", page_count=2, layout=4))

    assert images.calls == list(range(1, 9))
    assert images.max_active == 1
    assert images.order_violations == []

    print("  PASS: 8 panels drawn one at a time, in order")


def test_panel_failure_isolated():
    """Panel 2 of 3 fails all attempts → panel 3 still completes, no exception."""
    from comic_creator.models import PanelStatus

    pipeline, images, store = make_pipeline(fail_panels={2})
    project = asyncio.run(pipeline.run_full_generation("A storm at sea", page_count=3, layout=1))

    statuses = [p.status for p in project.panels]
    assert statuses == [PanelStatus.COMPLETED, PanelStatus.ERROR, PanelStatus.COMPLETED]
    assert project.panels[1].image_url is None
    assert images.calls == [1, 2, 3]
    assert len(store.puts) == 4

    print("  PASS: Failure stays on panel 2, panel 3 completes")


def test_script_failure_creates_nothing():
    from comic_creator.errors import ScriptGenerationError

    pipeline, images, store = make_pipeline(script=FakeScriptGenerator(fail=True))
    try:
        asyncio.run(pipeline.run_full_generation("Anything", page_count=1, layout=2))
        assert False, "Expected ScriptGenerationError"
    except ScriptGenerationError:
        pass

    assert pipeline.panels == []
    assert store.puts == []
    assert images.calls == []
    assert not pipeline.is_busy

    print("  PASS: Script failure aborts with no panels and no checkpoint")


def test_invalid_arguments():
    pipeline, _, _ = make_pipeline()
    for kwargs in ({"layout": 3}, {"language": "de"}, {"page_count": 0}, {"style": "oil-painting"}):
        try:
            asyncio.run(pipeline.run_full_generation("A cat", **kwargs))
            assert False, f"Expected ValueError for {kwargs}"
        except ValueError:
            pass
    try:
        asyncio.run(pipeline.run_full_generation("   "))
        assert False, "Expected ValueError for empty prompt"
    except ValueError:
        pass
    assert not pipeline.is_busy

    print("  PASS: Bad layout, language, page count, style and prompt rejected")


def test_panel_numbers_normalized():
    """Duplicate or gapped model numbering is made contiguous."""
    from comic_creator.models import PanelSpec

    specs = [
        PanelSpec(panel_number=3, visual_description="A"),
        PanelSpec(panel_number=3, visual_description="B"),
        PanelSpec(panel_number=7, visual_description="C"),
    ]
    pipeline, _, _ = make_pipeline(script=FakeScriptGenerator(panels=specs))
    project = asyncio.run(pipeline.run_full_generation("Numbers", page_count=1, layout=4))

    assert [p.panel_number for p in project.panels] == [1, 2, 3]
    assert [p.visual_description for p in project.panels] == ["A", "B", "C"]

    print("  PASS: Panels renumbered 1..3")


def test_progress_callback():
    events = []

    def on_progress(stage, details):
        events.append(stage)
        if stage == "panel":
            raise RuntimeError("callback errors are ignored")

    pipeline, _, _ = make_pipeline()
    asyncio.run(pipeline.run_full_generation("A cat", page_count=1, layout=2, on_progress=on_progress))

    assert events == ["script", "panel", "panel", "complete"]

    print("  PASS: Progress reported for script, each panel, completion")


# ============================================================
# Test 2: Extend
# ============================================================

def test_extend():
    """Extend 2 pages × layout 2 on 4 panels → panels 5–8 appended."""
    from comic_creator.models import PanelStatus

    pipeline, images, store = make_pipeline(fail_panels={2})
    asyncio.run(pipeline.run_full_generation("A cat detective", page_count=2, layout=2))
    before = [p.to_dict() for p in pipeline.panels]
    puts_before = len(store.puts)

    project = asyncio.run(pipeline.extend(new_page_count=2))

    assert project.panel_count == 8
    assert [p.panel_number for p in project.panels] == list(range(1, 9))
    assert [p.to_dict() for p in project.panels[:4]] == before
    assert all(p.status == PanelStatus.COMPLETED for p in project.panels[4:])
    assert images.calls[-4:] == [5, 6, 7, 8]
    assert pipeline.settings.page_count == 4
    # After extension script, then one per new panel
    assert len(store.puts) - puts_before == 5

    print("  PASS: Panels 5-8 appended, 1-4 untouched (panel 2 still error)")


def test_extend_rejects_bad_input():
    pipeline, _, _ = make_pipeline()
    try:
        asyncio.run(pipeline.extend(new_page_count=1))
        assert False, "Expected ValueError with no story"
    except ValueError:
        pass

    asyncio.run(pipeline.run_full_generation("A cat", page_count=1, layout=1))
    for pages in (0, 6):
        try:
            asyncio.run(pipeline.extend(new_page_count=pages))
            assert False, f"Expected ValueError for {pages} pages"
        except ValueError:
            pass
    assert pipeline.panels[-1].panel_number == 1

    print("  PASS: Extend needs a story and 1-5 pages")


def test_extend_script_failure_keeps_story():
    from comic_creator.errors import ScriptGenerationError

    script = FakeScriptGenerator()
    pipeline, _, _ = make_pipeline(script=script)
    asyncio.run(pipeline.run_full_generation("A cat", page_count=1, layout=2))
    before = [p.to_dict() for p in pipeline.panels]

    script.fail = True
    try:
        asyncio.run(pipeline.extend(new_page_count=1))
        assert False, "Expected ScriptGenerationError"
    except ScriptGenerationError:
        pass

    assert [p.to_dict() for p in pipeline.panels] == before
    assert not pipeline.is_busy

    print("  PASS: Failed extension leaves the story unchanged")


# ============================================================
# Test 3: Regenerate / edit
# ============================================================

def test_regenerate_single_panel():
    """Regenerating panel k touches no other panel."""
    from comic_creator.models import PanelStatus

    pipeline, images, store = make_pipeline(fail_panels={2})
    asyncio.run(pipeline.run_full_generation("A cat", page_count=1, layout=4))
    others_before = {p.panel_number: p.to_dict() for p in pipeline.panels if p.panel_number != 2}
    puts_before = len(store.puts)

    images.fail_panels.clear()
    panel = asyncio.run(pipeline.regenerate_single_panel(2))

    assert panel.status == PanelStatus.COMPLETED
    assert panel.image_url
    others_after = {p.panel_number: p.to_dict() for p in pipeline.panels if p.panel_number != 2}
    assert others_after == others_before
    assert len(store.puts) == puts_before + 1

    print("  PASS: Panel 2 regenerated, others unchanged")


def test_regenerate_keeps_then_clears_image():
    """Old image stays visible while generating; a failed redraw clears it."""
    from comic_creator.models import PanelStatus

    pipeline, images, _ = make_pipeline()
    asyncio.run(pipeline.run_full_generation("A cat", page_count=1, layout=2))
    old_image = pipeline.panels[0].image_url

    images.fail_panels.add(1)
    panel = asyncio.run(pipeline.regenerate_single_panel(1))

    assert images.seen_images[1] == old_image
    assert panel.status == PanelStatus.ERROR
    assert panel.image_url is None
    assert pipeline.panels[1].status == PanelStatus.COMPLETED

    print("  PASS: Stale image visible during redraw, cleared on failure")


def test_regenerate_unknown_panel():
    pipeline, _, _ = make_pipeline()
    asyncio.run(pipeline.run_full_generation("A cat", page_count=1, layout=1))
    try:
        asyncio.run(pipeline.regenerate_single_panel(99))
        assert False, "Expected KeyError"
    except KeyError:
        pass

    print("  PASS: Unknown panel number rejected")


def test_edit_panel_text():
    pipeline, _, store = make_pipeline()
    asyncio.run(pipeline.run_full_generation("A cat", page_count=1, layout=2))
    before = pipeline.get_panel(1)
    puts_before = len(store.puts)

    edited = pipeline.edit_panel_text(1, dialogue="Nowa kwestia", caption="")

    assert edited.dialogue == "Nowa kwestia"
    assert edited.caption is None
    assert edited.status == before.status
    assert edited.image_url == before.image_url
    assert len(store.puts) == puts_before + 1

    try:
        pipeline.edit_panel_text(1, visual_description="hack")
        assert False, "Expected ValueError"
    except ValueError:
        pass

    print("  PASS: Text edits checkpoint and leave image/status alone")


# ============================================================
# Test 4: Concurrency guard
# ============================================================

class GatedImageGenerator(FakeImageGenerator):
    """Blocks every panel until the test opens the gate."""

    def __init__(self):
        super().__init__()
        self.gate = None

    async def generate_panel_image(self, panel, style, character_name="", style_reference=None):
        await self.gate.wait()
        return await super().generate_panel_image(panel, style, character_name, style_reference)


def test_concurrent_runs_rejected():
    from comic_creator.errors import PipelineBusyError
    from comic_creator.models import PanelStatus

    images = GatedImageGenerator()
    pipeline, _, _ = make_pipeline(images=images)

    async def scenario():
        images.gate = asyncio.Event()
        run = asyncio.create_task(
            pipeline.run_full_generation("A cat", page_count=1, layout=2)
        )
        while not any(p.status == PanelStatus.GENERATING for p in pipeline.panels):
            await asyncio.sleep(0)

        assert pipeline.is_busy
        for attempt in (
            pipeline.run_full_generation("Another cat"),
            pipeline.extend(new_page_count=1),
            pipeline.regenerate_single_panel(1),
        ):
            try:
                await attempt
                assert False, "Expected PipelineBusyError"
            except PipelineBusyError:
                pass
        try:
            pipeline.new_project()
            assert False, "Expected PipelineBusyError"
        except PipelineBusyError:
            pass

        images.gate.set()
        return await run

    project = asyncio.run(scenario())
    assert project.panel_count == 2
    assert not pipeline.is_busy

    print("  PASS: Second run, extend, same-panel redraw and reset rejected while busy")


def test_redraw_of_other_panel_rejected_during_run():
    """A redraw never runs alongside the panel loop."""
    from comic_creator.errors import PipelineBusyError
    from comic_creator.models import PanelStatus

    images = GatedImageGenerator()
    pipeline, _, _ = make_pipeline(images=images)

    async def scenario():
        images.gate = asyncio.Event()
        run = asyncio.create_task(
            pipeline.run_full_generation("A heist", page_count=1, layout=4)
        )
        while not any(p.status == PanelStatus.GENERATING for p in pipeline.panels):
            await asyncio.sleep(0)

        try:
            await pipeline.regenerate_single_panel(4)
            assert False, "Expected PipelineBusyError"
        except PipelineBusyError:
            pass
        assert [p.status for p in pipeline.panels] == [
            PanelStatus.GENERATING, PanelStatus.PENDING, PanelStatus.PENDING, PanelStatus.PENDING,
        ]

        images.gate.set()
        return await run

    project = asyncio.run(scenario())
    assert all(p.status == PanelStatus.COMPLETED for p in project.panels)
    assert images.calls == [1, 2, 3, 4]
    assert images.max_active == 1
    assert not pipeline.is_busy

    print("  PASS: Redraw of panel 4 refused while panel 1 is drawing")


def test_runs_rejected_during_redraw():
    from comic_creator.errors import PipelineBusyError
    from comic_creator.models import PanelStatus

    images = GatedImageGenerator()
    pipeline, _, _ = make_pipeline(images=images)

    async def scenario():
        images.gate = asyncio.Event()
        images.gate.set()
        await pipeline.run_full_generation("A cat", page_count=1, layout=2)

        images.gate = asyncio.Event()
        redraw = asyncio.create_task(pipeline.regenerate_single_panel(1))
        while pipeline.panels[0].status != PanelStatus.GENERATING:
            await asyncio.sleep(0)

        for attempt in (
            pipeline.extend(new_page_count=1),
            pipeline.run_full_generation("Another cat"),
            pipeline.regenerate_single_panel(2),
        ):
            try:
                await attempt
                assert False, "Expected PipelineBusyError"
            except PipelineBusyError:
                pass

        images.gate.set()
        return await redraw

    panel = asyncio.run(scenario())
    assert panel.status == PanelStatus.COMPLETED
    assert images.max_active == 1
    assert len(pipeline.panels) == 2

    print("  PASS: Extend, new run and second redraw refused during a redraw")


# ============================================================
# Test 5: Persistence
# ============================================================

def test_checkpoint_failures_swallowed():
    from comic_creator.errors import PersistenceError
    from comic_creator.models import PanelStatus

    pipeline, _, _ = make_pipeline(store=MemoryStore(fail=True))
    project = asyncio.run(pipeline.run_full_generation("A cat", page_count=1, layout=2))
    assert all(p.status == PanelStatus.COMPLETED for p in project.panels)
    assert pipeline.autosave() is False

    try:
        pipeline.save()
        assert False, "Expected PersistenceError"
    except PersistenceError:
        pass

    print("  PASS: Automatic checkpoints swallow errors, manual save raises")


def test_nothing_to_save():
    pipeline, _, store = make_pipeline()
    assert pipeline.snapshot() is None
    assert pipeline.save() is None
    assert pipeline.autosave() is False
    assert store.puts == []

    print("  PASS: No project id/panels → no checkpoint")


def test_save_load_round_trip():
    """Save/load reproduces title, author, panels, style, logo."""
    from comic_creator.comic_generator import ComicPipeline
    from comic_creator.models import ComicStyle, get_style
    from comic_creator.project_store import ProjectStore

    with tempfile.TemporaryDirectory() as tmpdir:
        store = ProjectStore(db_path=Path(tmpdir) / "comics.db")
        pipeline, _, _ = make_pipeline(store=store, images=FakeImageGenerator(fail_panels={3}))
        logo = make_image_url(color=(0, 0, 0))
        pipeline.update_settings(author="Ala", logo=logo, style=ComicStyle.NOIR, language="en")
        original = asyncio.run(pipeline.run_full_generation("A cat", page_count=2, layout=2))
        pipeline.save()

        fresh = ComicPipeline(
            script_generator=FakeScriptGenerator(),
            image_generator=FakeImageGenerator(),
            store=ProjectStore(db_path=Path(tmpdir) / "comics.db"),
        )
        loaded = fresh.load_project(original.id)

        assert loaded.title == original.title
        assert loaded.author == "Ala"
        assert loaded.logo == logo
        assert loaded.style == get_style("noir")
        assert loaded.language == "en"
        assert loaded.layout == 2
        assert [p.to_dict() for p in loaded.panels] == [p.to_dict() for p in original.panels]
        assert fresh.settings.page_count == 2
        assert fresh.settings.author == "Ala"
        assert fresh.snapshot().panel_count == 4

    print("  PASS: Round trip through SQLite reproduces the project")


def test_checkpoint_while_panel_in_flight():
    """A save mid-run holds the in-flight state; loading it makes those panels retryable."""
    from comic_creator.models import PanelStatus

    images = GatedImageGenerator()
    pipeline, _, store = make_pipeline(images=images)

    async def scenario():
        images.gate = asyncio.Event()
        run = asyncio.create_task(
            pipeline.run_full_generation("A cat", page_count=1, layout=2)
        )
        while not pipeline.panels or pipeline.panels[0].status != PanelStatus.GENERATING:
            await asyncio.sleep(0)

        assert pipeline.autosave() is True
        interrupted = store.puts[-1]

        images.gate.set()
        await run
        return interrupted

    interrupted = asyncio.run(scenario())
    assert [p.status for p in interrupted.panels] == [PanelStatus.GENERATING, PanelStatus.PENDING]

    # Reopen the interrupted checkpoint in a new session
    restored = MemoryStore()
    restored.projects[interrupted.id] = interrupted.copy()
    fresh, fresh_images, _ = make_pipeline(store=restored)
    fresh.load_project(interrupted.id)

    assert [p.status for p in fresh.panels] == [PanelStatus.ERROR, PanelStatus.ERROR]
    assert all(p.image_url is None for p in fresh.panels)
    assert not fresh.is_busy

    for number in (1, 2):
        panel = asyncio.run(fresh.regenerate_single_panel(number))
        assert panel.status == PanelStatus.COMPLETED
        assert panel.image_url
    assert fresh_images.calls == [1, 2]

    print("  PASS: Mid-run checkpoint reloads as error panels that redraw")


def test_load_unknown_project():
    pipeline, _, _ = make_pipeline()
    try:
        pipeline.load_project("missing")
        assert False, "Expected KeyError"
    except KeyError:
        pass

    print("  PASS: Unknown project id rejected")


def test_new_project_keeps_branding():
    pipeline, _, _ = make_pipeline()
    pipeline.update_settings(author="Ala", layout=4, character_name="Whiskers")
    asyncio.run(pipeline.run_full_generation("A cat", page_count=2))

    pipeline.new_project()

    assert pipeline.project_id == ""
    assert pipeline.panels == []
    assert pipeline.settings.author == "Ala"
    assert pipeline.settings.layout == 4
    assert pipeline.settings.character_name == ""
    assert pipeline.settings.page_count == 1

    print("  PASS: Reset keeps branding, clears story fields")


def test_delete_current_project():
    pipeline, _, store = make_pipeline()
    project = asyncio.run(pipeline.run_full_generation("A cat", page_count=1, layout=1))
    assert pipeline.list_projects()[0].id == project.id

    pipeline.delete_project(project.id)

    assert store.projects == {}
    assert pipeline.project_id == ""
    assert pipeline.list_projects() == []

    print("  PASS: Deleting the open project resets the session")


def test_autosave_job():
    from comic_creator.autosave import AutosaveScheduler

    pipeline, _, store = make_pipeline()
    autosave = AutosaveScheduler(pipeline, interval_seconds=60)

    asyncio.run(autosave._autosave())
    assert autosave.saves == 0

    asyncio.run(pipeline.run_full_generation("A cat", page_count=1, layout=1))
    puts_before = len(store.puts)
    asyncio.run(autosave._autosave())
    assert autosave.saves == 1
    assert len(store.puts) == puts_before + 1

    print("  PASS: Autosave checkpoints only when there is a project")


# ============================================================
# Test 6: Export & marketing
# ============================================================

def test_export_through_pipeline():
    import zipfile

    from comic_creator.errors import ExportError

    pipeline, _, _ = make_pipeline()
    try:
        pipeline.export_pdf()
        assert False, "Expected ExportError"
    except ExportError:
        pass

    asyncio.run(pipeline.run_full_generation("A cat", page_count=1, layout=2))
    with tempfile.TemporaryDirectory() as tmpdir:
        pdf_path = pipeline.export_pdf(str(Path(tmpdir) / "comic.pdf"))
        zip_path = pipeline.export_zip(str(Path(tmpdir) / "comic.zip"))
        assert Path(pdf_path).read_bytes()[:4] == b"%PDF"
        with zipfile.ZipFile(zip_path) as zf:
            assert "raw_artwork/panel_2.png" in zf.namelist()

    print("  PASS: Pipeline exports PDF and ZIP")


def test_marketing_assets():
    from comic_creator.errors import ImageGenerationError
    from comic_creator.models import AssetStatus, MarketingAssetType

    pipeline, images, _ = make_pipeline()
    asyncio.run(pipeline.run_full_generation("A cat", page_count=1, layout=1))

    asset = asyncio.run(pipeline.generate_marketing_asset(MarketingAssetType.BOX_MOCKUP))
    assert asset.status == AssetStatus.COMPLETED
    _, title, cover = images.marketing_calls[-1]
    assert title == "The Cat Detective"
    assert cover.startswith("data:image/jpeg;base64,")

    images.fail_panels.add("marketing")
    try:
        asyncio.run(pipeline.generate_marketing_asset("INTRO_PAGE"))
        assert False, "Expected ImageGenerationError"
    except ImageGenerationError:
        pass
    state = pipeline.state()["marketing_assets"]
    assert state["INTRO_PAGE"]["status"] == "error"
    assert state["BOX_MOCKUP"]["status"] == "completed"

    print("  PASS: Box mockup gets the rendered cover, failures marked error")


def test_marketing_unexpected_failure():
    from comic_creator.models import AssetStatus, MarketingAssetType

    pipeline, images, _ = make_pipeline()
    asyncio.run(pipeline.run_full_generation("A cat", page_count=1, layout=1))

    images.fail_panels.add("marketing-crash")
    try:
        asyncio.run(pipeline.generate_marketing_asset(MarketingAssetType.INTRO_PAGE))
        assert False, "Expected RuntimeError"
    except RuntimeError:
        pass
    assert pipeline.marketing_assets[MarketingAssetType.INTRO_PAGE].status == AssetStatus.ERROR

    print("  PASS: Any marketing failure leaves the asset in error, not generating")


# ============================================================
# Runner
# ============================================================

def main():
    """Run tests."""
    specific = sys.argv[1] if len(sys.argv) > 1 else None

    tests = {
        name: func for name, func in globals().items()
        if name.startswith("test_") and callable(func)
    }

    if specific:
        if specific not in tests:
            print(f"Unknown test: {specific}")
            print(f"Available: {', '.join(tests.keys())}")
            sys.exit(1)
        tests = {specific: tests[specific]}

    passed = 0
    failed = 0

    print("\nComic Pipeline Tests")
    print("=" * 50)

    for name, func in tests.items():
        print(f"\n{name}:")
        try:
            func()
            passed += 1
        except Exception as e:
            print(f"  FAIL: {e}")
            import traceback
            traceback.print_exc()
            failed += 1

    print("\n" + "=" * 50)
    print(f"Results: {passed} passed, {failed} failed")

    if failed > 0:
        sys.exit(1)


if __name__ == "__main__":
    main()
