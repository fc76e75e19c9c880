"""
Comic Creator — Flask JSON API.

The pipeline is async; Flask is not. All pipeline coroutines run on one
asyncio loop owned by a background thread (LoopRunner). Long operations
(generate, extend, regenerate) are submitted and answered with 202 while
the front-end polls /api/state; short ones wait for their result.
"""

import asyncio
import logging
import threading
from concurrent.futures import Future
from pathlib import Path
from typing import Optional

from flask import Flask, jsonify, request, send_file

from comic_creator.comic_generator import MAX_EXTENSION_PAGES, ComicPipeline
from comic_creator.errors import (
    ComicCreatorError,
    ExportError,
    ImageGenerationError,
    PersistenceError,
    PipelineBusyError,
    ScriptGenerationError,
)
from comic_creator.models import STYLE_PRESETS, MarketingAssetType, Project
from comic_creator.translations import t

logger = logging.getLogger(__name__)


class LoopRunner:
    """An asyncio event loop running forever on a daemon thread."""

    def __init__(self):
        self.loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._run, name="comic-loop", daemon=True)

    def start(self) -> "LoopRunner":
        self._thread.start()
        return self

    def _run(self):
        asyncio.set_event_loop(self.loop)
        self.loop.run_forever()

    def submit(self, coro) -> Future:
        """Schedule a coroutine on the loop; returns a concurrent Future."""
        return asyncio.run_coroutine_threadsafe(coro, self.loop)

    def run(self, coro, timeout: Optional[float] = None):
        """Run a coroutine on the loop and wait for its result."""
        return self.submit(coro).result(timeout)

    def stop(self):
        self.loop.call_soon_threadsafe(self.loop.stop)
        self._thread.join(timeout=5)


def project_summary(project: Project) -> dict:
    """List entry for the saved-projects view (no image payloads)."""
    return {
        "id": project.id,
        "title": project.title,
        "author": project.author,
        "created_at": project.created_at,
        "updated_at": project.updated_at,
        "panel_count": project.panel_count,
        "style": project.style.id,
        "layout": project.layout,
        "language": project.language,
    }


def create_app(pipeline: Optional[ComicPipeline] = None, runner: Optional[LoopRunner] = None) -> Flask:
    """Build the Flask app around one pipeline session."""
    app = Flask(__name__)
    pipeline = pipeline or ComicPipeline()
    runner = runner or LoopRunner().start()
    app.config["PIPELINE"] = pipeline
    app.config["RUNNER"] = runner

    def language() -> str:
        return pipeline.settings.language

    def error_response(message: str, status: int):
        return jsonify({"success": False, "error": message}), status

    # Message of the last failed background run, shown by /api/state
    background = {"last_error": None}

    def submit_background(coro, label: str, error_key: str = "error_script"):
        """Fire a long-running pipeline coroutine; failures are logged."""
        background["last_error"] = None
        future = runner.submit(coro)

        def _done(f: Future):
            error = f.exception()
            if error is not None:
                logger.error(f"{label} failed: {error}")
                if isinstance(error, PipelineBusyError):
                    key = "error_busy"
                elif isinstance(error, ComicCreatorError):
                    key = error_key
                else:
                    key = None
                background["last_error"] = (
                    t(language(), key) if key else str(error)
                )

        future.add_done_callback(_done)
        return future

    def body() -> dict:
        return request.get_json(silent=True) or {}

    # ============== ERRORS ==============

    @app.errorhandler(ValueError)
    def handle_value_error(e):
        return error_response(str(e), 400)

    @app.errorhandler(KeyError)
    def handle_key_error(e):
        return error_response(str(e.args[0]) if e.args else "Not found", 404)

    @app.errorhandler(PipelineBusyError)
    def handle_busy(e):
        return error_response(t(language(), "error_busy"), 409)

    @app.errorhandler(ComicCreatorError)
    def handle_comic_error(e):
        keys = {
            ScriptGenerationError: "error_script",
            PersistenceError: "error_save",
            ExportError: "error_pdf",
            ImageGenerationError: "error_marketing",
        }
        key = keys.get(type(e))
        logger.error(f"Request {request.path} failed: {e}")
        message = t(language(), key) if key else str(e)
        return error_response(message, 500)

    # ============== SESSION ==============

    @app.route("/api/state")
    def api_state():
        state = pipeline.state()
        state["last_error"] = background["last_error"]
        return jsonify(state)

    @app.route("/api/styles")
    def api_styles():
        return jsonify([preset.to_dict() for preset in STYLE_PRESETS.values()])

    @app.route("/api/settings", methods=["PATCH"])
    def api_settings():
        settings = pipeline.update_settings(**body())
        return jsonify({"success": True, "settings": settings.to_dict()})

    @app.route("/api/new", methods=["POST"])
    def api_new():
        pipeline.new_project()
        return jsonify({"success": True})

    # ============== GENERATION ==============

    @app.route("/api/generate", methods=["POST"])
    def api_generate():
        data = body()
        prompt = (data.get("prompt") or "").strip()
        if not prompt:
            raise ValueError("Prompt must not be empty")
        if pipeline.is_busy:
            raise PipelineBusyError("Generation in progress")

        submit_background(
            pipeline.run_full_generation(
                prompt,
                style=data.get("style"),
                page_count=data.get("page_count"),
                layout=data.get("layout"),
                character_name=data.get("character_name"),
                language=data.get("language"),
            ),
            "Generation",
        )
        return jsonify({"success": True, "message": "Generation started"}), 202

    @app.route("/api/extend", methods=["POST"])
    def api_extend():
        pages = int(body().get("pages", 1))
        if not 1 <= pages <= MAX_EXTENSION_PAGES:
            raise ValueError(f"Extension must add 1-{MAX_EXTENSION_PAGES} pages")
        if pipeline.is_busy:
            raise PipelineBusyError("Generation in progress")
        if not pipeline.state()["panels"]:
            raise ValueError("There is no story to extend")

        submit_background(pipeline.extend(new_page_count=pages), "Extension", "error_extend")
        return jsonify({"success": True, "message": "Extension started"}), 202

    @app.route("/api/panels/<int:panel_number>/regenerate", methods=["POST"])
    def api_regenerate(panel_number):
        pipeline.get_panel(panel_number)
        if pipeline.is_busy:
            raise PipelineBusyError("Generation in progress")

        submit_background(pipeline.regenerate_single_panel(panel_number), f"Panel {panel_number} regeneration")
        return jsonify({"success": True, "message": f"Regenerating panel {panel_number}"}), 202

    @app.route("/api/panels/<int:panel_number>", methods=["PATCH"])
    def api_edit_panel(panel_number):
        panel = pipeline.edit_panel_text(panel_number, **body())
        return jsonify({"success": True, "panel": panel.to_dict()})

    @app.route("/api/panels/<int:panel_number>/suggestions", methods=["POST"])
    def api_suggestions(panel_number):
        panel = pipeline.get_panel(panel_number)
        options = runner.run(pipeline.script_generator.generate_dialogue_suggestions(
            panel, pipeline.settings.style, language(),
        ))
        return jsonify({"success": True, "options": options})

    @app.route("/api/idea", methods=["POST"])
    def api_idea():
        lang = body().get("language") or language()
        idea = runner.run(pipeline.script_generator.generate_story_idea(lang))
        return jsonify({"success": True, "idea": idea})

    @app.route("/api/character-name", methods=["POST"])
    def api_character_name():
        data = body()
        name = runner.run(pipeline.script_generator.generate_character_name(
            data.get("description", ""), pipeline.settings.style, language(),
        ))
        return jsonify({"success": True, "name": name})

    # ============== PROJECTS ==============

    @app.route("/api/save", methods=["POST"])
    def api_save():
        project = pipeline.save()
        if project is None:
            raise ValueError("Nothing to save yet")
        return jsonify({"success": True, "project": project_summary(project)})

    @app.route("/api/projects")
    def api_projects():
        return jsonify([project_summary(p) for p in pipeline.list_projects()])

    @app.route("/api/projects/<project_id>/load", methods=["POST"])
    def api_load(project_id):
        project = pipeline.load_project(project_id)
        return jsonify({"success": True, "project": project_summary(project)})

    @app.route("/api/projects/<project_id>", methods=["DELETE"])
    def api_delete(project_id):
        pipeline.delete_project(project_id)
        return jsonify({"success": True})

    # ============== EXPORT & MARKETING ==============

    @app.route("/api/export/pdf")
    def api_export_pdf():
        try:
            path = pipeline.export_pdf()
        except ExportError as e:
            logger.error(f"PDF export failed: {e}")
            return error_response(t(language(), "error_pdf"), 500)
        return send_file(Path(path).resolve(), mimetype="application/pdf", as_attachment=True)

    @app.route("/api/export/zip")
    def api_export_zip():
        try:
            path = pipeline.export_zip()
        except ExportError as e:
            logger.error(f"ZIP export failed: {e}")
            return error_response(t(language(), "error_zip"), 500)
        return send_file(Path(path).resolve(), mimetype="application/zip", as_attachment=True)

    @app.route("/api/marketing/<asset_type>", methods=["POST"])
    def api_marketing(asset_type):
        asset = runner.run(pipeline.generate_marketing_asset(MarketingAssetType(asset_type.upper())))
        return jsonify({"success": True, "asset": asset.to_dict()})

    return app
