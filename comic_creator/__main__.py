"""
Comic Creator - Entry Point

Starts all services:
1. Asyncio loop thread (pipeline coroutines)
2. Autosave scheduler (periodic checkpoint)
3. Flask JSON API

Usage:
    python -m comic_creator

Requires a .env file with GEMINI_API_KEY.
"""

import logging

from dotenv import load_dotenv

# Load environment variables before anything else
load_dotenv()

from comic_creator import config
from comic_creator.autosave import AutosaveScheduler
from comic_creator.comic_generator import ComicPipeline
from comic_creator.web import LoopRunner, create_app

config.LOG_FILE.parent.mkdir(parents=True, exist_ok=True)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    handlers=[
        logging.StreamHandler(),
        logging.FileHandler(config.LOG_FILE, encoding="utf-8"),
    ],
)
logger = logging.getLogger("comic_creator")


def main():
    runner = LoopRunner().start()
    pipeline = ComicPipeline()
    autosave = AutosaveScheduler(pipeline)
    runner.run(autosave.start())

    app = create_app(pipeline=pipeline, runner=runner)
    logger.info(f"Comic Creator listening on http://{config.HOST}:{config.PORT}")
    try:
        app.run(host=config.HOST, port=config.PORT, threaded=True)
    finally:
        logger.info("Shutting down...")
        runner.run(autosave.stop())
        pipeline.autosave()
        runner.run(pipeline.close())
        runner.stop()
        logger.info("Shutdown complete")


if __name__ == "__main__":
    main()
