"""
Comic Creator — Configuration.

Everything is read from the environment (load a .env first via
python-dotenv in the entry point). Defaults are sensible for local use.
"""

import os
from pathlib import Path

# Gemini credentials: GEMINI_API_KEY wins, GOOGLE_API_KEY is accepted too
GEMINI_API_KEY = os.environ.get("GEMINI_API_KEY") or os.environ.get("GOOGLE_API_KEY", "")

# Models (override via env if your account uses different names)
SCRIPT_MODEL = os.environ.get("SCRIPT_MODEL", "gemini-2.5-flash")
IMAGE_MODEL = os.environ.get("IMAGE_MODEL", "gemini-2.5-flash-image")

# Storage
DATA_DIR = Path(os.environ.get("COMIC_DATA_DIR", "data"))
DB_PATH = Path(os.environ.get("COMIC_DB_PATH", str(DATA_DIR / "comics.db")))
EXPORT_DIR = Path(os.environ.get("EXPORT_DIR", str(DATA_DIR / "exports")))
LOG_FILE = Path(os.environ.get("LOG_FILE", str(DATA_DIR / "comic_creator.log")))

# Safety-net autosave period (seconds)
AUTOSAVE_INTERVAL_SECONDS = int(os.environ.get("AUTOSAVE_INTERVAL_SECONDS", "300"))

# Web server
HOST = os.environ.get("COMIC_HOST", "127.0.0.1")
PORT = int(os.environ.get("COMIC_PORT", "5000"))
