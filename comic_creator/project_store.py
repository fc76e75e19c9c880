"""
Project store — whole comic projects keyed by id.

Storage: SQLite, one table. Every write is a full-snapshot upsert, so
saving the same project twice leaves exactly one row. The store never
modifies what it is handed.
"""

import json
import logging
import sqlite3
from pathlib import Path

from comic_creator import config
from comic_creator.errors import PersistenceError
from comic_creator.models import Project

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1


class ProjectStore:

    def __init__(self, db_path=None):
        self.db_path = Path(db_path or config.DB_PATH)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self):
        try:
            with self._connect() as conn:
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS comics (
                        id TEXT PRIMARY KEY,
                        title TEXT NOT NULL DEFAULT '',
                        author TEXT NOT NULL DEFAULT '',
                        created_at INTEGER NOT NULL,
                        updated_at INTEGER NOT NULL,
                        data TEXT NOT NULL
                    )
                """)
                conn.execute("""
                    CREATE INDEX IF NOT EXISTS idx_comics_updated
                    ON comics(updated_at)
                """)
                conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot open project store {self.db_path}: {e}") from e
        logger.info(f"Project store initialized at {self.db_path}")

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        return conn

    def put(self, project: Project):
        """Insert or overwrite a project (whole snapshot)."""
        try:
            payload = json.dumps(project.to_dict())
            with self._connect() as conn:
                conn.execute(
                    """INSERT INTO comics (id, title, author, created_at, updated_at, data)
                       VALUES (?, ?, ?, ?, ?, ?)
                       ON CONFLICT(id) DO UPDATE SET
                         title=excluded.title,
                         author=excluded.author,
                         created_at=excluded.created_at,
                         updated_at=excluded.updated_at,
                         data=excluded.data""",
                    (project.id, project.title, project.author,
                     project.created_at, project.updated_at, payload)
                )
        except (sqlite3.Error, TypeError, ValueError) as e:
            raise PersistenceError(f"Failed to save project {project.id}: {e}") from e
        logger.debug(f"Project saved: {project.id} ({project.panel_count} panels)")

    def get(self, project_id: str) -> Project | None:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT data FROM comics WHERE id=?", (project_id,)
                ).fetchone()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to load project {project_id}: {e}") from e
        return self._decode(row) if row else None

    def get_all(self) -> list[Project]:
        """All projects, most recently saved first."""
        try:
            with self._connect() as conn:
                rows = conn.execute(
                    "SELECT data FROM comics ORDER BY updated_at DESC, rowid DESC"
                ).fetchall()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to list projects: {e}") from e
        return [self._decode(row) for row in rows]

    def delete(self, project_id: str):
        try:
            with self._connect() as conn:
                conn.execute("DELETE FROM comics WHERE id=?", (project_id,))
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to delete project {project_id}: {e}") from e
        logger.info(f"Project deleted: {project_id}")

    def _decode(self, row: sqlite3.Row) -> Project:
        try:
            return Project.from_dict(json.loads(row["data"]))
        except (KeyError, TypeError, ValueError) as e:
            raise PersistenceError(f"Corrupt project record: {e}") from e
