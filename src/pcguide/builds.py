from __future__ import annotations

import json
import logging
import sqlite3
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from .builder import evaluate
from .config import CartStore
from .db import PartsRepository
from .errors import BuildNotFoundError
from .schemas import BuildPart, CompatibilityVerdict, SavedBuild, SavedBuildCreate, SavedBuildUpdate

logger = logging.getLogger(__name__)

# optional fields a PATCH may reset with null
CLEARABLE_FIELDS = ("description", "pc_part_picker_url")


class BuildService:
    """
    Saved builds owned by a session.

    Each build keeps the compatibility verdict of its parts as of the last
    save. A private build is visible to its owner only; to everyone else it
    does not exist, so lookups, updates and deletes answer "Build not found".
    """

    def __init__(self, repo: PartsRepository, store: CartStore = "memory", db_path: Path | None = None):
        self.repo = repo
        self.store = store
        self.db_path = db_path
        self.builds: Dict[str, SavedBuild] = {}
        self._write_lock = threading.Lock()

        if self.store == "sqlite":
            if not self.db_path:
                raise ValueError("store=sqlite requires db_path.")
            self._init_table()

    def list_for_session(self, session_id: str) -> List[SavedBuild]:
        """The session's own builds, newest first."""
        return self._newest_first([b for b in self._all_builds() if b.session_id == session_id])

    def list_public(self) -> List[SavedBuild]:
        return self._newest_first([b for b in self._all_builds() if b.is_public])

    def get(self, session_id: str, build_id: str) -> SavedBuild:
        build = self._find(build_id)
        if build is None or not (build.is_public or build.session_id == session_id):
            raise BuildNotFoundError(build_id)
        return build

    def create(self, session_id: str, data: SavedBuildCreate) -> SavedBuild:
        now = datetime.now(timezone.utc)
        build = SavedBuild(
            id=uuid.uuid4().hex,
            session_id=session_id,
            **data.model_dump(),
            compatibility=self._check(data.parts_config),
            created_at=now,
            updated_at=now,
        )
        with self._write_lock:
            self._store(build)
        logger.info("build %s saved with %d parts", build.id, len(build.parts_config))
        return build

    def update(self, session_id: str, build_id: str, changes: SavedBuildUpdate) -> SavedBuild:
        """
        Apply a partial update to one of the session's builds.

        Only fields present in ``changes`` are touched. Replacing
        ``parts_config`` re-runs the compatibility check.
        """
        with self._write_lock:
            build = self._owned(session_id, build_id)
            updates = {
                key: value
                for key, value in changes.model_dump(exclude_unset=True).items()
                if value is not None or key in CLEARABLE_FIELDS
            }
            if changes.parts_config is not None:
                updates["compatibility"] = self._check(changes.parts_config)
            updates["updated_at"] = datetime.now(timezone.utc)
            merged = build.model_dump()
            merged.update(updates)
            # model_dump drops the excluded owner field
            merged["session_id"] = build.session_id
            updated = SavedBuild.model_validate(merged)
            self._store(updated)
        return updated

    def delete(self, session_id: str, build_id: str) -> None:
        with self._write_lock:
            self._owned(session_id, build_id)
            self.builds.pop(build_id, None)
            if self.store == "sqlite":
                with sqlite3.connect(self.db_path) as conn:
                    conn.execute("DELETE FROM saved_builds WHERE build_id = ?", (build_id,))
                    conn.commit()
        logger.info("build %s deleted", build_id)

    def _check(self, parts_config: List[BuildPart]) -> CompatibilityVerdict:
        return evaluate(self.repo.get_parts_by_ids(item.part for item in parts_config))

    def _owned(self, session_id: str, build_id: str) -> SavedBuild:
        build = self._find(build_id)
        if build is None or build.session_id != session_id:
            raise BuildNotFoundError(build_id)
        return build

    @staticmethod
    def _newest_first(builds: List[SavedBuild]) -> List[SavedBuild]:
        return sorted(builds, key=lambda b: b.created_at, reverse=True)

    # === Persistence ===

    def _init_table(self) -> None:
        if self.db_path is None:
            raise RuntimeError("store=sqlite requires db_path.")
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS saved_builds (
                    build_id TEXT PRIMARY KEY,
                    session_id TEXT NOT NULL,
                    build_json TEXT NOT NULL,
                    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
            conn.commit()

    def _store(self, build: SavedBuild) -> None:
        if self.store != "sqlite":
            self.builds[build.id] = build
            return
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO saved_builds (build_id, session_id, build_json, updated_at)
                VALUES (?, ?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(build_id) DO UPDATE SET
                    build_json = excluded.build_json,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (build.id, build.session_id, build.model_dump_json()),
            )
            conn.commit()

    def _find(self, build_id: str) -> Optional[SavedBuild]:
        if self.store != "sqlite":
            return self.builds.get(build_id)
        with sqlite3.connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT session_id, build_json FROM saved_builds WHERE build_id = ?",
                (build_id,),
            ).fetchone()
        if row is None:
            return None
        return _row_to_build(row[0], row[1])

    def _all_builds(self) -> List[SavedBuild]:
        if self.store != "sqlite":
            return list(self.builds.values())
        with sqlite3.connect(self.db_path) as conn:
            rows = conn.execute("SELECT session_id, build_json FROM saved_builds").fetchall()
        return [_row_to_build(session_id, raw) for session_id, raw in rows]


def _row_to_build(session_id: str, raw: str) -> SavedBuild:
    data = json.loads(raw)
    data["sessionId"] = session_id
    return SavedBuild.model_validate(data)
