"""SQLite persistence for learning paths.

Each path is one row in ``learning_paths``; topics and timeline entries are
append-only child rows so that adding one never rewrites the others. Every
write bumps the path ``version`` which callers can pass back as
``expected_version`` to detect a lost update.
"""

import asyncio
import json
import logging
import os
import sqlite3
import weakref
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Iterable, List, Mapping, Optional, Sequence
from uuid import uuid4

from db_pool import SQLiteConnectionPool
from engines.validation import (
    LearningPathNotFoundError,
    StaleLearningPathError,
    TopicNotFoundError,
)
from schemas import (
    MAX_DIFFICULTY,
    MIN_DIFFICULTY,
    Activity,
    LearningPath,
    LearningTopic,
    SkillCluster,
    TimelineEntry,
    dump_json,
    load_json,
)

logger = logging.getLogger(__name__)

DB_PATH = os.getenv("DB_PATH", "data.db")

_pool = SQLiteConnectionPool(DB_PATH, max_connections=10)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _exec(sql: str, params: Iterable = ()):
    with _pool.get_connection() as con:
        cur = con.execute(sql, params)
        con.commit()
        return cur


def _query(sql: str, params: Iterable = ()) -> list[sqlite3.Row]:
    with _pool.get_connection() as con:
        cur = con.execute(sql, params)
        return cur.fetchall()


def init() -> None:
    with _pool.get_connection() as con:
        con.executescript(
            f"""
            CREATE TABLE IF NOT EXISTS learning_paths (
              id                   TEXT PRIMARY KEY,
              user_id              TEXT NOT NULL,
              goal                 TEXT NOT NULL,
              skill_clusters       TEXT NOT NULL,
              current_topic_id     TEXT,
              current_activity     TEXT,
              baseline_difficulty  INTEGER NOT NULL CHECK (baseline_difficulty BETWEEN {MIN_DIFFICULTY} AND {MAX_DIFFICULTY}),
              current_difficulty   INTEGER NOT NULL CHECK (current_difficulty BETWEEN {MIN_DIFFICULTY} AND {MAX_DIFFICULTY}),
              overall_elo          REAL NOT NULL DEFAULT 1000,
              skill_scores         TEXT NOT NULL DEFAULT '{{}}',
              is_active            INTEGER NOT NULL DEFAULT 1,
              version              INTEGER NOT NULL DEFAULT 0,
              created_at           TEXT NOT NULL,
              updated_at           TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_learning_paths_user ON learning_paths(user_id, is_active);

            CREATE TABLE IF NOT EXISTS learning_topics (
              path_id   TEXT NOT NULL,
              position  INTEGER NOT NULL,
              topic_id  TEXT NOT NULL,
              payload   TEXT NOT NULL,
              PRIMARY KEY (path_id, topic_id),
              FOREIGN KEY (path_id) REFERENCES learning_paths(id) ON DELETE CASCADE
            );
            CREATE INDEX IF NOT EXISTS idx_learning_topics_order ON learning_topics(path_id, position);

            CREATE TABLE IF NOT EXISTS timeline_entries (
              path_id    TEXT NOT NULL,
              seq        INTEGER NOT NULL,
              entry_id   TEXT NOT NULL,
              topic_id   TEXT NOT NULL,
              success    INTEGER NOT NULL,
              payload    TEXT NOT NULL,
              created_at TEXT NOT NULL,
              PRIMARY KEY (path_id, seq),
              FOREIGN KEY (path_id) REFERENCES learning_paths(id) ON DELETE CASCADE
            );
            """
        )
        con.commit()


# -------------- row mapping --------------
def _row_to_path(con: sqlite3.Connection, row: sqlite3.Row) -> LearningPath:
    path_id = row["id"]
    topics = [
        load_json(t["payload"])
        for t in con.execute(
            "SELECT payload FROM learning_topics WHERE path_id = ? ORDER BY position", (path_id,)
        ).fetchall()
    ]
    timeline = [
        load_json(e["payload"])
        for e in con.execute(
            "SELECT payload FROM timeline_entries WHERE path_id = ? ORDER BY seq", (path_id,)
        ).fetchall()
    ]
    return LearningPath.model_validate(
        {
            "id": path_id,
            "user_id": row["user_id"],
            "goal": row["goal"],
            "skill_clusters": load_json(row["skill_clusters"]) or [],
            "current_topic_id": row["current_topic_id"],
            "current_activity": load_json(row["current_activity"]),
            "baseline_difficulty": row["baseline_difficulty"],
            "current_difficulty": row["current_difficulty"],
            "overall_elo": row["overall_elo"],
            "skill_scores": load_json(row["skill_scores"]) or {},
            "topics": topics,
            "timeline": timeline,
            "is_active": bool(row["is_active"]),
            "version": row["version"],
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
        }
    )


def _touch(con: sqlite3.Connection, path_id: str, assignments: str = "", params: Sequence[Any] = ()) -> None:
    """Apply ``assignments`` to the path row and bump its version."""

    set_clause = "version = version + 1, updated_at = ?"
    if assignments:
        set_clause = f"{assignments}, {set_clause}"
    cur = con.execute(
        f"UPDATE learning_paths SET {set_clause} WHERE id = ?",
        (*params, _now(), path_id),
    )
    if cur.rowcount == 0:
        raise LearningPathNotFoundError(path_id)


def _write(path_id: str, assignments: str, params: Sequence[Any] = ()) -> None:
    with _pool.get_connection() as con:
        _touch(con, path_id, assignments, params)
        con.commit()


# -------------- learning paths --------------
def create_learning_path(
    user_id: str,
    goal: str,
    skill_clusters: Sequence[SkillCluster],
    baseline_difficulty: int,
    current_difficulty: int,
    *,
    is_active: bool = True,
    path_id: Optional[str] = None,
) -> LearningPath:
    now = _now()
    path = LearningPath(
        id=path_id or uuid4().hex,
        user_id=user_id,
        goal=goal,
        skill_clusters=list(skill_clusters),
        baseline_difficulty=baseline_difficulty,
        current_difficulty=current_difficulty,
        is_active=is_active,
        created_at=now,
        updated_at=now,
    )
    _exec(
        """
        INSERT INTO learning_paths (
            id, user_id, goal, skill_clusters, current_topic_id, current_activity,
            baseline_difficulty, current_difficulty, overall_elo, skill_scores,
            is_active, version, created_at, updated_at
        ) VALUES (?, ?, ?, ?, NULL, NULL, ?, ?, ?, '{}', ?, 0, ?, ?)
        """,
        (
            path.id,
            path.user_id,
            path.goal,
            json.dumps([cluster.value for cluster in path.skill_clusters]),
            path.baseline_difficulty,
            path.current_difficulty,
            path.overall_elo,
            int(path.is_active),
            now,
            now,
        ),
    )
    return path


def get_learning_path(path_id: str) -> Optional[LearningPath]:
    with _pool.get_connection() as con:
        row = con.execute("SELECT * FROM learning_paths WHERE id = ?", (path_id,)).fetchone()
        if row is None:
            return None
        return _row_to_path(con, row)


def list_learning_paths(user_id: str) -> List[LearningPath]:
    with _pool.get_connection() as con:
        rows = con.execute(
            "SELECT * FROM learning_paths WHERE user_id = ? ORDER BY updated_at DESC, created_at DESC",
            (user_id,),
        ).fetchall()
        return [_row_to_path(con, row) for row in rows]


def get_active_learning_path(user_id: str) -> Optional[LearningPath]:
    with _pool.get_connection() as con:
        row = con.execute(
            "SELECT * FROM learning_paths WHERE user_id = ? AND is_active = 1 ORDER BY updated_at DESC LIMIT 1",
            (user_id,),
        ).fetchone()
        if row is None:
            return None
        return _row_to_path(con, row)


def deactivate_learning_path(path_id: str) -> None:
    _write(path_id, "is_active = 0")


def delete_learning_path(path_id: str) -> None:
    _exec("DELETE FROM learning_paths WHERE id = ?", (path_id,))


# -------------- topics --------------
def add_topic(path_id: str, topic: LearningTopic) -> None:
    with _pool.get_connection() as con:
        con.execute("BEGIN IMMEDIATE")
        position = con.execute(
            "SELECT COUNT(*) FROM learning_topics WHERE path_id = ?", (path_id,)
        ).fetchone()[0]
        _touch(con, path_id)
        try:
            con.execute(
                "INSERT INTO learning_topics (path_id, position, topic_id, payload) VALUES (?, ?, ?, ?)",
                (path_id, position, topic.id, dump_json(topic)),
            )
        except sqlite3.IntegrityError as exc:
            raise ValueError(f"Topic {topic.id} already exists in learning path {path_id}") from exc
        con.commit()


def set_current_topic(path_id: str, topic_id: str) -> None:
    with _pool.get_connection() as con:
        exists = con.execute(
            "SELECT 1 FROM learning_topics WHERE path_id = ? AND topic_id = ?", (path_id, topic_id)
        ).fetchone()
        if exists is None:
            if con.execute("SELECT 1 FROM learning_paths WHERE id = ?", (path_id,)).fetchone() is None:
                raise LearningPathNotFoundError(path_id)
            raise TopicNotFoundError(path_id, topic_id)
        _touch(con, path_id, "current_topic_id = ?", (topic_id,))
        con.commit()


# -------------- activity --------------
def set_current_activity(path_id: str, activity: Optional[Activity]) -> None:
    payload = dump_json(activity) if activity is not None else None
    _write(path_id, "current_activity = ?", (payload,))


def clear_current_activity(path_id: str) -> None:
    set_current_activity(path_id, None)


# -------------- timeline & scores --------------
def add_timeline_entry(
    path_id: str,
    entry: TimelineEntry,
    *,
    expected_version: Optional[int] = None,
) -> None:
    with _pool.get_connection() as con:
        con.execute("BEGIN IMMEDIATE")
        row = con.execute("SELECT version FROM learning_paths WHERE id = ?", (path_id,)).fetchone()
        if row is None:
            raise LearningPathNotFoundError(path_id)
        if expected_version is not None and row["version"] != expected_version:
            raise StaleLearningPathError(path_id, expected_version, row["version"])
        seq = con.execute(
            "SELECT COALESCE(MAX(seq) + 1, 0) FROM timeline_entries WHERE path_id = ?", (path_id,)
        ).fetchone()[0]
        con.execute(
            """
            INSERT INTO timeline_entries (path_id, seq, entry_id, topic_id, success, payload, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                path_id,
                seq,
                entry.id,
                entry.topic_id,
                int(entry.success),
                dump_json(entry),
                entry.timestamp.isoformat(),
            ),
        )
        _touch(con, path_id)
        con.commit()


def update_elo_scores(path_id: str, overall_elo: float, skill_scores: Mapping[SkillCluster, float]) -> None:
    scores: Dict[str, float] = {
        (cluster.value if isinstance(cluster, SkillCluster) else str(cluster)): float(score)
        for cluster, score in skill_scores.items()
    }
    _write(
        path_id,
        "overall_elo = ?, skill_scores = ?",
        (float(overall_elo), json.dumps(scores, sort_keys=True)),
    )


def update_difficulty(path_id: str, difficulty: int) -> None:
    if not MIN_DIFFICULTY <= int(difficulty) <= MAX_DIFFICULTY:
        raise ValueError(f"Difficulty must be between {MIN_DIFFICULTY} and {MAX_DIFFICULTY}, got {difficulty}")
    _write(path_id, "current_difficulty = ?", (int(difficulty),))


class LearningPathRepository:
    """Async facade over the module functions, consumed by the orchestrator.

    ``path_lock`` serialises read-modify-write sequences on one path inside
    this process; ``expected_version`` on timeline appends catches writers
    in other processes.
    """

    def __init__(self) -> None:
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    @asynccontextmanager
    async def path_lock(self, path_id: str) -> AsyncIterator[None]:
        lock = self._locks.get(path_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[path_id] = lock
        async with lock:
            yield

    async def create(
        self,
        user_id: str,
        goal: str,
        skill_clusters: Sequence[SkillCluster],
        baseline_difficulty: int,
        current_difficulty: int,
        *,
        is_active: bool = True,
    ) -> LearningPath:
        return await asyncio.to_thread(
            create_learning_path,
            user_id,
            goal,
            skill_clusters,
            baseline_difficulty,
            current_difficulty,
            is_active=is_active,
        )

    async def get(self, path_id: str) -> Optional[LearningPath]:
        return await asyncio.to_thread(get_learning_path, path_id)

    async def list_for_user(self, user_id: str) -> List[LearningPath]:
        return await asyncio.to_thread(list_learning_paths, user_id)

    async def find_active_for_user(self, user_id: str) -> Optional[LearningPath]:
        return await asyncio.to_thread(get_active_learning_path, user_id)

    async def add_topic(self, path_id: str, topic: LearningTopic) -> None:
        await asyncio.to_thread(add_topic, path_id, topic)

    async def set_current_topic(self, path_id: str, topic_id: str) -> None:
        await asyncio.to_thread(set_current_topic, path_id, topic_id)

    async def set_current_activity(self, path_id: str, activity: Optional[Activity]) -> None:
        await asyncio.to_thread(set_current_activity, path_id, activity)

    async def clear_current_activity(self, path_id: str) -> None:
        await asyncio.to_thread(clear_current_activity, path_id)

    async def add_timeline_entry(
        self,
        path_id: str,
        entry: TimelineEntry,
        *,
        expected_version: Optional[int] = None,
    ) -> None:
        await asyncio.to_thread(add_timeline_entry, path_id, entry, expected_version=expected_version)

    async def update_elo_scores(
        self, path_id: str, overall_elo: float, skill_scores: Mapping[SkillCluster, float]
    ) -> None:
        await asyncio.to_thread(update_elo_scores, path_id, overall_elo, skill_scores)

    async def update_difficulty(self, path_id: str, difficulty: int) -> None:
        await asyncio.to_thread(update_difficulty, path_id, difficulty)

    async def deactivate(self, path_id: str) -> None:
        await asyncio.to_thread(deactivate_learning_path, path_id)

    async def delete(self, path_id: str) -> None:
        await asyncio.to_thread(delete_learning_path, path_id)
