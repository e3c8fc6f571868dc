from __future__ import annotations

import asyncio
import json
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

from app_builder.errors import FragmentNotFound, PersistenceError, ProjectNotFound
from app_builder.models import (
    Fragment,
    FragmentInput,
    Message,
    MessageRole,
    MessageType,
    Project,
)
from app_builder.storage.base import make_project_name


_SCHEMA = """
CREATE TABLE IF NOT EXISTS projects (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS messages (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    role TEXT NOT NULL,
    type TEXT NOT NULL,
    content TEXT NOT NULL,
    run_id TEXT UNIQUE,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS fragments (
    id TEXT PRIMARY KEY,
    message_id TEXT NOT NULL UNIQUE REFERENCES messages(id) ON DELETE CASCADE,
    sandbox_url TEXT NOT NULL,
    title TEXT NOT NULL,
    files_json TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS messages_project_seq ON messages(project_id, seq);
"""

_MESSAGE_COLUMNS = """
    m.id, m.project_id, m.role, m.type, m.content, m.created_at,
    f.id, f.sandbox_url, f.title, f.files_json, f.created_at
"""


class SQLiteMessageStore:
    """
    SQLite-backed message store.

    Projects, messages and fragments live in three tables; fragment files are
    stored as a JSON object. Blocking sqlite calls run in a worker thread.
    """

    def __init__(self, db_path: Path | str) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialized = False

    def initialize(self) -> None:
        with self._connect() as conn:
            conn.executescript(_SCHEMA)
        self._initialized = True

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """One transaction on a fresh connection; the connection is always closed."""
        conn = sqlite3.connect(self._db_path)
        try:
            conn.execute("PRAGMA foreign_keys = ON")
            with conn:
                yield conn
        finally:
            conn.close()

    async def _call(self, fn, *args: Any) -> Any:
        if not self._initialized:
            self.initialize()
        try:
            return await asyncio.to_thread(fn, *args)
        except (ProjectNotFound, FragmentNotFound):
            raise
        except sqlite3.Error as e:
            raise PersistenceError(str(e)) from e

    @staticmethod
    def _timestamp() -> str:
        return datetime.now(timezone.utc).isoformat()

    @staticmethod
    def _row_to_message(row: tuple[Any, ...]) -> Message:
        fragment = None
        if row[6] is not None:
            fragment = Fragment(
                id=row[6],
                message_id=row[0],
                sandbox_url=row[7],
                title=row[8],
                files=json.loads(row[9] or "{}"),
                created_at=datetime.fromisoformat(row[10]),
            )
        return Message(
            id=row[0],
            project_id=row[1],
            role=MessageRole(row[2]),
            type=MessageType(row[3]),
            content=row[4],
            created_at=datetime.fromisoformat(row[5]),
            fragment=fragment,
        )

    # -------------------------
    # Projects
    # -------------------------

    def _create_project(self, prompt: str, name: str | None) -> Project:
        project = Project(
            id=f"prj_{uuid.uuid4().hex}",
            name=name or make_project_name(),
            created_at=datetime.now(timezone.utc),
        )
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO projects (id, name, created_at) VALUES (?, ?, ?)",
                (project.id, project.name, project.created_at.isoformat()),
            )
            self._insert_message(conn, project.id, MessageRole.USER, MessageType.RESULT, prompt)
        return project

    async def create_project(self, prompt: str, name: str | None = None) -> Project:
        return await self._call(self._create_project, prompt, name)

    def _get_project(self, project_id: str) -> Project:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT id, name, created_at FROM projects WHERE id = ?", (project_id,)
            ).fetchone()
        if row is None:
            raise ProjectNotFound(project_id)
        return Project(id=row[0], name=row[1], created_at=datetime.fromisoformat(row[2]))

    async def get_project(self, project_id: str) -> Project:
        return await self._call(self._get_project, project_id)

    def _list_projects(self) -> list[Project]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT id, name, created_at FROM projects ORDER BY created_at DESC"
            ).fetchall()
        return [Project(id=r[0], name=r[1], created_at=datetime.fromisoformat(r[2])) for r in rows]

    async def list_projects(self) -> list[Project]:
        return await self._call(self._list_projects)

    def _delete_project(self, project_id: str) -> None:
        self._get_project(project_id)
        with self._connect() as conn:
            conn.execute("DELETE FROM projects WHERE id = ?", (project_id,))

    async def delete_project(self, project_id: str) -> None:
        await self._call(self._delete_project, project_id)

    # -------------------------
    # Messages
    # -------------------------

    def _insert_message(
        self,
        conn: sqlite3.Connection,
        project_id: str,
        role: MessageRole,
        type: MessageType,
        content: str,
        run_id: str | None = None,
    ) -> str:
        message_id = f"msg_{uuid.uuid4().hex}"
        conn.execute(
            """
            INSERT INTO messages (id, project_id, role, type, content, run_id, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (message_id, project_id, role.value, type.value, content, run_id, self._timestamp()),
        )
        return message_id

    def _get_message(self, conn: sqlite3.Connection, where: str, value: str) -> Message | None:
        row = conn.execute(
            f"""
            SELECT {_MESSAGE_COLUMNS}
            FROM messages m LEFT JOIN fragments f ON f.message_id = m.id
            WHERE {where} = ?
            """,
            (value,),
        ).fetchone()
        return self._row_to_message(row) if row else None

    def _add_user_message(self, project_id: str, content: str) -> Message:
        self._get_project(project_id)
        with self._connect() as conn:
            message_id = self._insert_message(
                conn, project_id, MessageRole.USER, MessageType.RESULT, content
            )
            return self._get_message(conn, "m.id", message_id)  # type: ignore[return-value]

    async def add_user_message(self, project_id: str, content: str) -> Message:
        return await self._call(self._add_user_message, project_id, content)

    def _list_messages(self, project_id: str) -> list[Message]:
        self._get_project(project_id)
        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT {_MESSAGE_COLUMNS}
                FROM messages m LEFT JOIN fragments f ON f.message_id = m.id
                WHERE m.project_id = ?
                ORDER BY m.seq ASC
                """,
                (project_id,),
            ).fetchall()
        return [self._row_to_message(r) for r in rows]

    async def list_messages(self, project_id: str) -> list[Message]:
        return await self._call(self._list_messages, project_id)

    def _recent_messages(self, project_id: str, limit: int) -> list[Message]:
        self._get_project(project_id)
        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT {_MESSAGE_COLUMNS}
                FROM messages m LEFT JOIN fragments f ON f.message_id = m.id
                WHERE m.project_id = ? AND m.type != ?
                ORDER BY m.seq DESC
                LIMIT ?
                """,
                (project_id, MessageType.ERROR.value, max(limit, 0)),
            ).fetchall()
        # Newest first from SQL; callers want chronological order
        return [self._row_to_message(r) for r in reversed(rows)]

    async def recent_messages(self, project_id: str, limit: int) -> list[Message]:
        return await self._call(self._recent_messages, project_id, limit)

    def _create_result_message(
        self,
        project_id: str,
        content: str,
        type: MessageType,
        fragment: FragmentInput | None,
        run_id: str | None,
    ) -> Message:
        with self._connect() as conn:
            if run_id:
                existing = self._get_message(conn, "m.run_id", run_id)
                if existing is not None:
                    return existing
            self._get_project(project_id)
            message_id = self._insert_message(
                conn, project_id, MessageRole.ASSISTANT, type, content, run_id
            )
            if fragment is not None:
                conn.execute(
                    """
                    INSERT INTO fragments (id, message_id, sandbox_url, title, files_json, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        f"frg_{uuid.uuid4().hex}",
                        message_id,
                        fragment.sandbox_url,
                        fragment.title,
                        json.dumps(fragment.files),
                        self._timestamp(),
                    ),
                )
            return self._get_message(conn, "m.id", message_id)  # type: ignore[return-value]

    async def create_result_message(
        self,
        project_id: str,
        content: str,
        type: MessageType,
        fragment: FragmentInput | None = None,
        run_id: str | None = None,
    ) -> Message:
        return await self._call(
            self._create_result_message, project_id, content, type, fragment, run_id
        )

    # -------------------------
    # Fragments
    # -------------------------

    def _get_fragment(self, fragment_id: str) -> Fragment:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT id, message_id, sandbox_url, title, files_json, created_at
                FROM fragments WHERE id = ?
                """,
                (fragment_id,),
            ).fetchone()
        if row is None:
            raise FragmentNotFound(fragment_id)
        return Fragment(
            id=row[0],
            message_id=row[1],
            sandbox_url=row[2],
            title=row[3],
            files=json.loads(row[4] or "{}"),
            created_at=datetime.fromisoformat(row[5]),
        )

    async def get_fragment(self, fragment_id: str) -> Fragment:
        return await self._call(self._get_fragment, fragment_id)

    def _update_fragment_url(self, fragment_id: str, sandbox_url: str) -> Fragment:
        self._get_fragment(fragment_id)
        with self._connect() as conn:
            conn.execute(
                "UPDATE fragments SET sandbox_url = ? WHERE id = ?", (sandbox_url, fragment_id)
            )
        return self._get_fragment(fragment_id)

    async def update_fragment_url(self, fragment_id: str, sandbox_url: str) -> Fragment:
        return await self._call(self._update_fragment_url, fragment_id, sandbox_url)
