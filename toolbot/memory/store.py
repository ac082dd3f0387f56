"""SQLite store for toolbot.

Three tables, all scoped by session_id:
    scheduled_tasks, pending_confirmations, task_runs
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from loguru import logger


class TaskStore:
    """SQLite persistence, the single source of truth for durable state."""

    def __init__(self, db_path: str = "data/toolbot.db"):
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()
        logger.info(f"TaskStore initialized: {db_path}")

    @contextmanager
    def _get_conn(self):
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        try:
            yield conn
        finally:
            conn.close()

    def _init_db(self):
        with self._get_conn() as conn:
            conn.executescript(_SCHEMA)
            conn.commit()

    # ════════════════════════════════════════════════════════════
    # SCHEDULED TASKS
    # ════════════════════════════════════════════════════════════

    def add_task(
        self,
        task_id: str,
        session_id: str,
        schedule_type: str,
        schedule_value: str,
        tool_name: str,
        payload: str,
        next_fire: float,
    ) -> None:
        with self._get_conn() as conn:
            conn.execute(
                """INSERT INTO scheduled_tasks
                   (task_id, session_id, schedule_type, schedule_value,
                    tool_name, payload, next_fire)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (task_id, session_id, schedule_type, schedule_value,
                 tool_name, payload, next_fire),
            )
            conn.commit()

    def get_task(self, task_id: str) -> dict[str, Any] | None:
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT * FROM scheduled_tasks WHERE task_id = ?", (task_id,)
            ).fetchone()
        return dict(row) if row else None

    def get_active_tasks(self, session_id: str) -> list[dict[str, Any]]:
        """Pending and due tasks, ordered by next fire then id."""
        with self._get_conn() as conn:
            rows = conn.execute(
                """SELECT * FROM scheduled_tasks
                   WHERE session_id = ? AND status IN ('pending', 'due')
                   ORDER BY next_fire ASC, task_id ASC""",
                (session_id,),
            ).fetchall()
        return [dict(r) for r in rows]

    def get_due_tasks(self, session_id: str, now: float) -> list[dict[str, Any]]:
        with self._get_conn() as conn:
            rows = conn.execute(
                """SELECT * FROM scheduled_tasks
                   WHERE session_id = ? AND status = 'pending' AND next_fire <= ?
                   ORDER BY next_fire ASC, task_id ASC""",
                (session_id, now),
            ).fetchall()
        return [dict(r) for r in rows]

    def _transition(self, task_id: str, from_status: tuple[str, ...], sql_set: str,
                    params: tuple = ()) -> bool:
        placeholders = ", ".join("?" for _ in from_status)
        with self._get_conn() as conn:
            cur = conn.execute(
                f"""UPDATE scheduled_tasks SET {sql_set}
                    WHERE task_id = ? AND status IN ({placeholders})""",
                (*params, task_id, *from_status),
            )
            conn.commit()
        return cur.rowcount > 0

    def mark_task_due(self, task_id: str, next_fire: float) -> bool:
        """pending → due.

        False if the task was cancelled or already fired for ``next_fire``.
        """
        with self._get_conn() as conn:
            cur = conn.execute(
                """UPDATE scheduled_tasks SET status = 'due'
                   WHERE task_id = ? AND status = 'pending' AND next_fire = ?""",
                (task_id, next_fire),
            )
            conn.commit()
        return cur.rowcount > 0

    def reschedule_task(self, task_id: str, next_fire: float) -> bool:
        """due → pending with a new next fire (cron)."""
        return self._transition(
            task_id, ("due",), "status = 'pending', next_fire = ?", (next_fire,),
        )

    def retire_task(self, task_id: str) -> bool:
        """due → retired (one-shot tasks after their single fire)."""
        return self._transition(task_id, ("due",), "status = 'retired'")

    def cancel_task(self, task_id: str) -> bool:
        """Cancel a pending/due task. Returns True if cancelled."""
        return self._transition(task_id, ("pending", "due"), "status = 'cancelled'")

    def requeue_due_tasks(self, session_id: str) -> int:
        """Reset tasks stranded in 'due' by a crash mid-fire."""
        with self._get_conn() as conn:
            cur = conn.execute(
                """UPDATE scheduled_tasks SET status = 'pending'
                   WHERE session_id = ? AND status = 'due'""",
                (session_id,),
            )
            conn.commit()
        return cur.rowcount

    def record_task_outcome(
        self, task_id: str, status: str, error: str | None, run_at: float,
    ) -> None:
        with self._get_conn() as conn:
            conn.execute(
                """UPDATE scheduled_tasks
                   SET last_status = ?, last_error = ?, last_run_at = ?
                   WHERE task_id = ?""",
                (status, error, run_at, task_id),
            )
            conn.commit()

    # ── Run log ─────────────────────────────────────────────────

    def log_task_run(
        self,
        task_id: str,
        tool_name: str,
        status: str,
        detail: str,
        fired_at: float,
        call_id: str | None = None,
    ) -> None:
        """Record one firing of a scheduled task."""
        with self._get_conn() as conn:
            conn.execute(
                """INSERT INTO task_runs
                   (task_id, tool_name, status, detail, call_id, fired_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (task_id, tool_name, status, detail, call_id, fired_at),
            )
            conn.commit()

    def get_task_runs(self, task_id: str, limit: int = 20) -> list[dict[str, Any]]:
        """Most recent runs first."""
        with self._get_conn() as conn:
            rows = conn.execute(
                """SELECT * FROM task_runs
                   WHERE task_id = ? ORDER BY fired_at DESC, id DESC LIMIT ?""",
                (task_id, limit),
            ).fetchall()
        return [dict(r) for r in rows]

    # ════════════════════════════════════════════════════════════
    # PENDING CONFIRMATIONS
    # ════════════════════════════════════════════════════════════

    def add_pending_confirmation(
        self,
        call_id: str,
        session_id: str,
        tool_name: str,
        arguments: str,
        message_id: str | None = None,
        origin: str = "chat",
    ) -> bool:
        """Insert a pending call. False if the session already has this call id pending."""
        with self._get_conn() as conn:
            cur = conn.execute(
                """INSERT OR IGNORE INTO pending_confirmations
                   (call_id, session_id, tool_name, arguments, message_id, origin)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (call_id, session_id, tool_name, arguments, message_id, origin),
            )
            conn.commit()
        return cur.rowcount > 0

    def get_pending_confirmation(
        self, call_id: str, session_id: str,
    ) -> dict[str, Any] | None:
        with self._get_conn() as conn:
            row = conn.execute(
                """SELECT * FROM pending_confirmations
                   WHERE call_id = ? AND session_id = ?""",
                (call_id, session_id),
            ).fetchone()
        return dict(row) if row else None

    def list_pending_confirmations(self, session_id: str) -> list[dict[str, Any]]:
        with self._get_conn() as conn:
            rows = conn.execute(
                """SELECT * FROM pending_confirmations
                   WHERE session_id = ? ORDER BY created_at ASC, call_id ASC""",
                (session_id,),
            ).fetchall()
        return [dict(r) for r in rows]

    def claim_pending_confirmation(
        self, call_id: str, session_id: str,
    ) -> dict[str, Any] | None:
        """Remove and return a pending call; None if absent or already claimed."""
        with self._get_conn() as conn:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                """SELECT * FROM pending_confirmations
                   WHERE call_id = ? AND session_id = ?""",
                (call_id, session_id),
            ).fetchone()
            if row is None:
                conn.rollback()
                return None
            conn.execute(
                "DELETE FROM pending_confirmations WHERE call_id = ? AND session_id = ?",
                (call_id, session_id),
            )
            conn.commit()
        return dict(row)


# ════════════════════════════════════════════════════════════
# SCHEMA
# ════════════════════════════════════════════════════════════

_SCHEMA = """
-- 1. Scheduled tasks (next_fire / last_run_at are unix seconds, UTC)
CREATE TABLE IF NOT EXISTS scheduled_tasks (
    task_id TEXT PRIMARY KEY,
    session_id TEXT NOT NULL,
    schedule_type TEXT NOT NULL,
    schedule_value TEXT NOT NULL,
    tool_name TEXT NOT NULL,
    payload TEXT NOT NULL DEFAULT '{}',
    next_fire REAL NOT NULL,
    status TEXT DEFAULT 'pending',
    last_status TEXT,
    last_error TEXT,
    last_run_at REAL,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
CREATE INDEX IF NOT EXISTS idx_tasks_due
    ON scheduled_tasks(session_id, status, next_fire);

-- 2. Pending confirmations (tool calls awaiting a human decision)
--    call ids come from the model and are only unique within a session
CREATE TABLE IF NOT EXISTS pending_confirmations (
    call_id TEXT NOT NULL,
    session_id TEXT NOT NULL,
    tool_name TEXT NOT NULL,
    arguments TEXT NOT NULL DEFAULT '{}',
    message_id TEXT,
    origin TEXT DEFAULT 'chat',
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    PRIMARY KEY (call_id, session_id)
);

-- 3. Task run log
CREATE TABLE IF NOT EXISTS task_runs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    task_id TEXT NOT NULL,
    tool_name TEXT NOT NULL,
    status TEXT NOT NULL,
    detail TEXT,
    call_id TEXT,
    fired_at REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_task_runs_task ON task_runs(task_id, fired_at DESC);
"""
