"""Per-dataset conversation history (append-only turn log).

Storage is unbounded; only reads are capped (``recent``) or paginated
(``page``). Ordering is by the autoincrement ``id``, which is monotonic
in append order.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import asdict, dataclass

import config
from errors import EngineError, NotFound, ValidationError

from .store import Database, utc_now

logger = logging.getLogger("datachat")


@dataclass
class Turn:
    id: int
    dataset_id: str
    user_text: str
    agent_text: str
    created_at: str

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Turn":
        return cls(
            id=row["id"],
            dataset_id=row["dataset_id"],
            user_text=row["user_text"],
            agent_text=row["agent_text"],
            created_at=row["created_at"],
        )


class ConversationHistory:
    def __init__(self, db: Database):
        self.db = db

    def append(self, dataset_id: str, user_text: str, agent_text: str) -> int:
        """Store one turn and return its id.

        Serialized against dataset deletion; raises NotFound when the
        dataset has already been removed.
        """
        with self.db.dataset_lock(dataset_id):
            try:
                with self.db.connect() as conn:
                    exists = conn.execute(
                        "select 1 from datasets where id = ?", (dataset_id,)
                    ).fetchone()
                    if exists is None:
                        self.db.forget_lock(dataset_id)
                        raise NotFound(f"dataset {dataset_id} deleted before history append")
                    cur = conn.execute(
                        """
                        insert into chat_history (dataset_id, user_text, agent_text, created_at)
                        values (?, ?, ?, ?)
                        """,
                        (dataset_id, user_text, agent_text, utc_now()),
                    )
                    conn.commit()
                    return int(cur.lastrowid)
            except sqlite3.Error as e:
                raise EngineError(f"history append failed: {e}") from e

    def recent(self, dataset_id: str, limit: int | None = None) -> list[Turn]:
        """The most recent ``limit`` turns, oldest first."""
        if limit is None:
            limit = config.CONTEXT_TURN_LIMIT
        if limit <= 0:
            return []
        with self.db.connect(read_only=True) as conn:
            rows = conn.execute(
                "select * from chat_history where dataset_id = ? order by id desc limit ?",
                (dataset_id, limit),
            ).fetchall()
        return [Turn.from_row(r) for r in reversed(rows)]

    def page(self, dataset_id: str, page: int, page_size: int) -> dict:
        """One page of a newest-first window.

        Page 1 holds the newest ``page_size`` turns. Items inside a page are
        oldest first.

        Returns:
            ``{items, total_count, has_more}``.
        """
        if page < 1 or page_size < 1:
            raise ValidationError(
                f"page={page} page_size={page_size}",
                user_message="Page and page size must be positive.",
            )
        offset = (page - 1) * page_size
        with self.db.connect(read_only=True) as conn:
            total = conn.execute(
                "select count(*) from chat_history where dataset_id = ?", (dataset_id,)
            ).fetchone()[0]
            rows = conn.execute(
                """
                select * from chat_history where dataset_id = ?
                order by id desc limit ? offset ?
                """,
                (dataset_id, page_size, offset),
            ).fetchall()
        return {
            "items": [Turn.from_row(r) for r in reversed(rows)],
            "total_count": total,
            "has_more": offset + page_size < total,
        }

    def all(self, dataset_id: str) -> list[Turn]:
        with self.db.connect(read_only=True) as conn:
            rows = conn.execute(
                "select * from chat_history where dataset_id = ? order by id asc",
                (dataset_id,),
            ).fetchall()
        return [Turn.from_row(r) for r in rows]

    def clear(self, dataset_id: str) -> int:
        """Delete every turn for a dataset. Returns how many were removed."""
        try:
            with self.db.connect() as conn:
                cur = conn.execute(
                    "delete from chat_history where dataset_id = ?", (dataset_id,)
                )
                conn.commit()
                return cur.rowcount
        except sqlite3.Error as e:
            raise EngineError(f"history clear failed: {e}") from e

    def count(self, dataset_id: str) -> int:
        with self.db.connect(read_only=True) as conn:
            return conn.execute(
                "select count(*) from chat_history where dataset_id = ?", (dataset_id,)
            ).fetchone()[0]


def format_as_context(turns: list[Turn]) -> str:
    """Render turns as prior-conversation context for the system prompt."""
    from agent.truncation import trunc

    if not turns:
        return ""
    blocks = []
    for i, t in enumerate(turns, 1):
        blocks.append(
            f"[Previous conversation {i}]\n"
            f"User: {trunc(t.user_text, 'history.user_text')}\n"
            f"AI: {trunc(t.agent_text, 'history.agent_text')}"
        )
    return "\n\n".join(blocks)
