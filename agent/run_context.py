"""
Per-run context threaded through every tool handler.

A ``RunContext`` bundles what one chat run needs: the database, the dataset
being analyzed, a fresh ``AgentRunState`` and the reasoning stream. It is
built at run start and discarded at run end; handlers never reach for
module-level state.
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field

from data_ops.registry import Dataset
from data_ops.store import Database

from .reasoning_stream import ReasoningStream
from .state import AgentRunState


@dataclass
class RunContext:
    db: Database
    dataset: Dataset
    question: str = ""
    stream: ReasoningStream = field(default_factory=ReasoningStream)
    tracker: AgentRunState = field(default_factory=AgentRunState)
    cancel_event: threading.Event | None = None
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])

    @property
    def table_name(self) -> str:
        return self.dataset.table_name

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    def emit(self, message: str, prefix: str | None = None) -> None:
        self.stream.emit(message, prefix=prefix)
