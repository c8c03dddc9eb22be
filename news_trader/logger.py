"""
Structured agent log: a bounded in-memory history tagged with agent state.

Each entry is mirrored to the stdlib logger. Persistence to the store is
the orchestrator's job.
"""
import json
import logging
from collections import deque
from typing import Any, Deque, List, Optional

from .schemas import AgentLog, AgentState

logger = logging.getLogger("news_trader.agent")


def _format_data(data: Any) -> str:
    if data is None:
        return ""
    try:
        return " " + json.dumps(data, default=str)
    except (TypeError, ValueError):
        return f" {data!r}"


class AgentLogger:
    """Keeps the latest entries for one tenant."""

    def __init__(self, tenant: str, max_entries: int = 1000):
        self.tenant = tenant
        self._entries: Deque[AgentLog] = deque(maxlen=max_entries)

    def log(
        self,
        state: AgentState,
        message: str,
        data: Optional[Any] = None,
        level: int = logging.INFO,
    ) -> AgentLog:
        entry = AgentLog(state=state, message=message, data=data)
        self._entries.append(entry)
        logger.log(level, f"[{self.tenant}] [{entry.state}] {message}{_format_data(data)}")
        return entry

    def get_logs(self, limit: Optional[int] = None) -> List[AgentLog]:
        """Most-recent-first."""
        entries = list(reversed(self._entries))
        return entries if limit is None else entries[:max(limit, 0)]

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
