"""Session registry: the one map shared between sessions.

Holds every live session with its sandbox, loop and task, plus the
per-remote start ledger used for the 24-hour quota. All access goes
through one lock so admission (count, check, insert) is atomic even when
control calls arrive from other threads.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Callable
from dataclasses import dataclass

from vmagent.errors import ConcurrencyLimitError, QuotaExceededError
from vmagent.session.events import EventSink
from vmagent.session.loop import ConversationLoop
from vmagent.session.models import AgentSession
from vmagent.session.sandbox import Sandbox

QUOTA_WINDOW = 24 * 60 * 60.0


@dataclass
class SessionEntry:
    """A session and the objects it exclusively owns."""

    session: AgentSession
    sandbox: Sandbox
    loop: ConversationLoop
    sink: EventSink
    task: asyncio.Task[None] | None = None


@dataclass(frozen=True, slots=True)
class AdmissionLimits:
    max_active: int
    daily_limit: int
    tier: str  # "free" or "pro", for messages


class SessionRegistry:
    """Thread-safe map of session id -> SessionEntry."""

    def __init__(self, window: float = QUOTA_WINDOW) -> None:
        self._lock = threading.RLock()
        self._entries: dict[str, SessionEntry] = {}
        self._starts: dict[str, list[float]] = {}
        self._window = window

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._entries

    def get(self, session_id: str) -> SessionEntry | None:
        with self._lock:
            return self._entries.get(session_id)

    def entries(self) -> list[SessionEntry]:
        with self._lock:
            return list(self._entries.values())

    def remove(self, session_id: str) -> SessionEntry | None:
        with self._lock:
            return self._entries.pop(session_id, None)

    def active_count(self) -> int:
        """Sessions currently planning or running, process-wide."""
        with self._lock:
            return sum(1 for e in self._entries.values() if e.session.state.is_active)

    def recent_starts(self, remote_ref: str, now: float) -> int:
        """Sessions started by ``remote_ref`` within the quota window."""
        with self._lock:
            return sum(1 for t in self._starts.get(remote_ref, []) if now - t < self._window)

    def admit(
        self,
        remote_ref: str,
        limits: AdmissionLimits,
        now: float,
        factory: Callable[[], SessionEntry],
    ) -> SessionEntry:
        """Check the limits and, if they pass, build and insert an entry.

        ``factory`` is only called once admission succeeds, so a refused
        start never allocates a session.

        Raises:
            ConcurrencyLimitError: Too many active sessions process-wide.
            QuotaExceededError: ``remote_ref`` used up its 24-hour quota.
        """
        with self._lock:
            if self.active_count() >= limits.max_active:
                raise ConcurrencyLimitError(
                    "Too many active agent sessions globally. Please try again later."
                )

            starts = [t for t in self._starts.get(remote_ref, []) if now - t < self._window]
            if len(starts) >= limits.daily_limit:
                if limits.tier == "pro":
                    message = (
                        f"Pro daily limit reached. You can run up to {limits.daily_limit} "
                        "agent sessions per 24 hours."
                    )
                else:
                    message = (
                        f"Free tier daily limit reached. You can run up to {limits.daily_limit} "
                        "agent sessions per 24 hours. Upgrade to Pro for more."
                    )
                raise QuotaExceededError(message)

            entry = factory()
            starts.append(now)
            self._starts[remote_ref] = starts
            self._entries[entry.session.id] = entry
            return entry
