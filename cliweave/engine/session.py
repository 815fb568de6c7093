"""Per-panel session records and the registry that owns them."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Iterator

from .lifecycle import validate_transition
from .models import PendingToolCall, PersistentState, UsageSnapshot
from .supervisor import CancelToken

if TYPE_CHECKING:
    from .supervisor import ProcessHandle

logger = logging.getLogger(__name__)

DEFAULT_PANEL_ID = "default"


@dataclass
class Session:
    """Mutable state for one panel/conversation.

    Only the task running the panel's current turn mutates it.
    """
    panel_id: str
    # Continuation token reported by the external agent. Set once,
    # cleared only by SessionRegistry.clear().
    session_id: str | None = None
    # True while session_id is a locally minted placeholder that the
    # external agent never reported (and so cannot resume).
    session_id_synthetic: bool = False
    autonomous_mode: bool = False

    process: ProcessHandle | None = None
    persistent_process: ProcessHandle | None = None
    persistent_state: PersistentState = PersistentState.ABSENT
    last_health_check: float | None = None
    # Reassembler kept across persistent turns; holds partial lines.
    persistent_reader: Any = None

    cancel_token: CancelToken = field(default_factory=CancelToken)
    usage: UsageSnapshot | None = None
    last_user_input: str = ""
    pending_tools: dict[int | str, PendingToolCall] = field(default_factory=dict)
    # Dialect accumulation state, created by the normalizer.
    stream_state: Any = None

    @property
    def persistent_ready(self) -> bool:
        return (
            self.persistent_process is not None
            and self.persistent_state == PersistentState.READY
        )

    def set_persistent_state(self, target: PersistentState) -> None:
        validate_transition(self.persistent_state, target)
        logger.debug(
            "Panel %s persistent state %s -> %s",
            self.panel_id, self.persistent_state.value, target.value,
        )
        self.persistent_state = target

    def clear_persistent(self) -> None:
        """Drop persistent-process fields after exit, kill, or a silent pass."""
        if self.persistent_state != PersistentState.ABSENT:
            self.set_persistent_state(PersistentState.DEAD)
        self.persistent_process = None
        self.persistent_reader = None
        self.last_health_check = None

    @property
    def resumable_session_id(self) -> str | None:
        """Continuation token the external agent can resume, if any."""
        if self.session_id_synthetic:
            return None
        return self.session_id

    def store_usage(self, usage: UsageSnapshot) -> None:
        self.usage = usage

    def take_usage(self) -> UsageSnapshot | None:
        """Read and clear the usage snapshot. Only the done event calls this."""
        usage, self.usage = self.usage, None
        return usage


class SessionRegistry:
    """Registry of sessions keyed by panel id.

    Sessions are created lazily; a missing panel id maps to the
    ``"default"`` key. ``state_factory`` builds the dialect's
    accumulation state for each new (or cleared) session.
    """

    def __init__(self, state_factory: Callable[[], Any] | None = None) -> None:
        self._sessions: dict[str, Session] = {}
        self._state_factory = state_factory or (lambda: None)

    @staticmethod
    def _key(panel_id: str | None) -> str:
        return panel_id or DEFAULT_PANEL_ID

    def get_or_create(self, panel_id: str | None = None) -> Session:
        key = self._key(panel_id)
        session = self._sessions.get(key)
        if session is None:
            session = Session(panel_id=key, stream_state=self._state_factory())
            self._sessions[key] = session
            logger.debug("Created session for panel %s", key)
        return session

    def get(self, panel_id: str | None = None) -> Session | None:
        return self._sessions.get(self._key(panel_id))

    def remove(self, panel_id: str | None = None) -> Session | None:
        return self._sessions.pop(self._key(panel_id), None)

    def clear(self, panel_id: str | None = None) -> None:
        """Null the continuation token for one panel, or all when omitted."""
        if panel_id is None:
            targets = list(self._sessions.values())
        else:
            session = self._sessions.get(self._key(panel_id))
            targets = [session] if session else []
        for session in targets:
            session.session_id = None
            session.session_id_synthetic = False
            session.usage = None
            session.last_user_input = ""
            session.pending_tools.clear()
            session.stream_state = self._state_factory()
        logger.debug(
            "Cleared %d session(s) (panel=%s)", len(targets), panel_id or "*",
        )

    def has_session(self, panel_id: str | None = None) -> bool:
        session = self._sessions.get(self._key(panel_id))
        return session is not None and session.session_id is not None

    def get_session_id(self, panel_id: str | None = None) -> str | None:
        session = self._sessions.get(self._key(panel_id))
        return session.session_id if session else None

    def sessions(self) -> Iterator[Session]:
        return iter(list(self._sessions.values()))

    def __len__(self) -> int:
        return len(self._sessions)
