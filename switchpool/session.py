import os
import time
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from switchpool.errors import SessionStateError
from switchpool.transport import ShellChannel
from switchpool.utils import iso_now, json_line, safe_name

# Session lifecycle
INITIALIZING = "initializing"
READY = "ready"
CLOSED = "closed"

# Transaction lifecycle
PENDING = "pending"
SENT = "sent"
COLLECTING = "collecting"
COMPLETED = "completed"
FAILED = "failed"

TERMINAL_STATES = frozenset({COMPLETED, FAILED})

_TRANSITIONS = {
    PENDING: {SENT, FAILED},
    SENT: {COLLECTING, FAILED},
    COLLECTING: {COMPLETED, FAILED},
    COMPLETED: set(),
    FAILED: set(),
}

@dataclass
class Transaction:
    transaction_id: int
    session_id: Optional[int]
    command: str
    started_at: float = field(default_factory=time.time)
    status: str = PENDING
    error: str = ""
    error_kind: str = ""
    finished_at: Optional[float] = None
    output: bytes = b""

    @property
    def done(self) -> bool:
        return self.status in TERMINAL_STATES

    def advance(self, status: str) -> None:
        if status not in _TRANSITIONS.get(self.status, set()):
            raise SessionStateError(
                f"transaction {self.transaction_id} on session {self.session_id}: "
                f"illegal transition {self.status} -> {status}"
            )
        self.status = status
        if status in TERMINAL_STATES:
            self.finished_at = time.time()

    def mark_done(self, status: str, error: str = "", error_kind: str = "") -> None:
        if self.done:
            return
        self.advance(status)
        self.error = error
        self.error_kind = error_kind

class DeviceSession:
    def __init__(
        self,
        session_id: Optional[int],
        host: str,
        client: Any,
        channel: ShellChannel,
        sessions_dir: Optional[str] = None,
    ):
        self.id = session_id
        self.host = host
        self.client = client
        self.channel = channel

        self.state = INITIALIZING
        self.created_at = datetime.now()
        self.last_command = ""
        self.last_command_time: Optional[datetime] = None
        self.transaction_counter = 1

        # Held for the whole write/collect cycle of a transaction.
        self.lock = threading.Lock()

        self.sessions_dir = sessions_dir
        self.log_path: Optional[str] = None
        # Records logged before the registry assigns an identity.
        self._log_backlog = []
        if session_id is not None:
            self._open_log(f"s{session_id}")
        self.log("SYS", {"event": "session_created", "host": host})

    def __repr__(self) -> str:
        return f"DeviceSession(id={self.id}, host={self.host!r}, state={self.state})"

    def _open_log(self, tag: str) -> None:
        if not self.sessions_dir:
            return
        stamp = self.created_at.strftime("%Y%m%d_%H%M%S")
        self.log_path = os.path.join(self.sessions_dir, f"{safe_name(self.host)}__{tag}__{stamp}.log")
        backlog, self._log_backlog = self._log_backlog, []
        for data in backlog:
            data["session_id"] = self.id
            json_line(self.log_path, data)

    def log(self, direction: str, payload: Dict[str, Any]) -> None:
        if not self.sessions_dir:
            return
        data = {"ts": iso_now(), "dir": direction, "session_id": self.id}
        data.update(payload)
        if self.log_path is None:
            self._log_backlog.append(data)
            return
        json_line(self.log_path, data)

    def assign_id(self, session_id: int) -> None:
        if self.id is not None:
            raise SessionStateError(f"session {self.id} ({self.host}) already has an identity")
        self.id = session_id
        self._open_log(f"s{session_id}")

    @property
    def is_ready(self) -> bool:
        return self.state == READY

    @property
    def is_closed(self) -> bool:
        return self.state == CLOSED

    def mark_ready(self) -> None:
        if self.state != INITIALIZING:
            raise SessionStateError(f"session {self.id} ({self.host}) can not become ready from {self.state}")
        self.state = READY
        self.log("SYS", {"event": "session_ready"})

    def mark_closed(self, reason: str = "") -> None:
        if self.state == CLOSED:
            return
        self.state = CLOSED
        self.log("SYS", {"event": "session_closed", "reason": reason})
        if self.log_path is None:
            # Never registered: keep the transcript of the failed setup.
            self._open_log("unassigned")

    def begin_transaction(self, command: str) -> Transaction:
        transaction = Transaction(
            transaction_id=self.transaction_counter,
            session_id=self.id,
            command=command,
        )
        self.transaction_counter += 1
        self.last_command = command.rstrip("\r\n")
        self.last_command_time = datetime.now()
        return transaction

    def info(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "host": self.host,
            "state": self.state,
            "busy": self.lock.locked(),
            "last_command": self.last_command,
            "last_command_time": self.last_command_time.isoformat() if self.last_command_time else None,
            "created_at": self.created_at.isoformat(),
            "log_path": self.log_path,
        }
