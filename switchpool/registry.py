import fnmatch
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from switchpool.channel import execute
from switchpool.completion import CompletionPolicy, FixedDelayPolicy
from switchpool.config import DEFAULT_SETUP_COMMAND, DEFAULT_MAX_WORKERS, MAX_WORKERS_LIMIT
from switchpool.errors import SwitchPoolError
from switchpool.session import DeviceSession
from switchpool.transport import Credentials, ParamikoTransport
from switchpool.utils import clamp_int, log_error, log_info, make_log_dirs


class SessionRegistry:
    # A session is registered exactly as long as it is not closed. Every read
    # or write of self.sessions holds self.lock; transport I/O never does.

    def __init__(
        self,
        transport: Any = None,
        policy: Optional[CompletionPolicy] = None,
        setup_command: Optional[str] = DEFAULT_SETUP_COMMAND,
        log_dir: Optional[str] = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ):
        self.transport = transport or ParamikoTransport()
        self.policy = policy or FixedDelayPolicy()
        self.setup_command = setup_command
        self.max_workers = clamp_int(max_workers, DEFAULT_MAX_WORKERS, 1, MAX_WORKERS_LIMIT)
        self.sessions_dir = make_log_dirs(log_dir)["sessions_dir"] if log_dir else None

        self.sessions: Dict[int, DeviceSession] = {}
        self.next_session_id = 1
        self.lock = threading.Lock()

    def __len__(self) -> int:
        with self.lock:
            return len(self.sessions)

    def create(self, hosts: Sequence[str], credentials: Credentials) -> Tuple[List[DeviceSession], Dict[str, str]]:
        hosts = list(hosts)
        if not hosts:
            return [], {}

        outcomes: List[Tuple[Optional[DeviceSession], str]] = []
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(hosts))) as pool:
            futures = [pool.submit(self._open, host, credentials) for host in hosts]
            for host, future in zip(hosts, futures):
                try:
                    outcomes.append((future.result(), ""))
                except Exception as exc:
                    log_error(f"session for {host} not created: {exc}")
                    outcomes.append((None, str(exc)))

        # Identities go to ready sessions only, in host order.
        created: List[DeviceSession] = []
        failures: Dict[str, str] = {}
        with self.lock:
            for host, (session, error) in zip(hosts, outcomes):
                if session is None:
                    failures[host] = error
                    continue
                session.assign_id(self.next_session_id)
                self.next_session_id += 1
                self.sessions[session.id] = session
                created.append(session)

        if created:
            log_info(f"created {len(created)}/{len(hosts)} sessions: " + ", ".join(f"{s.id}={s.host}" for s in created))
        return created, failures

    def _open(self, host: str, credentials: Credentials) -> DeviceSession:
        client = self.transport.connect(host, credentials)
        session = None
        try:
            channel = self.transport.open_interactive_channel(client)
            session = DeviceSession(None, host, client, channel, sessions_dir=self.sessions_dir)
            if self.setup_command:
                result = execute(session, self.setup_command, self.policy)
                if not result.ok:
                    raise SwitchPoolError(f"setup command {self.setup_command!r} failed on {host}: {result.error}")
            session.mark_ready()
            return session
        except Exception as exc:
            self._close_quietly(client)
            if session is not None:
                session.mark_closed(reason=f"open failed: {exc}")
            raise

    def _close_quietly(self, client: Any) -> None:
        try:
            self.transport.close(client)
        except Exception as exc:
            log_error(f"close after failed open: {exc}")

    def get_by_ids(self, ids: Iterable[int]) -> List[DeviceSession]:
        wanted = set(ids)
        with self.lock:
            return [session for sid, session in self.sessions.items() if sid in wanted]

    def get_by_names(self, patterns: Sequence[str], exact_match: bool = False) -> List[DeviceSession]:
        # Globs unless exact_match; a session matching several patterns is listed once per pattern.
        if isinstance(patterns, str):
            patterns = [patterns]
        with self.lock:
            snapshot = list(self.sessions.values())

        found: List[DeviceSession] = []
        for pattern in patterns:
            for session in snapshot:
                if exact_match:
                    matched = session.host == pattern
                else:
                    matched = fnmatch.fnmatchcase(session.host, pattern)
                if matched:
                    found.append(session)
        return found

    def contains(self, session: DeviceSession) -> bool:
        with self.lock:
            return self.sessions.get(session.id) is session

    def remove(self, targets: Iterable[Union[DeviceSession, int]]) -> Dict[int, str]:
        # The session leaves the registry even when its transport refuses to close.
        targets = list(targets)
        ids = [target.id if isinstance(target, DeviceSession) else target for target in targets]
        with self.lock:
            selected = []
            for sid in dict.fromkeys(ids):
                session = self.sessions.get(sid)
                if session is not None:
                    selected.append(session)

        errors: Dict[int, str] = {}
        for session in selected:
            reason = "removed"
            try:
                self.transport.close(session.client)
            except Exception as exc:
                errors[session.id] = str(exc)
                reason = f"removed, close failed: {exc}"
                log_error(f"session {session.id} ({session.host}) close failed: {exc}")
            finally:
                with self.lock:
                    if self.sessions.get(session.id) is session:
                        del self.sessions[session.id]
                    session.mark_closed(reason=reason)
        return errors

    def list_sessions(self) -> Dict[str, Any]:
        with self.lock:
            snapshot = list(self.sessions.values())
        rows = []
        for session in snapshot:
            info = session.info()
            rows.append({
                "id": info["id"],
                "host": info["host"],
                "state": info["state"],
                "alive": self.transport.is_active(session.client),
                "busy": info["busy"],
                "last_command": info["last_command"],
            })
        rows.sort(key=lambda item: item["id"])
        return {
            "success": True,
            "sessions": rows,
            "total": len(rows),
            "status": "completed",
        }

    def close_all(self) -> Dict[int, str]:
        with self.lock:
            ids = list(self.sessions.keys())
        return self.remove(ids)
