from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from switchpool.completion import CompletionPolicy, FixedDelayPolicy
from switchpool.config import DEFAULT_MAX_WORKERS, MAX_WORKERS_LIMIT
from switchpool.errors import PromptTimeoutError, TransportIOError
from switchpool.session import DeviceSession, SENT, COLLECTING, COMPLETED, FAILED
from switchpool.utils import clamp_int, log_error, log_info, normalize_command, split_lines

Target = Union[DeviceSession, int]


@dataclass(frozen=True)
class CommandResult:
    session_id: int
    host: str
    status: str
    lines: List[str] = field(default_factory=list)
    error: str = ""
    error_kind: str = ""

    @property
    def ok(self) -> bool:
        return self.status == COMPLETED

    def to_dict(self) -> Dict[str, Any]:
        data = {"session_id": self.session_id, "host": self.host, "status": self.status, "lines": list(self.lines)}
        if not self.ok:
            data["error"] = self.error
            data["error_kind"] = self.error_kind
        return data


def _failed(session: DeviceSession, error: str, error_kind: str, partial: bytes = b"") -> CommandResult:
    return CommandResult(
        session_id=session.id,
        host=session.host,
        status=FAILED,
        lines=split_lines(partial.decode("utf-8", errors="replace")),
        error=error,
        error_kind=error_kind,
    )


def execute(
    session: DeviceSession,
    command_text: str,
    policy: CompletionPolicy,
    show_echo: bool = False,
) -> CommandResult:
    command = normalize_command(command_text)
    with session.lock:
        transaction = session.begin_transaction(command)
        if session.is_closed:
            transaction.mark_done(FAILED, error="session is closed", error_kind=TransportIOError.kind)
            return _failed(session, transaction.error, transaction.error_kind)

        if show_echo:
            log_info(f"{session.host} [{session.id}] >> {command.rstrip()}")
        session.log("IN", {
            "event": "command_sent",
            "transaction_id": transaction.transaction_id,
            "command": command,
            **policy.describe(),
        })

        try:
            policy.prepare(session.channel)
            session.channel.write(command.encode("utf-8"))
            transaction.advance(SENT)
            transaction.advance(COLLECTING)
            raw = policy.collect(session.channel)
        except PromptTimeoutError as exc:
            transaction.output = exc.partial
            transaction.mark_done(FAILED, error=str(exc), error_kind=exc.kind)
            session.log("SYS", {"event": "command_timeout", "transaction_id": transaction.transaction_id, "error": str(exc)})
            return _failed(session, transaction.error, transaction.error_kind, exc.partial)
        except TransportIOError as exc:
            transaction.mark_done(FAILED, error=str(exc), error_kind=exc.kind)
            session.log("SYS", {"event": "command_failed", "transaction_id": transaction.transaction_id, "error": str(exc)})
            return _failed(session, transaction.error, transaction.error_kind)

        transaction.output = raw
        transaction.mark_done(COMPLETED)

    text = raw.decode("utf-8", errors="replace")
    session.log("OUT", {"event": "output_received", "transaction_id": transaction.transaction_id, "chunk": text})
    return CommandResult(session_id=session.id, host=session.host, status=COMPLETED, lines=split_lines(text))


class CommandChannel:
    def __init__(self, registry: Any, policy: Optional[CompletionPolicy] = None, max_workers: int = DEFAULT_MAX_WORKERS):
        self.registry = registry
        self.policy = policy or FixedDelayPolicy()
        self.max_workers = clamp_int(max_workers, DEFAULT_MAX_WORKERS, 1, MAX_WORKERS_LIMIT)

    def resolve(self, targets: Iterable[Target]) -> List[DeviceSession]:
        # Registry members only, in request order, each session once.
        targets = list(targets)
        ids = [target for target in targets if not isinstance(target, DeviceSession)]
        by_id = {session.id: session for session in self.registry.get_by_ids(ids)}

        resolved: List[DeviceSession] = []
        seen = set()
        for target in targets:
            if isinstance(target, DeviceSession):
                session = target if self.registry.contains(target) else None
            else:
                session = by_id.get(target)
            if session is None or session.id in seen:
                continue
            seen.add(session.id)
            resolved.append(session)
        return resolved

    def invoke(
        self,
        targets: Iterable[Target],
        command_text: str,
        policy: Optional[CompletionPolicy] = None,
        show_echo: bool = False,
    ) -> Dict[int, CommandResult]:
        sessions = self.resolve(targets)
        policy = policy or self.policy
        if not sessions:
            return {}
        if len(sessions) == 1:
            session = sessions[0]
            return {session.id: self._run(session, command_text, policy, show_echo)}

        results: Dict[int, CommandResult] = {}
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(sessions))) as pool:
            futures = [
                (session, pool.submit(self._run, session, command_text, policy, show_echo))
                for session in sessions
            ]
            for session, future in futures:
                results[session.id] = future.result()
        return results

    def invoke_by_name(
        self,
        patterns: Sequence[str],
        command_text: str,
        exact_match: bool = False,
        policy: Optional[CompletionPolicy] = None,
        show_echo: bool = False,
    ) -> Dict[int, CommandResult]:
        sessions = self.registry.get_by_names(patterns, exact_match=exact_match)
        return self.invoke(sessions, command_text, policy=policy, show_echo=show_echo)

    def _run(self, session: DeviceSession, command_text: str, policy: CompletionPolicy, show_echo: bool) -> CommandResult:
        try:
            return execute(session, command_text, policy, show_echo=show_echo)
        except Exception as exc:
            log_error(f"command on session {session.id} ({session.host}) crashed: {exc}")
            return _failed(session, str(exc), TransportIOError.kind)
