import sys
import io
import json
import argparse
from typing import Any, Iterable
from switchpool.config import config, COMPLETION_MODES
from switchpool.utils import log_error, log_info
from switchpool.server import handle_request

registry = None
_stdout = None


def _write_response(response: dict) -> None:
    """Write JSON-RPC response to stdout as UTF-8."""
    try:
        _stdout.write(json.dumps(response, ensure_ascii=False) + "\n")
        _stdout.flush()
    except (OSError, UnicodeEncodeError) as exc:
        log_error(f"response write error: {exc}")
        try:
            _stdout.write(json.dumps(response, ensure_ascii=True) + "\n")
            _stdout.flush()
        except OSError as exc2:
            log_error(f"response write fallback error: {exc2}")


def _request_id(line: str) -> Any:
    try:
        return json.loads(line).get("id")
    except (ValueError, AttributeError):
        return None


def serve(lines: Iterable[str], registry, commands) -> None:
    for line in lines:
        line = line.strip()
        if not line:
            continue
        try:
            response = handle_request(json.loads(line), registry, commands)
        except json.JSONDecodeError as exc:
            log_error(f"invalid json: {exc}")
            continue
        except Exception as exc:
            log_error(f"unexpected error: {exc}")
            response = {
                "jsonrpc": "2.0",
                "id": _request_id(line),
                "error": {"code": -32603, "message": f"Internal error: {exc}"},
            }
        if response is not None:
            _write_response(response)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Switch session pool (concurrent interactive CLI sessions over SSH, JSON-RPC on stdio)"
    )
    parser.add_argument("--host", action="append", default=[], help="Open a session to this switch at start-up (repeatable)")
    parser.add_argument("--user", help="SSH username (overrides SWITCH_USER env)")
    parser.add_argument("--password", help="SSH password (overrides SWITCH_PASSWORD env)")
    parser.add_argument("--key", help="Path to SSH private key (overrides SWITCH_KEY_PATH env)")
    parser.add_argument("--passphrase", help="Passphrase for SSH private key (overrides SWITCH_KEY_PASSPHRASE env)")
    parser.add_argument("--port", type=int, help="SSH port (overrides SWITCH_PORT env)")
    parser.add_argument("--verify-host", action="store_true", help="Verify SSH host keys against known_hosts (default)")
    parser.add_argument("--no-verify-host", action="store_true", help="Accept unknown SSH host keys")
    parser.add_argument("--completion", choices=COMPLETION_MODES, help="Default completion policy (overrides SWITCH_COMPLETION env)")
    parser.add_argument("--wait", type=float, help="Seconds to wait under completion=delay")
    parser.add_argument("--timeout", type=float, help="Prompt timeout in seconds under completion=prompt")
    parser.add_argument("--prompt-pattern", help="Regex matching the switch prompt")
    parser.add_argument("--setup-command", help="One-time command run on every new session ('' to skip)")
    parser.add_argument("--max-workers", type=int, help="Maximum sessions served in parallel")
    parser.add_argument("--log-dir", help="Directory for per-session transcripts")
    return parser


def main(argv=None) -> None:
    global registry, _stdout
    from switchpool.channel import CommandChannel
    from switchpool.completion import build_policy
    from switchpool.registry import SessionRegistry
    from switchpool.transport import Credentials, ParamikoTransport

    # Pre-load from environment
    config.load_from_env()

    parser = build_parser()
    args = parser.parse_args(argv)

    # Apply args over env vars
    if args.user: config.SWITCH_USER = args.user
    if args.password: config.SWITCH_PASSWORD = args.password
    if args.key: config.SWITCH_KEY_PATH = args.key
    if args.passphrase: config.SWITCH_KEY_PASSPHRASE = args.passphrase
    if args.port: config.SWITCH_PORT = args.port
    if args.completion: config.COMPLETION = args.completion
    if args.wait is not None: config.WAIT_DURATION = args.wait
    if args.timeout is not None: config.PROMPT_TIMEOUT = args.timeout
    if args.prompt_pattern: config.PROMPT_PATTERN = args.prompt_pattern
    if args.setup_command is not None: config.SETUP_COMMAND = args.setup_command
    if args.max_workers: config.MAX_WORKERS = args.max_workers
    if args.log_dir: config.LOG_DIR = args.log_dir

    if args.no_verify_host:
        config.SWITCH_VERIFY_HOST_KEY = False
    elif args.verify_host:
        config.SWITCH_VERIFY_HOST_KEY = True

    # Validation
    if not config.SWITCH_USER:
        parser.error("SSH user is required (via --user or SWITCH_USER env)")
    if not config.SWITCH_PASSWORD and not config.SWITCH_KEY_PATH:
        parser.error("Either password or key must be provided (via args or env)")
    if config.COMPLETION not in COMPLETION_MODES:
        parser.error(f"completion must be one of: {', '.join(COMPLETION_MODES)}")

    try:
        policy = build_policy(
            config.COMPLETION,
            wait=config.WAIT_DURATION,
            timeout=config.PROMPT_TIMEOUT,
            prompt_pattern=config.PROMPT_PATTERN,
        )
    except ValueError as exc:
        parser.error(str(exc))

    registry = SessionRegistry(
        transport=ParamikoTransport(verify_host_key=config.SWITCH_VERIFY_HOST_KEY),
        policy=policy,
        setup_command=config.SETUP_COMMAND,
        log_dir=config.LOG_DIR,
        max_workers=config.MAX_WORKERS,
    )
    commands = CommandChannel(registry, policy=policy, max_workers=config.MAX_WORKERS)

    log_info(
        f"switchpool started. completion={policy.name} verify_host={config.SWITCH_VERIFY_HOST_KEY} "
        f"log_dir={config.LOG_DIR or '-'}"
    )

    if args.host:
        _, failures = registry.create(args.host, Credentials.from_config())
        for host, error in failures.items():
            log_error(f"start-up session for {host} failed: {error}")

    # UTF-8 both ways; device output is not guaranteed to fit the console codepage.
    _stdin = io.TextIOWrapper(sys.stdin.buffer, encoding="utf-8", errors="replace")
    _stdout = io.TextIOWrapper(sys.stdout.buffer, encoding="utf-8", line_buffering=True)

    try:
        serve(_stdin, registry, commands)
    finally:
        log_info("shutting down...")
        errors = registry.close_all()
        for sid, error in errors.items():
            log_error(f"session {sid} close failed: {error}")


if __name__ == "__main__":
    main()
