import json
from typing import Any, Dict, List, Optional
from switchpool.channel import CommandChannel
from switchpool.completion import build_policy
from switchpool.config import config
from switchpool.registry import SessionRegistry
from switchpool.session import DeviceSession
from switchpool.transport import Credentials
from switchpool.utils import log_error, to_bool, clamp_int

SERVER_NAME = "switchpool"
SERVER_VERSION = "0.1.0"

def format_tool_result(result: Dict[str, Any], is_error: bool = False) -> Dict[str, Any]:
    text = json.dumps(result, ensure_ascii=False, separators=(",", ":"))
    if not is_error:
        return {"content": [{"type": "text", "text": text}]}
    return {"content": [{"type": "text", "text": text}], "isError": True}

def make_response(req_id: Any, result: Dict[str, Any], is_error: bool = False) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "id": req_id, "result": format_tool_result(result, is_error)}

def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]

def _id_list(value: Any) -> List[int]:
    return [clamp_int(item, 0, 0, 10**9) for item in _as_list(value)]

def _name_list(value: Any) -> List[str]:
    return [str(item) for item in _as_list(value) if str(item).strip()]

def tools_list() -> Dict[str, Any]:
    selection = {
        "session_ids": {"type": "array", "items": {"type": "number"}, "description": "Session ids to target."},
        "names": {"type": "array", "items": {"type": "string"}, "description": "Host name globs (e.g. SW-*) to target."},
        "exact_match": {"type": "boolean", "description": "Optional. Treat names as exact host names, not globs."},
    }
    tools = [
        {
            "name": "session_create",
            "description": (
                "Open interactive sessions to switches. Each host is tried independently; "
                "failed hosts are reported in 'failures' and do not stop the others."
            ),
            "inputSchema": {
                "type": "object",
                "properties": {
                    "hosts": {"type": "array", "items": {"type": "string"}, "description": "Host names or addresses."},
                    "username": {"type": "string", "description": "Optional. Defaults to SWITCH_USER."},
                    "password": {"type": "string", "description": "Optional. Defaults to SWITCH_PASSWORD."},
                    "key_path": {"type": "string", "description": "Optional. Private key path."},
                    "passphrase": {"type": "string", "description": "Optional. Private key passphrase."},
                    "port": {"type": "number", "description": "Optional. SSH port."},
                },
                "required": ["hosts"],
            },
        },
        {
            "name": "session_list",
            "description": "List sessions (id, host, state, alive, busy). Without filters every session is listed.",
            "inputSchema": {"type": "object", "properties": dict(selection)},
        },
        {
            "name": "session_remove",
            "description": "Close and remove sessions by id or host name. Close errors are reported but never keep a session registered.",
            "inputSchema": {"type": "object", "properties": dict(selection)},
        },
        {
            "name": "invoke",
            "description": (
                "Send one command line to every selected session concurrently and return the output lines per session. "
                "completion=prompt reads until the CLI prompt returns (or timeout); completion=delay waits 'wait' seconds and reads once. "
                "'failed_ids' lists the sessions worth retrying."
            ),
            "inputSchema": {
                "type": "object",
                "properties": {
                    "command": {"type": "string", "description": "Command line to send."},
                    **selection,
                    "completion": {"type": "string", "enum": ["prompt", "delay"], "description": "Optional. Completion policy."},
                    "wait": {"type": "number", "description": "Optional. Seconds to wait for completion=delay."},
                    "timeout": {"type": "number", "description": "Optional. Upper bound in seconds for completion=prompt."},
                    "prompt_pattern": {"type": "string", "description": "Optional. Regex the output tail must match for completion=prompt."},
                    "show_echo": {"type": "boolean", "description": "Optional. Log each command line on stderr before sending it."},
                },
                "required": ["command"],
            },
        },
    ]
    return {"jsonrpc": "2.0", "result": {"tools": tools}}

def select_sessions(args: Dict[str, Any], registry: SessionRegistry) -> Optional[List[DeviceSession]]:
    if args.get("session_ids") is None and args.get("names") is None:
        return None
    selected = registry.get_by_ids(_id_list(args.get("session_ids")))
    names = _name_list(args.get("names"))
    if names:
        selected += registry.get_by_names(names, exact_match=to_bool(args.get("exact_match", False)))
    return selected

def credentials_from_args(args: Dict[str, Any]) -> Credentials:
    defaults = Credentials.from_config()
    return Credentials(
        username=args.get("username") or defaults.username,
        password=args.get("password") or defaults.password,
        key_path=args.get("key_path") or defaults.key_path,
        passphrase=args.get("passphrase") or defaults.passphrase,
        port=clamp_int(args.get("port"), defaults.port, 1, 65535),
    )

def create_dispatch(args: Dict[str, Any], registry: SessionRegistry) -> Dict[str, Any]:
    hosts = _name_list(args.get("hosts"))
    if not hosts:
        return {"success": False, "error": "hosts is required"}
    credentials = credentials_from_args(args)
    if not credentials.username:
        return {"success": False, "error": "username is required (argument or SWITCH_USER env)"}

    sessions, failures = registry.create(hosts, credentials)
    if not failures:
        status = "completed"
    elif sessions:
        status = "partial"
    else:
        status = "failed"
    return {
        "success": True,
        "status": status,
        "sessions": [{"id": session.id, "host": session.host} for session in sessions],
        "failures": failures,
        "requested": len(hosts),
        "created": len(sessions),
        "error": "no session could be created" if status == "failed" else "",
    }

def list_dispatch(args: Dict[str, Any], registry: SessionRegistry) -> Dict[str, Any]:
    listing = registry.list_sessions()
    selected = select_sessions(args, registry)
    if selected is None:
        return listing
    wanted = {session.id for session in selected}
    rows = [row for row in listing["sessions"] if row["id"] in wanted]
    listing["sessions"] = rows
    listing["total"] = len(rows)
    return listing

def remove_dispatch(args: Dict[str, Any], registry: SessionRegistry) -> Dict[str, Any]:
    selected = select_sessions(args, registry)
    if selected is None:
        return {"success": False, "error": "session_ids or names is required"}
    close_errors = registry.remove(selected)
    removed = sorted({session.id for session in selected})
    return {
        "success": True,
        "status": "completed",
        "removed": removed,
        "close_errors": {str(sid): error for sid, error in close_errors.items()},
        "message": f"{len(removed)} session(s) removed",
    }

def invoke_dispatch(args: Dict[str, Any], registry: SessionRegistry, commands: CommandChannel) -> Dict[str, Any]:
    command = args.get("command", "")
    if not command or not str(command).strip():
        return {"success": False, "error": "command is required"}

    selected = select_sessions(args, registry)
    if selected is None:
        return {"success": False, "error": "session_ids or names is required"}

    try:
        policy = build_policy(
            args.get("completion") or config.COMPLETION,
            wait=config.WAIT_DURATION if args.get("wait") is None else args["wait"],
            timeout=config.PROMPT_TIMEOUT if args.get("timeout") is None else args["timeout"],
            prompt_pattern=args.get("prompt_pattern") or config.PROMPT_PATTERN,
        )
    except ValueError as exc:
        return {"success": False, "error": str(exc)}

    results = commands.invoke(selected, str(command), policy=policy, show_echo=to_bool(args.get("show_echo", False)))
    failed_ids = [sid for sid, result in results.items() if not result.ok]
    if not failed_ids:
        status = "completed"
    elif len(failed_ids) < len(results):
        status = "partial"
    else:
        status = "failed"
    return {
        "success": True,
        "status": status,
        "results": [result.to_dict() for result in results.values()],
        "failed_ids": failed_ids,
        "total": len(results),
        **policy.describe(),
    }

def handle_request(request: Dict[str, Any], registry: SessionRegistry, commands: CommandChannel) -> Optional[Dict[str, Any]]:
    method = request.get("method")
    params = request.get("params", {}) or {}
    req_id = request.get("id", 1)

    if method == "initialize":
        return {
            "jsonrpc": "2.0", "id": req_id,
            "result": {
                "protocolVersion": "2024-11-05",
                "capabilities": {"tools": {}},
                "serverInfo": {"name": SERVER_NAME, "version": SERVER_VERSION},
            },
        }

    if method == "notifications/initialized": return None
    if method == "tools/list":
        response = tools_list()
        response["id"] = req_id
        return response

    if method == "tools/call":
        tool_name = params.get("name")
        args = params.get("arguments", {}) or {}
        try:
            if tool_name == "session_create":
                result = create_dispatch(args, registry)
            elif tool_name == "session_list":
                result = list_dispatch(args, registry)
            elif tool_name == "session_remove":
                result = remove_dispatch(args, registry)
            elif tool_name == "invoke":
                result = invoke_dispatch(args, registry, commands)
            else:
                return {"jsonrpc": "2.0", "id": req_id, "error": {"code": -32601, "message": f"Unknown tool: {tool_name}"}}

            is_error = not result.get("success", False) or result.get("status") == "failed"
            return make_response(req_id, result, is_error=is_error)
        except Exception as exc:
            log_error(f"tool execution error ({tool_name}): {exc}")
            return make_response(req_id, {"success": False, "error": str(exc)}, is_error=True)

    return {"jsonrpc": "2.0", "id": req_id, "error": {"code": -32601, "message": f"Unknown method: {method}"}}
