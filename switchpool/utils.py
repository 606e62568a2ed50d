import os
import re
import sys
import json
from functools import lru_cache
from datetime import datetime
from typing import Any, Dict, List, Optional, Pattern
from switchpool.config import (
    ANSI_ESCAPE, LINE_BREAKS, LINE_TERMINATOR, PROMPT_TAIL_CHARS
)

def log_error(message: str) -> None:
    print(f"[switchpool] {message}", file=sys.stderr, flush=True)

def log_info(message: str) -> None:
    print(f"[switchpool] {message}", file=sys.stderr, flush=True)

def _clamp(cast, value: Any, default, min_value, max_value):
    try:
        numeric = cast(value)
    except (TypeError, ValueError, OverflowError):
        numeric = default
    return max(min_value, min(numeric, max_value))

def clamp_float(value: Any, default: float, min_value: float, max_value: float) -> float:
    return _clamp(float, value, default, min_value, max_value)

def clamp_int(value: Any, default: int, min_value: int, max_value: int) -> int:
    return _clamp(int, value, default, min_value, max_value)

_TRUE_WORDS = ("true", "1", "yes", "on")
_FALSE_WORDS = ("false", "0", "no", "off")

def to_bool(value: Any, default: bool = False) -> bool:
    if isinstance(value, (bool, int, float)):
        return bool(value)
    word = str(value).strip().lower() if value is not None else ""
    if word in _TRUE_WORDS:
        return True
    if word in _FALSE_WORDS:
        return False
    return default

def iso_now() -> str:
    return datetime.now().isoformat(timespec="milliseconds")

def safe_name(text: str) -> str:
    # Host names end up in transcript file names.
    cleaned = re.sub(r"[^a-zA-Z0-9._-]+", "_", text.strip())
    return cleaned[:80] or "unnamed"

def json_line(path: str, payload: Dict[str, Any]) -> None:
    try:
        with open(path, "a", encoding="utf-8") as handle:
            handle.write(json.dumps(payload, ensure_ascii=False, default=str) + "\n")
    except OSError as exc:
        log_error(f"log write failed ({path}): {exc}")

def make_log_dirs(log_root: str) -> Dict[str, str]:
    sessions_dir = os.path.join(log_root, "sessions")
    os.makedirs(sessions_dir, exist_ok=True)
    return {
        "log_root": log_root,
        "sessions_dir": sessions_dir,
    }

def normalize_command(command: str) -> str:
    return command.rstrip("\r\n") + LINE_TERMINATOR

def split_lines(text: str) -> List[str]:
    # Blank lines are dropped with the CR/LF framing.
    return [line for line in LINE_BREAKS.split(text or "") if line]

def prompt_tail(output: str) -> str:
    tail = output[-PROMPT_TAIL_CHARS:] if len(output) > PROMPT_TAIL_CHARS else output
    return ANSI_ESCAPE.sub("", tail).rstrip()

def find_prompt(output: str) -> Optional[str]:
    if not output:
        return None

    # ANSI codes can split a prompt, so strip them from the tail first.
    clean_tail = prompt_tail(output)
    if not clean_tail:
        return None

    prompt_patterns = [
        r"([A-Za-z0-9._/:-]+(\([^)]*\))?[#>]\s*)$", # SW-01#  SW-01(config-if)#  SW-01>
        r"(<[^<>\s]+>\s*)$",     # <SW-01>
        r"(\[[^\[\]\s]+\]\s*)$", # [SW-01]
        r"(\([^)]+\)\s*>\s*)$",  # (config)>
        r"([/~][^\s]*\s*#\s*)$", # /path #
        r"([/~][^\s]*\s*\$\s*)$", # /path $
        r"([a-zA-Z0-9._-]+@[a-zA-Z0-9._-]+:.*[#$]\s*)$", # user@host:path$
        r"([#$>]\s*)$",          # # or $ or >
    ]

    for pattern in prompt_patterns:
        match = re.search(pattern, clean_tail)
        if match:
            return match.group(1)

    return None

def has_prompt(output: str) -> bool:
    return find_prompt(output) is not None

@lru_cache(maxsize=256)
def learned_prompt_regex(prompt: str) -> Optional[Pattern]:
    # SW-01# -> SW-01, <HUAWEI> -> HUAWEI, admin@jump:~$ -> admin
    match = re.match(r"[<\[]?([A-Za-z0-9._-]+)", (prompt or "").strip())
    if not match:
        return None
    name = re.escape(match.group(1))
    return re.compile(
        r"(?:^|[\r\n])(?:"
        rf"{name}(?:\([^)\r\n]*\))?[#>]"        # SW-01#  SW-01(config-if)#  SW-01>
        rf"|[<\[]{name}[^<>\[\]\s]*[>\]]"       # <HUAWEI>  [H3C-vlan10]
        rf"|{name}@[^\s]*[#$]"                  # admin@jump:~$
        r")\s*$"
    )

def ends_with_prompt(output: str, prompt: Optional[str] = None) -> bool:
    # Falls back to the generic find_prompt patterns when nothing was learned.
    regex = learned_prompt_regex(prompt) if prompt else None
    if regex is None:
        return has_prompt(output)
    return regex.search(prompt_tail(output)) is not None
