import re
import time
from typing import Any, Dict, Optional

from switchpool.config import (
    DEFAULT_WAIT_DURATION, MAX_WAIT_DURATION, DEFAULT_PROMPT_TIMEOUT,
    MIN_PROMPT_TIMEOUT, MAX_PROMPT_TIMEOUT, COMPLETION_MODES, SNAPSHOT_READ_LIMIT
)
from switchpool.transport import ShellChannel
from switchpool.utils import clamp_float, ends_with_prompt, prompt_tail


class CompletionPolicy:
    name = ""

    def prepare(self, channel: ShellChannel) -> None:
        pass

    def collect(self, channel: ShellChannel) -> bytes:
        raise NotImplementedError

    def describe(self) -> Dict[str, Any]:
        return {"completion": self.name}


class FixedDelayPolicy(CompletionPolicy):
    name = "delay"

    def __init__(self, wait_duration: float = DEFAULT_WAIT_DURATION):
        self.wait_duration = clamp_float(wait_duration, DEFAULT_WAIT_DURATION, 0.0, MAX_WAIT_DURATION)

    def collect(self, channel: ShellChannel) -> bytes:
        if self.wait_duration > 0:
            time.sleep(self.wait_duration)
        # One snapshot; a device that never stops printing is cut off here.
        return channel.read_available(time.monotonic() + SNAPSHOT_READ_LIMIT)

    def describe(self) -> Dict[str, Any]:
        return {"completion": self.name, "wait": self.wait_duration}


class PromptMatchPolicy(CompletionPolicy):
    name = "prompt"

    def __init__(self, timeout: float = DEFAULT_PROMPT_TIMEOUT, pattern: Optional[str] = None):
        self.timeout = clamp_float(timeout, DEFAULT_PROMPT_TIMEOUT, MIN_PROMPT_TIMEOUT, MAX_PROMPT_TIMEOUT)
        self.pattern = pattern
        self._compiled = None
        if pattern:
            try:
                self._compiled = re.compile(rf"(?:{pattern})\s*$")
            except re.error as exc:
                raise ValueError(f"invalid prompt pattern {pattern!r}: {exc}") from exc

    def matches(self, data: bytes, prompt: Optional[str] = None) -> bool:
        text = data.decode("utf-8", errors="replace")
        if self._compiled is not None:
            return self._compiled.search(prompt_tail(text)) is not None
        return ends_with_prompt(text, prompt)

    def prepare(self, channel: ShellChannel) -> None:
        # A prompt left over from earlier output would end the new transaction at once.
        channel.read_available(time.monotonic() + min(self.timeout, SNAPSHOT_READ_LIMIT))

    def collect(self, channel: ShellChannel) -> bytes:
        return channel.read_until(lambda data: self.matches(data, channel.prompt), self.timeout)

    def describe(self) -> Dict[str, Any]:
        return {"completion": self.name, "timeout": self.timeout, "prompt_pattern": self.pattern}


def build_policy(
    completion: str,
    wait: Optional[float] = None,
    timeout: Optional[float] = None,
    prompt_pattern: Optional[str] = None,
) -> CompletionPolicy:
    completion = (completion or "").strip().lower()
    if completion not in COMPLETION_MODES:
        raise ValueError(f"completion must be one of: {', '.join(COMPLETION_MODES)}")
    if completion == "delay":
        return FixedDelayPolicy(DEFAULT_WAIT_DURATION if wait is None else wait)
    return PromptMatchPolicy(DEFAULT_PROMPT_TIMEOUT if timeout is None else timeout, pattern=prompt_pattern)
