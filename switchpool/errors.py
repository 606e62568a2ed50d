
class SwitchPoolError(Exception):
    kind = "error"


class SessionConnectError(SwitchPoolError, ConnectionError):
    kind = "connect"

    def __init__(self, host: str, reason: str):
        self.host = host
        self.reason = reason
        super().__init__(f"connect to {host} failed: {reason}")


class TransportIOError(SwitchPoolError):
    kind = "transport"


class PromptTimeoutError(SwitchPoolError, TimeoutError):
    kind = "timeout"

    def __init__(self, timeout: float, partial: bytes = b""):
        self.timeout = timeout
        self.partial = partial
        super().__init__(f"no prompt within {timeout:g}s ({len(partial)} bytes received)")


class SessionStateError(SwitchPoolError):
    kind = "state"
