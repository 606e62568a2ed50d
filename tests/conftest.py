"""Shared pytest fixtures: a simulated switch CLI behind a fake paramiko channel."""

import threading
import time
from typing import Dict, List, Optional

import pytest

from switchpool.channel import CommandChannel
from switchpool.completion import FixedDelayPolicy
from switchpool.errors import SessionConnectError, TransportIOError
from switchpool.registry import SessionRegistry
from switchpool.transport import Credentials, ShellChannel

SHOW_VERSION = [
    "Cisco IOS Software, C2960X Software (C2960X-UNIVERSALK9-M), Version 15.2(7)E4",
    "",
    "SW uptime is 12 weeks, 3 days",
]


class FakeParamikoChannel:
    """Quacks like ``paramiko.Channel`` and answers like a switch CLI.

    Every ``sendall`` is recorded; the reply (echo, output lines, prompt)
    becomes readable ``delay`` seconds later.
    """

    def __init__(
        self,
        hostname: str = "SW-01",
        responses: Optional[Dict[str, List[str]]] = None,
        prompt: Optional[str] = None,
        echo: bool = True,
        delay: float = 0.0,
    ):
        self.hostname = hostname
        self.responses = responses if responses is not None else {"show version": SHOW_VERSION}
        self.prompt = f"{hostname}#" if prompt is None else prompt
        self.echo = echo
        self.delay = delay
        self.sent: List[bytes] = []
        self.closed = False
        self.timeout = None
        self._pending = []
        self._buffer = bytearray()
        self._lock = threading.Lock()

    def feed(self, data: bytes, delay: float = 0.0) -> None:
        with self._lock:
            self._pending.append((time.monotonic() + delay, data))

    def _flush_due(self) -> None:
        now = time.monotonic()
        due = [item for item in self._pending if item[0] <= now]
        self._pending = [item for item in self._pending if item[0] > now]
        for _, data in due:
            self._buffer.extend(data)

    def sendall(self, data: bytes) -> None:
        if self.closed:
            raise OSError("Socket is closed")
        with self._lock:
            self.sent.append(bytes(data))
        command = data.decode("utf-8").strip()
        reply = ""
        if self.echo:
            reply += command + "\r\n"
        for line in self.responses.get(command, []):
            reply += line + "\r\n"
        reply += self.prompt
        if reply:
            self.feed(reply.encode("utf-8"), self.delay)

    def recv_ready(self) -> bool:
        with self._lock:
            self._flush_due()
            return bool(self._buffer)

    def recv(self, nbytes: int) -> bytes:
        with self._lock:
            self._flush_due()
            chunk = bytes(self._buffer[:nbytes])
            del self._buffer[:nbytes]
            return chunk

    def settimeout(self, timeout) -> None:
        self.timeout = timeout

    def close(self) -> None:
        self.closed = True


class FloodingChannel(FakeParamikoChannel):
    """A device that never stops printing, like a repeating ping."""

    line = b"64 bytes from 10.0.0.1: icmp_seq=1 ttl=255 time=1.02 ms\r\n"

    def recv_ready(self) -> bool:
        return not self.closed

    def recv(self, nbytes: int) -> bytes:
        return self.line[:nbytes]


class FakeClient:
    def __init__(self, host: str):
        self.host = host
        self.closed = False


class FakeTransport:
    """Transport stand-in: ``unreachable`` hosts refuse to connect, ``close_failures`` refuse to close."""

    def __init__(self, unreachable=(), close_failures=(), channel_factory=None):
        self.unreachable = set(unreachable)
        self.close_failures = set(close_failures)
        self.channel_factory = channel_factory or (lambda host: FakeParamikoChannel(hostname=host))
        self.channels: Dict[str, List[FakeParamikoChannel]] = {}
        self.connected: List[str] = []
        self.closed: List[str] = []
        self._lock = threading.Lock()

    def connect(self, host: str, credentials: Credentials) -> FakeClient:
        if host in self.unreachable:
            raise SessionConnectError(host, "Connection refused")
        with self._lock:
            self.connected.append(host)
        return FakeClient(host)

    def open_interactive_channel(self, client: FakeClient) -> ShellChannel:
        channel = self.channel_factory(client.host)
        client.channel = channel
        with self._lock:
            self.channels.setdefault(client.host, []).append(channel)
        channel.feed(f"Unauthorized access prohibited\r\n{channel.prompt}".encode("utf-8"))
        shell = ShellChannel(channel, poll_interval=0.01)
        shell.learn_prompt()
        return shell

    def close(self, client: FakeClient) -> None:
        channel = getattr(client, "channel", None)
        if channel is not None:
            channel.close()
        client.closed = True
        with self._lock:
            self.closed.append(client.host)
        if client.host in self.close_failures:
            raise TransportIOError(f"close failed: {client.host} did not answer")

    def is_active(self, client: FakeClient) -> bool:
        return not client.closed

    def channel_for(self, host: str) -> FakeParamikoChannel:
        return self.channels[host][-1]


@pytest.fixture()
def credentials() -> Credentials:
    return Credentials(username="admin", password="secret")


@pytest.fixture()
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture()
def registry(transport) -> SessionRegistry:
    return SessionRegistry(transport=transport, policy=FixedDelayPolicy(0))


@pytest.fixture()
def commands(registry) -> CommandChannel:
    return CommandChannel(registry, policy=FixedDelayPolicy(0))
