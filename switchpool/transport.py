import time
from dataclasses import dataclass
from typing import Any, Callable, Optional
import paramiko

from switchpool.config import (
    CONNECT_TIMEOUT, KEEPALIVE_INTERVAL, BUFFER_SIZE, MAX_READ_BYTES, POLL_INTERVAL,
    CHANNEL_SETTLE_DELAY, TERM_TYPE, TERM_WIDTH, TERM_HEIGHT, config
)
from switchpool.errors import SessionConnectError, TransportIOError, PromptTimeoutError
from switchpool.utils import find_prompt


@dataclass
class Credentials:
    username: str
    password: Optional[str] = None
    key_path: Optional[str] = None
    passphrase: Optional[str] = None
    port: int = 22

    @classmethod
    def from_config(cls) -> "Credentials":
        return cls(
            username=config.SWITCH_USER or "",
            password=config.SWITCH_PASSWORD,
            key_path=config.SWITCH_KEY_PATH,
            passphrase=config.SWITCH_KEY_PASSPHRASE,
            port=config.SWITCH_PORT,
        )


class ShellChannel:
    # Not thread-safe; DeviceSession.lock serializes access.
    def __init__(
        self,
        channel: Any,
        buffer_size: int = BUFFER_SIZE,
        poll_interval: float = POLL_INTERVAL,
        max_read_bytes: int = MAX_READ_BYTES,
    ):
        self.channel = channel
        self.buffer_size = buffer_size
        self.poll_interval = poll_interval
        self.max_read_bytes = max_read_bytes
        self.prompt: Optional[str] = None

    @property
    def closed(self) -> bool:
        return bool(self.channel is None or self.channel.closed)

    def write(self, data: bytes) -> None:
        if self.closed:
            raise TransportIOError("channel is closed")
        try:
            self.channel.sendall(data)
        except (paramiko.SSHException, OSError) as exc:
            raise TransportIOError(f"write failed: {exc}") from exc

    def read_available(self, deadline: Optional[float] = None) -> bytes:
        # Stops at max_read_bytes or the monotonic deadline even if the device keeps printing.
        chunks = []
        size = 0
        try:
            while self.channel is not None and self.channel.recv_ready():
                chunk = self.channel.recv(self.buffer_size)
                if not chunk:
                    break
                chunks.append(chunk)
                size += len(chunk)
                if size >= self.max_read_bytes:
                    break
                if deadline is not None and time.monotonic() >= deadline:
                    break
        except (paramiko.SSHException, OSError) as exc:
            raise TransportIOError(f"read failed: {exc}") from exc
        if not chunks and self.closed:
            raise TransportIOError("channel is closed")
        return b"".join(chunks)

    def read_until(self, predicate: Callable[[bytes], bool], timeout: float) -> bytes:
        deadline = time.monotonic() + timeout
        data = b""
        while True:
            data += self.read_available(deadline)
            if predicate(data):
                return data
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise PromptTimeoutError(timeout, partial=data)
            time.sleep(min(self.poll_interval, remaining))

    def learn_prompt(self, deadline: Optional[float] = None) -> Optional[str]:
        banner = self.read_available(deadline)
        self.prompt = find_prompt(banner.decode("utf-8", errors="replace"))
        return self.prompt

    def close(self) -> None:
        try:
            if self.channel is not None:
                self.channel.close()
        except Exception:
            pass


class ParamikoTransport:
    def __init__(
        self,
        verify_host_key: bool = True,
        connect_timeout: float = CONNECT_TIMEOUT,
        keepalive_interval: int = KEEPALIVE_INTERVAL,
        settle_delay: float = CHANNEL_SETTLE_DELAY,
    ):
        self.verify_host_key = verify_host_key
        self.connect_timeout = connect_timeout
        self.keepalive_interval = keepalive_interval
        self.settle_delay = settle_delay

    def connect(self, host: str, credentials: Credentials) -> paramiko.SSHClient:
        client = paramiko.SSHClient()
        try:
            if self.verify_host_key:
                # paramiko rejects hosts missing from known_hosts by default.
                client.load_system_host_keys()
            else:
                client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

            connect_kwargs = {
                "hostname": host,
                "port": credentials.port,
                "username": credentials.username,
                "timeout": self.connect_timeout,
                "allow_agent": True,
                "look_for_keys": True,
            }
            if credentials.password:
                connect_kwargs["password"] = credentials.password
            if credentials.key_path:
                connect_kwargs["key_filename"] = credentials.key_path
                if credentials.passphrase:
                    connect_kwargs["passphrase"] = credentials.passphrase

            client.connect(**connect_kwargs)

            transport = client.get_transport()
            if transport:
                transport.set_keepalive(self.keepalive_interval)
            return client
        except (paramiko.SSHException, OSError) as exc:
            client.close()
            raise SessionConnectError(host, str(exc) or exc.__class__.__name__) from exc

    def open_interactive_channel(self, client: paramiko.SSHClient) -> ShellChannel:
        try:
            channel = client.invoke_shell(term=TERM_TYPE, width=TERM_WIDTH, height=TERM_HEIGHT)
            channel.settimeout(1.0)
        except (paramiko.SSHException, OSError) as exc:
            raise TransportIOError(f"failed to open shell: {exc}") from exc

        shell = ShellChannel(channel)
        time.sleep(self.settle_delay)
        # Login banner ends with the first prompt.
        shell.learn_prompt(time.monotonic() + self.settle_delay + 1.0)
        return shell

    def close(self, client: paramiko.SSHClient) -> None:
        try:
            client.close()
        except (paramiko.SSHException, OSError) as exc:
            raise TransportIOError(f"close failed: {exc}") from exc

    def is_active(self, client: Any) -> bool:
        try:
            transport = client.get_transport()
            return bool(transport and transport.is_active())
        except Exception:
            return False
