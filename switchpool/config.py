import os
import re
from typing import Optional

# ========= Static config =========
CONNECT_TIMEOUT = 10
KEEPALIVE_INTERVAL = 30
BUFFER_SIZE = 4096
MAX_READ_BYTES = 1 << 20
SNAPSHOT_READ_LIMIT = 1.0
POLL_INTERVAL = 0.05
CHANNEL_SETTLE_DELAY = 0.4

TERM_TYPE = "vt100"
TERM_WIDTH = 200
TERM_HEIGHT = 50
LINE_TERMINATOR = "\n"

DEFAULT_WAIT_DURATION = 1.0
MAX_WAIT_DURATION = 120.0
DEFAULT_PROMPT_TIMEOUT = 20.0
MIN_PROMPT_TIMEOUT = 0.05
MAX_PROMPT_TIMEOUT = 600.0

DEFAULT_SETUP_COMMAND = "terminal length 0"
DEFAULT_COMPLETION = "prompt"
COMPLETION_MODES = ("delay", "prompt")
DEFAULT_MAX_WORKERS = 16
MAX_WORKERS_LIMIT = 256

PROMPT_TAIL_CHARS = 2000

# ========= Output cleanup =========
ANSI_ESCAPE = re.compile(r"\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])")
LINE_BREAKS = re.compile(r"[\r\n]+")

# ========= Runtime Configuration =========
class PoolConfig:
    def __init__(self):
        self.SWITCH_USER: Optional[str] = None
        self.SWITCH_PASSWORD: Optional[str] = None
        self.SWITCH_PORT: int = 22
        self.SWITCH_KEY_PATH: Optional[str] = None
        self.SWITCH_KEY_PASSPHRASE: Optional[str] = None
        self.SWITCH_VERIFY_HOST_KEY: bool = True
        self.SETUP_COMMAND: str = DEFAULT_SETUP_COMMAND
        self.COMPLETION: str = DEFAULT_COMPLETION
        self.WAIT_DURATION: float = DEFAULT_WAIT_DURATION
        self.PROMPT_TIMEOUT: float = DEFAULT_PROMPT_TIMEOUT
        self.PROMPT_PATTERN: Optional[str] = None
        self.MAX_WORKERS: int = DEFAULT_MAX_WORKERS
        self.LOG_DIR: Optional[str] = None

    def load_from_env(self):
        self.SWITCH_USER = os.environ.get("SWITCH_USER", self.SWITCH_USER)
        self.SWITCH_PASSWORD = os.environ.get("SWITCH_PASSWORD", self.SWITCH_PASSWORD)
        self.SWITCH_PORT = int(os.environ.get("SWITCH_PORT", self.SWITCH_PORT))
        self.SWITCH_KEY_PATH = os.environ.get("SWITCH_KEY_PATH", self.SWITCH_KEY_PATH)
        self.SWITCH_KEY_PASSPHRASE = os.environ.get("SWITCH_KEY_PASSPHRASE", self.SWITCH_KEY_PASSPHRASE)

        verify_host_env = os.environ.get("SWITCH_VERIFY_HOST_KEY")
        if verify_host_env is not None:
            self.SWITCH_VERIFY_HOST_KEY = verify_host_env.lower() in ("true", "1", "yes")

        # An empty SWITCH_SETUP_COMMAND disables the one-time setup.
        self.SETUP_COMMAND = os.environ.get("SWITCH_SETUP_COMMAND", self.SETUP_COMMAND)
        self.COMPLETION = os.environ.get("SWITCH_COMPLETION", self.COMPLETION).strip().lower()
        self.WAIT_DURATION = float(os.environ.get("SWITCH_WAIT_DURATION", self.WAIT_DURATION))
        self.PROMPT_TIMEOUT = float(os.environ.get("SWITCH_PROMPT_TIMEOUT", self.PROMPT_TIMEOUT))
        self.PROMPT_PATTERN = os.environ.get("SWITCH_PROMPT_PATTERN", self.PROMPT_PATTERN) or None
        self.MAX_WORKERS = int(os.environ.get("SWITCH_MAX_WORKERS", self.MAX_WORKERS))
        self.LOG_DIR = os.environ.get("SWITCH_LOG_DIR", self.LOG_DIR) or None

# Global instance
config = PoolConfig()
