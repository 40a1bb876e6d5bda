from __future__ import annotations
import os
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional, Any
from urllib.parse import urlsplit, urlunsplit

from .exceptions import InvalidSettingsError

if TYPE_CHECKING:
    from .logging import BundleLoggerAdapter

DEFAULT_BASE_URL = "https://api.lokalise.com/api2/"
DEFAULT_UA = "bundledl/0.1"

DEFAULT_POLL_INITIAL_WAIT = 1.0
DEFAULT_POLL_MAX_WAIT = 120.0

ENV_TOKEN = "LOKALISE_API_TOKEN"
ENV_PROJECT_ID = "LOKALISE_PROJECT_ID"
ENV_BASE_URL = "LOKALISE_BASE_URL"


@dataclass
class RetryPolicy:
    max_retries: int = 3              # additional attempts after the first
    initial_backoff: float = 0.4      # seconds, jittered
    max_backoff: float = 5.0          # seconds, caps every sleep
    retry_on_deadline: bool = False   # retry a caller deadline (TimeoutError)

    def __post_init__(self) -> None:
        # negative disables retries, same as zero
        if self.max_retries < 0:
            self.max_retries = 0


@dataclass
class PollPolicy:
    initial_wait: float = DEFAULT_POLL_INITIAL_WAIT  # first sleep between rounds
    max_wait: float = DEFAULT_POLL_MAX_WAIT          # overall polling ceiling

    def __post_init__(self) -> None:
        if self.initial_wait <= 0:
            self.initial_wait = DEFAULT_POLL_INITIAL_WAIT
        if self.max_wait <= 0:
            self.max_wait = DEFAULT_POLL_MAX_WAIT
        if self.max_wait < self.initial_wait:
            self.max_wait = self.initial_wait


@dataclass
class Timeouts:
    connect: float = 5.0
    read: float = 30.0
    write: float = 30.0
    pool: float = 5.0


@dataclass(frozen=True)
class ExtractionPolicy:
    max_files: int = 20_000
    max_total_bytes: int = 2 << 30    # 2 GiB
    max_file_bytes: int = 512 << 20   # 512 MiB
    allow_symlinks: bool = False
    preserve_timestamps: bool = False


def normalize_base_url(url: str) -> str:
    """Validate an absolute http(s) URL and make sure its path ends with '/'."""
    url = (url or "").strip()
    if not url:
        raise InvalidSettingsError(
            message="base URL cannot be empty",
            setting_name="base_url",
            setting_value=url,
        )
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        raise InvalidSettingsError(
            message="invalid base URL",
            setting_name="base_url",
            setting_value=url,
        )
    path = parts.path if parts.path.endswith("/") else parts.path + "/"
    return urlunsplit((parts.scheme, parts.netloc, path, parts.query, parts.fragment))


@dataclass
class ClientSettings:
    # Credentials
    token: str
    project_id: str

    # HTTP basics
    base_url: str = DEFAULT_BASE_URL
    user_agent: str = DEFAULT_UA
    http2: bool = False
    follow_redirects: bool = True
    max_redirects: int = 20
    timeouts: Timeouts = field(default_factory=Timeouts)

    # Resilience
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    poll: PollPolicy = field(default_factory=PollPolicy)

    # Safety
    extraction: ExtractionPolicy = field(default_factory=ExtractionPolicy)

    # Logging
    logger: Optional["BundleLoggerAdapter"] = None  # Optional custom logger instance

    def __post_init__(self) -> None:
        self.token = (self.token or "").strip()
        self.project_id = (self.project_id or "").strip()
        if not self.token:
            raise InvalidSettingsError(message="token is required", setting_name="token")
        if not self.project_id:
            raise InvalidSettingsError(
                message="project ID is required", setting_name="project_id"
            )
        self.base_url = normalize_base_url(self.base_url)
        self.user_agent = (self.user_agent or "").strip() or DEFAULT_UA

    @classmethod
    def from_env(cls, environ: Optional[dict] = None, **overrides: Any) -> "ClientSettings":
        """
        Build settings from LOKALISE_API_TOKEN, LOKALISE_PROJECT_ID and
        LOKALISE_BASE_URL. Keyword overrides win over the environment.
        """
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {
            "token": env.get(ENV_TOKEN, ""),
            "project_id": env.get(ENV_PROJECT_ID, ""),
        }
        if env.get(ENV_BASE_URL):
            values["base_url"] = env[ENV_BASE_URL]
        values.update(overrides)
        return cls(**values)
