import os
import logging
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "http://localhost:18789"
DEFAULT_AGENT_ID = "main"


class ConfigError(Exception):
    pass


def get_required_env(name: str) -> str:
    value = os.environ.get(name)
    if not value:
        raise ConfigError(f"Required environment variable {name} is not set")
    return value


def get_optional_env(name: str, default: str) -> str:
    return os.environ.get(name, default)


def get_bool_env(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class GatewayConfig:
    endpoint: str = field(
        default_factory=lambda: get_optional_env("CLAWCHAT_ENDPOINT", DEFAULT_ENDPOINT)
    )
    token: str = field(default_factory=lambda: get_required_env("CLAWCHAT_TOKEN"))
    agent_id: str = field(
        default_factory=lambda: get_optional_env("CLAWCHAT_AGENT_ID", DEFAULT_AGENT_ID)
    )
    provider: str = "clawdbot"
    client_tag: str = "clawchat-cli"
    timeout: float = 120.0
    async_enabled: bool = field(
        default_factory=lambda: get_bool_env("CLAWCHAT_ASYNC", True)
    )
    async_submit_path: str = "/v1/runs"
    async_poll_path: str = "/v1/runs"

    @property
    def base_url(self) -> str:
        return self.endpoint.rstrip("/")

    @property
    def model_name(self) -> str:
        return f"{self.provider}:{self.agent_id or DEFAULT_AGENT_ID}"

    @property
    def webchat_url(self) -> str:
        # The web chat is served from the gateway root.
        return self.base_url


@dataclass
class PollConfig:
    initial_delay: float = 1.0
    interval: float = 3.0
    max_attempts: int = 100


@dataclass
class ClawchatConfig:
    data_dir: str = field(
        default_factory=lambda: get_optional_env(
            "CLAWCHAT_DATA_DIR", str(Path.home() / ".clawchat")
        )
    )
    gateway: GatewayConfig = field(default_factory=GatewayConfig)
    poll: PollConfig = field(default_factory=PollConfig)

    @classmethod
    def from_env(cls) -> "ClawchatConfig":
        return cls()

    def validate(self) -> None:
        if not self.gateway.endpoint:
            raise ConfigError("gateway endpoint must be set")
        if not self.gateway.endpoint.startswith(("http://", "https://")):
            raise ConfigError(
                f"gateway endpoint must be an http(s) URL, got {self.gateway.endpoint!r}"
            )
        if not self.gateway.token:
            raise ConfigError("gateway token must be set")
        if self.gateway.timeout <= 0:
            raise ConfigError("gateway timeout must be > 0")
        if self.poll.initial_delay < 0:
            raise ConfigError("poll.initial_delay must be >= 0")
        if self.poll.interval <= 0:
            raise ConfigError("poll.interval must be > 0")
        if self.poll.max_attempts < 1:
            raise ConfigError("poll.max_attempts must be at least 1")
        logger.debug("Configuration validated successfully")
