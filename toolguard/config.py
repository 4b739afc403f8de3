"""Configuration for the guard pipeline.

Two layers:
- Settings: process-level settings from environment variables and .env,
  loaded with pydantic-settings (config file path, log level, API keys).
- GuardConfig: per-guard options read once from a JSON document shaped like
  the gateway's plugin entries. Every default is resolved at construction;
  guards never re-read the environment.

Config document (either form is accepted):

    {"plugins": {"entries": {"network-guard": {"enabled": true, "config": {...}}}}}
    {"network-guard": {...}, "command-guard": {...}}

Keys inside each guard's config are camelCase, as in the gateway.
"""

import json
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, SettingsConfigDict

from toolguard.middleware.guardrails.commands import DEFAULT_EXFILTRATION_PATTERNS, ConfigError
from toolguard.middleware.guardrails.content import (
    DEFAULT_MAX_CONTENT_LENGTH,
    ClassificationThresholds,
)
from toolguard.network.allowlist import DEFAULT_ALLOWED_DOMAINS

logger = logging.getLogger(__name__)

COMMAND_GUARD = "command-guard"
FILE_GUARD = "file-guard"
NETWORK_GUARD = "network-guard"
WEB_GUARD = "web-guard"
AGENT_GUARD = "agent-guard"
CONTENT_GUARD = "content-guard"
CHANNEL_GUARD = "channel-guard"

ALL_GUARDS: tuple[str, ...] = (
    COMMAND_GUARD,
    FILE_GUARD,
    NETWORK_GUARD,
    WEB_GUARD,
    AGENT_GUARD,
    CONTENT_GUARD,
    CHANNEL_GUARD,
)

# Deterministic guards need no model download or API key
DEFAULT_ENABLED: tuple[str, ...] = (COMMAND_GUARD, FILE_GUARD, NETWORK_GUARD)


class Settings(BaseSettings):
    """Process settings loaded from environment variables.

    Environment variables take precedence over .env file values.
    """

    # Path to the guard config JSON document
    config_path: str = ""

    log_level: str = "INFO"
    structured_logging: bool = False

    # Remote classifier (content guard); plain OPENROUTER_API_KEY also works
    openrouter_api_key: str = Field(
        "",
        validation_alias=AliasChoices("TOOLGUARD_OPENROUTER_API_KEY", "OPENROUTER_API_KEY"),
    )

    # Observability
    logfire_token: str = Field(
        "", validation_alias=AliasChoices("TOOLGUARD_LOGFIRE_TOKEN", "LOGFIRE_TOKEN")
    )

    model_config = SettingsConfigDict(
        env_prefix="TOOLGUARD_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )


# Singleton instance - import this in your code
settings = Settings()


# ============================================================================
# Per-guard configuration
# ============================================================================


class _GuardOptions(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )


class _TieredOptions(_GuardOptions):
    sensitivity: float = 0.5
    warn_threshold: float = 0.4
    block_threshold: float = 0.8

    @model_validator(mode="after")
    def _check_thresholds(self) -> "_TieredOptions":
        self.thresholds  # noqa: B018 - raises ValueError on bad ordering
        return self

    @property
    def thresholds(self) -> ClassificationThresholds:
        return ClassificationThresholds(
            warn_threshold=self.warn_threshold,
            block_threshold=self.block_threshold,
            sensitivity=self.sensitivity,
        )


class CommandGuardConfig(_GuardOptions):
    """Options for the destructive-command guard."""

    guarded_tools: tuple[str, ...] = ("exec", "bash")
    patterns_path: str | None = None
    fail_open: bool = False
    log_blocks: bool = True


class FileAgentOverride(_GuardOptions):
    config_path: str


class FileGuardConfig(_GuardOptions):
    """Options for the file access guard."""

    guarded_tools: tuple[str, ...] = ("read", "write", "edit", "apply_patch", "exec", "bash")
    config_path: str | None = None
    fail_open: bool = False
    log_blocks: bool = True
    agent_overrides: dict[str, FileAgentOverride] = Field(default_factory=dict)


class NetworkGuardConfig(_GuardOptions):
    """Options for the network access guard."""

    fetch_tools: tuple[str, ...] = ("web_fetch", "fetch")
    exec_tools: tuple[str, ...] = ("exec", "bash")
    allowed_domains: tuple[str, ...] = DEFAULT_ALLOWED_DOMAINS
    blocked_patterns: tuple[str, ...] = DEFAULT_EXFILTRATION_PATTERNS
    block_direct_ip: bool = True
    fail_open: bool = False
    log_blocks: bool = True
    agent_overrides: dict[str, tuple[str, ...]] = Field(default_factory=dict)
    resolve_dns: bool = True
    dns_timeout_ms: int = Field(2000, gt=0)

    @property
    def dns_timeout(self) -> float:
        return self.dns_timeout_ms / 1000


class WebGuardConfig(_TieredOptions):
    """Options for the web content guard (pre-fetch + local model)."""

    guarded_tools: tuple[str, ...] = ("web_fetch", "fetch")
    # any INJECTION at or above sensitivity blocks
    warn_threshold: float = 0.4
    block_threshold: float = 0.5
    max_content_length: int = Field(DEFAULT_MAX_CONTENT_LENGTH, gt=0)
    timeout_ms: int = Field(10_000, gt=0)
    max_redirects: int = Field(5, ge=0)
    fail_open: bool = False
    log_detections: bool = True
    cache_dir: str | None = None
    model_id: str | None = None

    @property
    def timeout(self) -> float:
        return self.timeout_ms / 1000


class AgentGuardConfig(_TieredOptions):
    """Options for the inter-agent message guard (local model)."""

    guarded_tools: tuple[str, ...] = ("sessions_send", "send")
    max_content_length: int = Field(DEFAULT_MAX_CONTENT_LENGTH, gt=0)
    fail_open: bool = False
    log_detections: bool = True
    cache_dir: str | None = None
    model_id: str | None = None
    guard_agents: tuple[str, ...] = ()
    skip_target_agents: tuple[str, ...] = ()


class ContentGuardConfig(_GuardOptions):
    """Options for the search-to-main content guard (remote LLM).

    There is deliberately no fail_open option: every error blocks.
    """

    guarded_tools: tuple[str, ...] = ("sessions_send", "send")
    open_router_api_key: str | None = None
    model: str = "anthropic/claude-haiku-4-5"
    max_content_length: int = Field(DEFAULT_MAX_CONTENT_LENGTH, gt=0)
    timeout_ms: int = Field(15_000, gt=0)
    log_detections: bool = True
    session_prefix: str = "agent:search:"

    @property
    def timeout(self) -> float:
        return self.timeout_ms / 1000


class ChannelGuardConfig(_TieredOptions):
    """Options for the inbound channel message guard (local model)."""

    max_content_length: int = Field(DEFAULT_MAX_CONTENT_LENGTH, gt=0)
    fail_open: bool = False
    log_detections: bool = True
    cache_dir: str | None = None
    model_id: str | None = None


_SECTIONS: dict[str, tuple[str, type[_GuardOptions]]] = {
    COMMAND_GUARD: ("command", CommandGuardConfig),
    FILE_GUARD: ("file", FileGuardConfig),
    NETWORK_GUARD: ("network", NetworkGuardConfig),
    WEB_GUARD: ("web", WebGuardConfig),
    AGENT_GUARD: ("agent", AgentGuardConfig),
    CONTENT_GUARD: ("content", ContentGuardConfig),
    CHANNEL_GUARD: ("channel", ChannelGuardConfig),
}


class GuardConfig(BaseModel):
    """Complete, immutable pipeline configuration.

    Attributes:
        enabled: Keys of the guards to build (see ALL_GUARDS).
        openrouter_api_key: Fallback key for the content guard.
    """

    model_config = ConfigDict(frozen=True)

    enabled: tuple[str, ...] = DEFAULT_ENABLED
    command: CommandGuardConfig = Field(default_factory=CommandGuardConfig)
    file: FileGuardConfig = Field(default_factory=FileGuardConfig)
    network: NetworkGuardConfig = Field(default_factory=NetworkGuardConfig)
    web: WebGuardConfig = Field(default_factory=WebGuardConfig)
    agent: AgentGuardConfig = Field(default_factory=AgentGuardConfig)
    content: ContentGuardConfig = Field(default_factory=ContentGuardConfig)
    channel: ChannelGuardConfig = Field(default_factory=ChannelGuardConfig)
    openrouter_api_key: str = ""

    def is_enabled(self, key: str) -> bool:
        return key in self.enabled

    @property
    def content_api_key(self) -> str:
        return self.content.open_router_api_key or self.openrouter_api_key


def _plugin_entries(document: Mapping[str, Any]) -> Mapping[str, Any]:
    plugins = document.get("plugins")
    if isinstance(plugins, Mapping) and isinstance(plugins.get("entries"), Mapping):
        return plugins["entries"]
    return document


def parse_guard_config(document: Any, openrouter_api_key: str = "") -> GuardConfig:
    """Build a GuardConfig from a parsed config document.

    A guard is enabled when its key is present and ``enabled`` is not false.
    A malformed guard entry keeps the guard enabled with default options.

    Raises:
        ConfigError: If the document is not a JSON object.
    """
    if not isinstance(document, Mapping):
        raise ConfigError("config document must be a JSON object")

    entries = _plugin_entries(document)
    enabled: list[str] = []
    sections: dict[str, _GuardOptions] = {}

    for key, (section, model) in _SECTIONS.items():
        entry = entries.get(key)
        if entry is None:
            continue
        if not isinstance(entry, Mapping):
            logger.error("Config entry %s must be an object, using defaults", key)
            entry = {}
        if entry.get("enabled", True) is False:
            continue
        enabled.append(key)

        options = entry.get("config", entry)
        try:
            sections[section] = model.model_validate(options)
        except ValidationError as e:
            logger.error(
                "Invalid config for %s (%d errors), using defaults",
                key,
                e.error_count(),
            )

    unknown = [k for k in entries if k not in _SECTIONS and k != "plugins"]
    if unknown:
        logger.debug("Ignoring unknown config entries: %s", unknown)

    return GuardConfig(enabled=tuple(enabled), openrouter_api_key=openrouter_api_key, **sections)


def load_guard_config(path: str | Path | None = None, env: Settings | None = None) -> GuardConfig:
    """Load the pipeline configuration once at startup.

    Args:
        path: JSON config file. Defaults to Settings.config_path.
        env: Settings to take the path and API key fallback from.

    Returns:
        GuardConfig. With no file, only the deterministic guards are enabled.
        An unreadable or malformed file enables every guard with default
        options, so a broken config never switches protection off.
    """
    env = env or settings
    config_path = Path(path) if path else (Path(env.config_path) if env.config_path else None)

    if config_path is None:
        return GuardConfig(openrouter_api_key=env.openrouter_api_key)

    if not config_path.exists():
        logger.warning("Guard config %s not found, using defaults", config_path)
        return GuardConfig(openrouter_api_key=env.openrouter_api_key)

    try:
        document = json.loads(config_path.read_text(encoding="utf-8"))
        return parse_guard_config(document, openrouter_api_key=env.openrouter_api_key)
    except (OSError, json.JSONDecodeError, ConfigError) as e:
        logger.error("Failed to load guard config %s: %s. Enabling all guards with defaults.", config_path, e)
        return GuardConfig(enabled=ALL_GUARDS, openrouter_api_key=env.openrouter_api_key)
