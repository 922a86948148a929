"""Configuration for the command gate.

Settings Management:
    The module provides both global singleton and context-based settings:

    1. Global singleton (simple cases):
        set_settings(my_settings)
        settings = get_settings()

    2. Context-based (isolated contexts, tests):
        with SettingsContext(my_settings):
            settings = get_settings()  # Returns my_settings

Settings Loading Priority (highest to lowest):
    1. Constructor arguments
    2. Environment variables (AGENTIC_GATE_* prefix)
    3. Project config (./.agentic_gate/settings.json)
    4. User config (~/.agentic_gate/settings.json)
    5. .env file
    6. Default values
"""

from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path
from typing import Annotated, Generator, Literal, Tuple, Type

from pydantic import Field, field_validator
from pydantic_settings import (
    BaseSettings,
    JsonConfigSettingsSource,
    NoDecode,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from agentic_gate.shell.config import GatePolicy
from agentic_gate.shell.models import NetworkPolicy, TrustLevel

APP_DIR_NAME = ".agentic_gate"

DEFAULT_ALLOWED_DOMAINS = [
    "registry.npmjs.org",
    "pypi.org",
    "github.com",
    "api.github.com",
]


def _get_json_config_source(
    settings_cls: Type[BaseSettings],
    json_file: Path,
) -> PydanticBaseSettingsSource | None:
    """Create a JSON config source if the file exists."""
    if not json_file.exists():
        return None
    return JsonConfigSettingsSource(settings_cls, json_file=json_file)


class GateSettings(BaseSettings):
    """Settings consumed by the gate and its collaborators.

    The environment-level configuration (workspace root, trust level,
    network policy) plus locations of the durable records.
    """

    model_config = SettingsConfigDict(
        env_prefix="AGENTIC_GATE_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    workspace_root: Path = Field(
        default_factory=Path.cwd,
        description="Directory boundary outside of which writes need approval",
    )
    trust_level: Literal["untrusted", "session", "trusted"] = Field(
        default="untrusted",
        description="Trust level of the workspace when the trust store has no entry",
    )
    network_policy: Literal["off", "allowlist", "on"] = Field(
        default="off",
        description="Network access policy",
    )
    allowed_domains: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: list(DEFAULT_ALLOWED_DOMAINS),
        description="Domains permitted under the allowlist policy",
    )
    data_dir: Path = Field(
        default_factory=lambda: Path.home() / APP_DIR_NAME,
        description="Directory holding rules, trust store and audit log",
    )
    policy_file: Path | None = Field(
        default=None,
        description="Optional YAML file with policy tables",
    )
    log_level: Literal["debug", "info", "warning", "error"] = Field(
        default="warning",
        description="Logging level",
    )
    log_format: Literal["console", "json"] = Field(
        default="console",
        description="Log output format",
    )
    execution_timeout_seconds: int = Field(
        default=120,
        ge=1,
        description="Timeout for commands run through the guard",
    )
    max_output_length: int = Field(
        default=1000,
        ge=1,
        description="Maximum length of output fields stored in the audit log",
    )

    @field_validator("workspace_root", "data_dir", mode="before")
    @classmethod
    def expand_path(cls, v: str | Path) -> Path:
        """Expand ~ and make the path absolute."""
        return Path(v).expanduser().absolute()

    @field_validator("allowed_domains", mode="before")
    @classmethod
    def split_domains(cls, v: str | list[str]) -> list[str]:
        """Accept a comma-separated string."""
        if isinstance(v, str):
            return [d.strip().lower() for d in v.split(",") if d.strip()]
        return [d.lower() for d in v]

    @property
    def rules_file(self) -> Path:
        return self.data_dir / "rules.json"

    @property
    def audit_file(self) -> Path:
        return self.data_dir / "audit.jsonl"

    @property
    def trust_file(self) -> Path:
        return self.data_dir / "trusted-workspaces.json"

    @property
    def trust(self) -> TrustLevel:
        return TrustLevel(self.trust_level)

    @property
    def network(self) -> NetworkPolicy:
        return NetworkPolicy(self.network_policy)

    def load_policy(self) -> GatePolicy:
        """Load the policy tables, defaults when no policy file is set."""
        if self.policy_file is None:
            return GatePolicy()
        return GatePolicy.from_yaml(self.policy_file)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        """Layer project and user JSON configs between env and .env."""
        sources: list[PydanticBaseSettingsSource] = [init_settings, env_settings]

        project_json = _get_json_config_source(settings_cls, Path.cwd() / APP_DIR_NAME / "settings.json")
        if project_json:
            sources.append(project_json)

        user_json = _get_json_config_source(settings_cls, Path.home() / APP_DIR_NAME / "settings.json")
        if user_json:
            sources.append(user_json)

        sources.append(dotenv_settings)
        return tuple(sources)


# Context variable for settings (takes precedence over global singleton)
_settings_context: ContextVar[GateSettings | None] = ContextVar("gate_settings_context", default=None)

_settings_instance: GateSettings | None = None


def get_settings() -> GateSettings:
    """Get the current settings instance.

    Resolution order: context variable, global singleton, fresh instance.
    """
    context_settings = _settings_context.get()
    if context_settings is not None:
        return context_settings

    global _settings_instance
    if _settings_instance is None:
        _settings_instance = GateSettings()
    return _settings_instance


def set_settings(settings: GateSettings) -> None:
    """Set the global settings instance."""
    global _settings_instance
    _settings_instance = settings


@contextmanager
def SettingsContext(settings: GateSettings) -> Generator[GateSettings, None, None]:
    """Context manager for isolated settings.

    Example:
        with SettingsContext(test_settings) as s:
            gate = PermissionGate.from_settings()  # Uses test_settings
    """
    token = _settings_context.set(settings)
    try:
        yield settings
    finally:
        _settings_context.reset(token)


def reload_settings() -> GateSettings:
    """Reload settings (clears global singleton and context cache)."""
    global _settings_instance
    _settings_instance = None
    _settings_context.set(None)
    return get_settings()
