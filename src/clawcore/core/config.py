"""
Configuration management for the clawcore runtime.

Loads settings from environment variables and provides a configuration object
that is passed explicitly to every service at construction time.

Configuration precedence (highest to lowest):
1. Keyword arguments passed to ClawConfig
2. Environment variables (CLAW_* prefix)
3. .env file
4. pyproject.toml [tool.clawcore] section
5. Hardcoded defaults

Provider credentials are resolved separately by ``resolve_credentials`` from
ordered lists of environment variable names, once, at startup.
"""

import logging
import os
import sys
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, ClassVar

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from ..models.enums import LogLevel
from ..utils.logging import get_logger

logger = logging.getLogger(__name__)

CLOUD_ENV_MARKERS = ("RAILWAY_ENVIRONMENT_NAME", "RAILWAY_STATIC_URL")


def is_cloud_environment(env: Mapping[str, str] | None = None) -> bool:
    """True when running on the hosted platform rather than a workstation."""
    env = os.environ if env is None else env
    return any(env.get(marker) for marker in CLOUD_ENV_MARKERS)


def _default_db_path() -> Path:
    return Path("/data/memory.db") if is_cloud_environment() else Path("data/memory.db")


def load_pyproject_defaults() -> dict[str, Any]:
    """
    Load defaults from [tool.clawcore] section in pyproject.toml.

    Returns:
        Dictionary of configuration overrides from pyproject.toml
    """
    pyproject_path = Path("pyproject.toml")

    if not pyproject_path.exists():
        return {}

    try:
        with pyproject_path.open("rb") as f:
            data = tomllib.load(f)
    except OSError as e:
        logger.warning(f"Could not load pyproject.toml: {e}")
        return {}
    except tomllib.TOMLDecodeError as e:
        logger.warning(f"Could not parse pyproject.toml: {e}")
        return {}

    tool_config = data.get("tool", {}).get("clawcore", {})
    if tool_config:
        logger.debug(f"Loaded {len(tool_config)} settings from pyproject.toml")
    return tool_config


class PyProjectTomlSettingsSource(PydanticBaseSettingsSource):
    """
    A pydantic-settings source that loads configuration from pyproject.toml.

    Reads the [tool.clawcore] section.
    """

    def get_field_value(self, field_name: str, field_info: Any) -> tuple[Any, str, bool]:
        """Not used in this implementation."""
        return None, "", False

    def __call__(self) -> dict[str, Any]:
        """Load and return configuration from pyproject.toml."""
        return load_pyproject_defaults()


class ClawConfig(BaseSettings):
    """
    Runtime configuration.

    Every numeric threshold of the agent loop, memory tiers and workflow
    engine lives here with its production default.
    """

    model_config = SettingsConfigDict(
        env_prefix="CLAW_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    SECRET_FIELDS: ClassVar[frozenset[str]] = frozenset(
        {"gemini_api_key", "openai_api_key", "openrouter_api_key", "encryption_key"}
    )

    # Storage
    db_path: Path = Field(default_factory=_default_db_path, description="SQLite database file")
    encryption_key: str | None = Field(
        default=None, description="Fernet key for encrypting message content at rest"
    )

    # Debugging and logging
    debug: bool = Field(default=False, description="Log full agent transcripts at debug level")
    log_level: LogLevel = Field(default=LogLevel.INFO, description="Logging level")
    json_logs: bool = Field(default=False, description="Render console logs as JSON")
    log_file: Path | None = Field(default=None, description="Optional rotating log file")
    log_max_bytes: int = Field(default=10 * 1024 * 1024, description="Log rotation size")  # 10MB
    log_backup_count: int = Field(default=5, description="Number of backup log files to keep")
    enable_rich_console: bool = Field(
        default=True, description="Enable rich console output for component progress"
    )

    # Agent loop
    max_agent_iterations: int = Field(default=5, description="Model calls allowed per turn")
    max_delegation_depth: int = Field(default=3, description="Sub-agent recursion budget")
    context_message_limit: int = Field(
        default=5, description="Recent unpruned messages included in context"
    )

    # Memory tiers
    prune_threshold: int = Field(default=20, description="Unpruned messages that trigger pruning")
    prune_batch_size: int = Field(default=10, description="Messages summarized per pruning pass")
    fact_extraction_min_words: int = Field(
        default=3, description="Messages need more words than this to be memorized"
    )
    fact_scan_window: int = Field(default=500, description="Latest facts scanned per search")
    fact_similarity_floor: float = Field(default=0.65, description="Minimum fact cosine score")
    vector_top_k: int = Field(default=5, description="Vector index neighbours per search")
    vector_similarity_floor: float = Field(default=0.60, description="Minimum vector match score")
    consolidation_min_facts: int = Field(
        default=5, description="Chat facts required before consolidation runs"
    )
    strategic_lesson_limit: int = Field(default=10, description="Lessons fed to the planner")

    # Backends
    openrouter_model: str = Field(default="openai/gpt-4o", description="OpenRouter model id")
    gemini_pro_model: str = Field(default="gemini-2.0-pro-exp-02-05", description="High tier")
    gemini_flash_model: str = Field(default="gemini-2.0-flash", description="Efficient tier")
    openai_model: str = Field(default="gpt-4o", description="Final fallback model")
    embedding_model: str = Field(
        default="gemini/text-embedding-004", description="Embedding model in LiteLLM format"
    )
    llm_timeout_seconds: int = Field(default=60, description="Per-call transport timeout")
    tool_timeout_seconds: int = Field(default=30, description="Per-tool execution timeout")

    # Optional explicit keys; environment fallbacks are resolved by resolve_credentials
    gemini_api_key: str | None = None
    openai_api_key: str | None = None
    openrouter_api_key: str | None = None

    # Vector index
    enable_vector_index: bool = Field(default=True, description="Mirror memory into chromadb")
    vector_index_path: Path = Field(
        default=Path("data/vector_index"), description="chromadb persistence directory"
    )
    vector_collection: str = Field(default="clawcore-memory", description="chromadb collection")

    # Health and scheduled jobs
    health_rss_limit_mb: int = Field(default=480, description="RSS that raises a health alert")
    task_list_path: Path | None = Field(
        default=None, description="Markdown task list read by the briefing jobs"
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Sources in priority order: kwargs, env, .env, pyproject.toml, secrets."""
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            PyProjectTomlSettingsSource(settings_cls),
            file_secret_settings,
        )

    @field_validator(
        "max_agent_iterations",
        "max_delegation_depth",
        "context_message_limit",
        "prune_threshold",
        "prune_batch_size",
        "fact_scan_window",
        "vector_top_k",
        "consolidation_min_facts",
        "llm_timeout_seconds",
        "tool_timeout_seconds",
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Ensure bounds and thresholds are positive"""
        if v <= 0:
            raise ValueError(f"Value must be positive, got {v}")
        return v

    @field_validator("fact_similarity_floor", "vector_similarity_floor")
    @classmethod
    def validate_similarity_floor(cls, v: float) -> float:
        """Cosine floors live in [0, 1]"""
        if not 0.0 <= v <= 1.0:
            raise ValueError(f"Similarity floor must be 0.0-1.0, got {v}")
        return v

    @field_validator("encryption_key")
    @classmethod
    def validate_encryption_key(cls, v: str | None) -> str | None:
        """Reject keys Fernet cannot use"""
        if not v:
            return None
        from cryptography.fernet import Fernet

        try:
            Fernet(v.encode("utf-8"))
        except ValueError as e:
            raise ValueError(
                "encryption_key must be a url-safe base64-encoded 32-byte key "
                "(generate one with Fernet.generate_key())"
            ) from e
        return v

    @model_validator(mode="after")
    def validate_cross_field_constraints(self) -> "ClawConfig":
        """Cross-field validation of configuration constraints"""
        if self.prune_batch_size > self.prune_threshold:
            raise ValueError(
                f"prune_batch_size ({self.prune_batch_size}) exceeds "
                f"prune_threshold ({self.prune_threshold})"
            )
        if self.max_agent_iterations > 20:
            logger.warning(
                f"Very high max_agent_iterations ({self.max_agent_iterations}). "
                "Runaway tool loops will be expensive."
            )
        return self

    def ensure_directories(self) -> None:
        """Ensure the database and log directories exist."""
        for path in [self.db_path, self.log_file]:
            if path and path.parent:
                path.parent.mkdir(parents=True, exist_ok=True)


# ============================================================================
# Credentials
# ============================================================================


@dataclass(frozen=True)
class CredentialSource:
    """Ordered environment variable names that may carry one credential."""

    field: str
    env_vars: tuple[str, ...]


CREDENTIAL_SOURCES: tuple[CredentialSource, ...] = (
    CredentialSource("gemini", ("GEMINI_API_KEY", "GOOGLE_API_KEY")),
    CredentialSource(
        "openrouter", ("OPENROUTER_API_KEY", "OPENROUTER_KEY", "OR_API_KEY", "OPENROUTER_TOKEN")
    ),
    CredentialSource("openai", ("OPENAI_API_KEY", "OPENAI_KEY", "OA_API_KEY", "OPENAI_TOKEN")),
)


@dataclass(frozen=True)
class ResolvedCredentials:
    """Provider keys resolved once at startup. ``sources`` maps field to env var name."""

    gemini: str | None = None
    openai: str | None = None
    openrouter: str | None = None
    sources: dict[str, str] = field(default_factory=dict)

    def enabled(self) -> dict[str, bool]:
        return {
            "gemini": bool(self.gemini),
            "openai": bool(self.openai),
            "openrouter": bool(self.openrouter),
        }


def resolve_credentials(
    env: Mapping[str, str] | None = None, config: ClawConfig | None = None
) -> ResolvedCredentials:
    """
    Resolve provider keys from explicit config, then each source list in order.

    The winning source name is logged for every field; values never are.

    Args:
        env: Environment mapping (defaults to os.environ)
        config: Optional config whose explicit ``*_api_key`` fields win

    Returns:
        ResolvedCredentials
    """
    env = os.environ if env is None else env
    log = get_logger(__name__)
    values: dict[str, str | None] = {}
    sources: dict[str, str] = {}

    for source in CREDENTIAL_SOURCES:
        explicit = getattr(config, f"{source.field}_api_key", None) if config else None
        if explicit:
            values[source.field] = explicit
            sources[source.field] = "config"
        else:
            values[source.field] = None
            for name in source.env_vars:
                if env.get(name):
                    values[source.field] = env[name]
                    sources[source.field] = name
                    break

        if source.field in sources:
            log.info("credential_resolved", provider=source.field, source=sources[source.field])
        else:
            log.info("credential_missing", provider=source.field)

    return ResolvedCredentials(
        gemini=values["gemini"],
        openai=values["openai"],
        openrouter=values["openrouter"],
        sources=sources,
    )


# Process-wide instance for the CLI entry point only
_config: ClawConfig | None = None


def get_config() -> ClawConfig:
    """
    Get the process-wide configuration instance used by the CLI.

    Returns:
        ClawConfig instance
    """
    global _config
    if _config is None:
        _config = ClawConfig()
        _config.ensure_directories()
    return _config


def reset_config() -> None:
    """Reset the global configuration (mainly for testing)."""
    global _config
    _config = None
