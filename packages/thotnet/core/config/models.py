"""Configuration models for thotnet."""

from __future__ import annotations

from pathlib import Path
from typing import Literal, Self

from pydantic import BaseModel, ConfigDict, Field

from thotnet.core.generation.models import ContentKind
from thotnet.core.providers.base import ProviderType
from thotnet.core.storage.models import ConflictPolicy

_IMAGE_PROVIDER_TYPES = frozenset(
    {
        ProviderType.OPENAI_IMAGE,
        ProviderType.GEMINI_IMAGE,
        ProviderType.RUNWARE,
        ProviderType.HUGGINGFACE,
        ProviderType.QWEN,
    }
)


class ProviderConfig(BaseModel):
    """One configured provider.

    ``api_key`` is normally left empty and filled from ``api_key_env`` by the
    loader. A provider without a key stays registered and is skipped at call
    time.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(description="Identifier used in provider orders")
    type: ProviderType = Field(description="Implementation to instantiate")
    model: str | None = Field(default=None, description="Default model (None = adapter default)")
    base_url: str | None = Field(default=None, description="Endpoint override")
    api_key: str | None = Field(default=None, repr=False, description="API key")
    api_key_env: str | None = Field(default=None, description="Env var holding the API key")
    timeout_seconds: float = Field(default=60.0, gt=0, description="Per-call transport timeout")
    enabled: bool = Field(default=True, description="Register this provider")

    @property
    def kind(self) -> ContentKind:
        return ContentKind.IMAGE if self.type in _IMAGE_PROVIDER_TYPES else ContentKind.TEXT

    @property
    def has_credentials(self) -> bool:
        return self.type == ProviderType.OLLAMA or bool(self.api_key)


def _default_providers() -> list[ProviderConfig]:
    return [
        ProviderConfig(
            id="groq",
            type=ProviderType.OPENAI,
            model="llama-3.3-70b-versatile",
            base_url="https://api.groq.com/openai/v1",
            api_key_env="GROQ_API_KEY",
        ),
        ProviderConfig(
            id="openrouter",
            type=ProviderType.OPENAI,
            model="meta-llama/llama-3.3-70b-instruct:free",
            base_url="https://openrouter.ai/api/v1",
            api_key_env="OPENROUTER_API_KEY",
        ),
        ProviderConfig(
            id="gemini", type=ProviderType.GEMINI, model="gemini-2.5-flash", api_key_env="GEMINI_API_KEY"
        ),
        ProviderConfig(
            id="deepseek",
            type=ProviderType.OPENAI,
            model="deepseek-chat",
            base_url="https://api.deepseek.com",
            api_key_env="DEEPSEEK_API_KEY",
        ),
        ProviderConfig(
            id="mistral",
            type=ProviderType.OPENAI,
            model="mistral-small-latest",
            base_url="https://api.mistral.ai/v1",
            api_key_env="MISTRAL_API_KEY",
        ),
        ProviderConfig(id="openai", type=ProviderType.OPENAI, model="gpt-4o-mini", api_key_env="OPENAI_API_KEY"),
        ProviderConfig(
            id="anthropic", type=ProviderType.ANTHROPIC, api_key_env="ANTHROPIC_API_KEY"
        ),
        ProviderConfig(id="ollama", type=ProviderType.OLLAMA, timeout_seconds=300.0),
        ProviderConfig(
            id="runware", type=ProviderType.RUNWARE, api_key_env="RUNWARE_API_KEY", timeout_seconds=120.0
        ),
        ProviderConfig(
            id="gemini_image",
            type=ProviderType.GEMINI_IMAGE,
            api_key_env="GEMINI_API_KEY",
            timeout_seconds=120.0,
        ),
        ProviderConfig(
            id="huggingface",
            type=ProviderType.HUGGINGFACE,
            api_key_env="HUGGINGFACE_API_KEY",
            timeout_seconds=180.0,
        ),
        ProviderConfig(
            id="qwen", type=ProviderType.QWEN, api_key_env="QWEN_IMAGE_API_KEY", timeout_seconds=180.0
        ),
        ProviderConfig(
            id="openai_image",
            type=ProviderType.OPENAI_IMAGE,
            api_key_env="OPENAI_API_KEY",
            timeout_seconds=120.0,
        ),
    ]


class CascadeConfig(BaseModel):
    """Provider ordering and retry bounds."""

    model_config = ConfigDict(extra="forbid")

    text_order: list[str] = Field(
        default_factory=lambda: ["groq", "openrouter", "gemini", "ollama"],
        description="Default provider order for text",
    )
    image_order: list[str] = Field(
        default_factory=lambda: ["runware", "gemini_image"],
        description="Default provider order for images",
    )
    variant_orders: dict[str, list[str]] = Field(
        default_factory=lambda: {"diagram": ["gemini_image"], "schema": ["gemini_image"]},
        description="Per-variant default orders (take precedence over kind defaults)",
    )
    max_attempts_per_provider: int = Field(default=3, ge=1, le=10)
    initial_delay_s: float = Field(default=1.0, ge=0.0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)
    max_delay_s: float = Field(default=10.0, ge=0.0)
    jitter: float = Field(default=0.25, ge=0.0, le=1.0, description="Relative +/- jitter")


class GateConfig(BaseModel):
    """Acceptance thresholds."""

    model_config = ConfigDict(extra="forbid")

    min_text_length: int = Field(default=200, ge=1)
    placeholder_max_length: int = Field(default=2000, ge=0)
    placeholder_patterns: dict[str, list[str]] | None = Field(
        default=None, description="Regex patterns per locale (None = built-in list)"
    )
    structural_audit: bool = True
    allowed_mime_types: list[str] = Field(
        default_factory=lambda: ["image/png", "image/jpeg", "image/webp", "image/svg+xml"]
    )
    max_image_bytes: int | None = Field(default=None, gt=0)


class StorageConfig(BaseModel):
    """Blob and record store settings."""

    model_config = ConfigDict(extra="forbid")

    backend: Literal["memory", "sqlite", "postgrest"] = "sqlite"
    blob_root: str = Field(default="data/artifacts", description="Directory for artifact bytes")
    database_path: str = Field(default="data/thotnet.db", description="SQLite database file")
    table: str = "generated_artifacts"
    postgrest_url: str | None = None
    postgrest_key: str | None = Field(default=None, repr=False)
    postgrest_key_env: str = "SUPABASE_SERVICE_ROLE_KEY"
    conflict_policy: ConflictPolicy = ConflictPolicy.LAST_WRITE_WINS
    max_field_drops: int = Field(default=5, ge=0, le=20)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    structured: bool = False
    filename: str | None = None


class AppConfig(BaseModel):
    """Application configuration."""

    model_config = ConfigDict(extra="ignore")

    providers: list[ProviderConfig] = Field(default_factory=_default_providers)
    cascade: CascadeConfig = Field(default_factory=CascadeConfig)
    gate: GateConfig = Field(default_factory=GateConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    regenerate_fallbacks: bool = Field(
        default=False, description="Regenerate stored fallback artifacts instead of reusing them"
    )

    @classmethod
    def default_path(cls) -> Path:
        """Default path for application config."""
        return Path("thotnet.yaml")

    @classmethod
    def load_or_default(cls, path: Path | str | None = None) -> Self:
        """Load config from path or the default path, with env credentials filled in."""
        from thotnet.core.config.loader import load_app_config

        return load_app_config(path)  # type: ignore[return-value]

    def provider(self, provider_id: str) -> ProviderConfig | None:
        return next((p for p in self.providers if p.id == provider_id), None)
