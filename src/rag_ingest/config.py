"""Shared configuration loaded from environment and per-source JSON files."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated, Literal, Union

import soupsieve
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings

from rag_ingest.errors import ConfigError


class Settings(BaseSettings):
    """Application-wide settings, populated from env vars or .env file."""

    # Vector store
    chroma_host: str = "localhost"
    chroma_port: int = 8000
    chroma_collection: str = "docs"

    # Embedding
    embedding_backend: Literal["huggingface", "ollama"] = "huggingface"
    embedding_model: str = "sentence-transformers/all-MiniLM-L6-v2"
    ollama_host: str = "http://localhost:11434"
    ollama_embed_model: str = "mxbai-embed-large"

    # Files
    data_dir: Path = Field(default=Path("data"), description="Root for configs, caches and shards")

    # Cache
    cache_ttl_days: float = 7

    # Fetching
    request_timeout: float = Field(default=30.0, description="Per-request timeout in seconds")
    max_retry_seconds: float = Field(
        default=120.0,
        description="No new attempt is started once a fetch has been retrying this long",
    )
    fetch_retries: int = 2
    retry_delay: float = 1.0
    concurrency: int = 5
    rate_limit_ms: int = 300

    # Batch processing
    shard_size: int = 50
    parallel_shards: int = 3
    upsert_batch_size: int = 20
    worker_timeout: float = 1800.0

    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # -- derived paths --------------------------------------------------------

    def config_path(self, kind: str) -> Path:
        return self.data_dir / _CONFIG_FILES[kind]

    def cache_path(self, kind: str) -> Path:
        return self.data_dir / f".{kind}-cache.json"

    @property
    def shard_dir(self) -> Path:
        return self.data_dir / ".sitemap-temp"

    @property
    def cache_paths(self) -> dict[str, Path]:
        """Every cache file the adapters may write, keyed by source kind."""
        return {kind: self.cache_path(kind) for kind in ("sitemap", "urls", "openapi")}


_CONFIG_FILES = {
    "sitemap": "sitemap-config.json",
    "urls": "urls.json",
    "openapi": "openapi-config.json",
    "manual": "manual-docs.json",
}


# ---------------------------------------------------------------------------
# Per-source configuration (tagged union on ``kind``)
# ---------------------------------------------------------------------------


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


def _check_selectors(value: str | list[str] | None) -> str | list[str] | None:
    """Reject any selector that soupsieve cannot compile."""
    selectors = [value] if isinstance(value, str) else value or []
    for selector in selectors:
        try:
            soupsieve.compile(selector)
        except soupsieve.SelectorSyntaxError as exc:
            raise ValueError(f"invalid CSS selector {selector!r}: {exc}") from exc
    return value


class SitemapEntry(_CamelModel):
    """One sitemap to crawl.

    ``include`` / ``exclude`` are glob patterns applied to the URL path;
    ``concurrency`` and ``rate_limit_ms`` override the run defaults.
    """

    url: str
    name: str
    include: list[str] = Field(default_factory=list)
    exclude: list[str] = Field(default_factory=list)
    selector: str | list[str] | None = None
    concurrency: int | None = Field(default=None, ge=1)
    rate_limit_ms: int | None = Field(default=None, ge=0)

    check_selector = field_validator("selector")(_check_selectors)


class UrlEntry(_CamelModel):
    url: str
    name: str
    selector: str | list[str] | None = None

    check_selector = field_validator("selector")(_check_selectors)


class ManualDoc(_CamelModel):
    topic: str
    text: str
    url: str | None = None


class SitemapSourceConfig(_CamelModel):
    kind: Literal["sitemap"] = "sitemap"
    entries: list[SitemapEntry]


class UrlListSourceConfig(_CamelModel):
    kind: Literal["urls"] = "urls"
    entries: list[UrlEntry]


class OpenApiSourceConfig(_CamelModel):
    """Coordinates of a GitHub repository holding OpenAPI JSON files."""

    kind: Literal["openapi"] = "openapi"
    github_repo: str
    branch: str = "main"
    file_prefix: str = ""
    docs_base_url: str
    api_base: str = "https://api.github.com"
    raw_base: str = "https://raw.githubusercontent.com"

    @property
    def listing_url(self) -> str:
        return f"{self.api_base.rstrip('/')}/repos/{self.github_repo}/contents?ref={self.branch}"

    @property
    def raw_url_base(self) -> str:
        return f"{self.raw_base.rstrip('/')}/{self.github_repo}/{self.branch}"


class ManualSourceConfig(_CamelModel):
    kind: Literal["manual"] = "manual"
    docs: list[ManualDoc]


SourceConfig = Annotated[
    Union[SitemapSourceConfig, UrlListSourceConfig, OpenApiSourceConfig, ManualSourceConfig],
    Field(discriminator="kind"),
]

_source_adapter: TypeAdapter[SourceConfig] = TypeAdapter(SourceConfig)

# JSON list files are wrapped under this key before validation.
_LIST_FIELD = {"sitemap": "entries", "urls": "entries", "manual": "docs"}


def load_source_config(kind: str, path: str | Path | None = None) -> SourceConfig:
    """Read and validate the JSON configuration for one source *kind*.

    Parameters
    ----------
    kind:
        ``"sitemap"``, ``"urls"``, ``"openapi"`` or ``"manual"``.
    path:
        Override for the config file location; defaults to the file under
        ``settings.data_dir``.

    Raises
    ------
    ConfigError
        When the file is missing, is not JSON, or fails validation.
    """
    if kind not in _CONFIG_FILES:
        raise ConfigError(f"Unknown source kind {kind!r}")

    path = Path(path) if path is not None else settings.config_path(kind)
    if not path.is_file():
        raise ConfigError(f"Missing {path}")

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigError(f"{path} is not valid JSON: {exc}") from exc

    if kind in _LIST_FIELD:
        if not isinstance(raw, list):
            raise ConfigError(f"{path} must contain a JSON list")
        payload = {"kind": kind, _LIST_FIELD[kind]: raw}
    else:
        if not isinstance(raw, dict):
            raise ConfigError(f"{path} must contain a JSON object")
        payload = {**raw, "kind": kind}

    try:
        return _source_adapter.validate_python(payload)
    except ValidationError as exc:
        raise ConfigError(f"{path} failed validation: {exc}") from exc


# Module-level instance; import `settings` wherever needed.
settings = Settings()
