"""OpenAPI ingester: endpoint documentation from JSON schemas in a GitHub repo.

The repository listing carries each file's blob SHA, so unchanged schemas
are skipped without downloading them.  A changed schema yields one overview
chunk plus one chunk per operation::

    # Orders API
    ## Get order
    Category: Orders

    **Endpoint:** `GET /api/orders/{orderId}`

    Retrieves an order by its identifier.

    ### Parameters
    - **orderId** [path] (required): Order identifier

    ### Responses
    - **200**: OK

The ``**Endpoint:**`` line is kept verbatim for exact-match lookups.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
from urllib.parse import quote

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

from rag_ingest.config import OpenApiSourceConfig
from rag_ingest.errors import DiscoveryError, FetchError, ParseError
from rag_ingest.index.base import IndexClient
from rag_ingest.index.models import ChunkDocument
from rag_ingest.ingestion.cache import CacheStore, hash_content
from rag_ingest.ingestion.fetcher import fetch_url
from rag_ingest.sources.base import DiscoveredItem, ItemOutcome, RunOptions, SourceAdapter

logger = logging.getLogger(__name__)

GITHUB_ACCEPT = "application/vnd.github.v3+json"
HTTP_METHODS = ("get", "post", "put", "patch", "delete")
MIN_ENDPOINT_TEXT = 100


# ---------------------------------------------------------------------------
# OpenAPI document model (only the fields that end up in chunks)
# ---------------------------------------------------------------------------


class _Model(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class Parameter(_Model):
    name: str = ""
    location: str = Field(default="", alias="in")
    description: str | None = None
    required: bool = False


class RequestBody(_Model):
    description: str | None = None


class Response(_Model):
    description: str | None = None


class Operation(_Model):
    summary: str | None = None
    description: str | None = None
    operation_id: str | None = None
    tags: list[str] = Field(default_factory=list)
    parameters: list[Parameter] = Field(default_factory=list)
    request_body: RequestBody | None = None
    responses: dict[str, Response] = Field(default_factory=dict)


class PathItem(_Model):
    get: Operation | None = None
    post: Operation | None = None
    put: Operation | None = None
    patch: Operation | None = None
    delete: Operation | None = None


class Info(_Model):
    title: str
    description: str | None = None


class OpenApiDocument(_Model):
    info: Info
    paths: dict[str, PathItem] = Field(default_factory=dict)


class RepoFile(_Model):
    """One entry of the GitHub contents listing."""

    name: str
    type: str
    sha: str | None = None


_listing_adapter = TypeAdapter(list[RepoFile])


# ---------------------------------------------------------------------------
# Chunk construction
# ---------------------------------------------------------------------------


def short_hash(value: str) -> str:
    return hashlib.md5(value.encode("utf-8")).hexdigest()[:8]


def api_slug(filename: str, file_prefix: str = "") -> str:
    """``"Prefix - Orders API.json"`` → ``"orders-api"``."""
    slug = filename.replace(file_prefix, "", 1) if file_prefix else filename
    slug = slug.replace(".json", "").strip().lower()
    slug = re.sub(r"\s*-\s*", "-", slug)
    slug = re.sub(r"\s+", "-", slug)
    return re.sub(r"-+", "-", slug)


def _clean_description(text: str) -> str:
    return text.replace("\\r\\n", "\n").replace("\r\n", "\n")


def build_endpoint_text(method: str, path: str, operation: Operation, api_title: str) -> str:
    """Render one operation as markdown, most search-relevant lines first."""
    lines = [f"# {api_title}"]
    if operation.summary:
        lines.append(f"## {operation.summary}")
    if operation.tags:
        lines.append(f"Category: {', '.join(operation.tags)}")

    lines.append("")
    lines.append(f"**Endpoint:** `{method} {path}`")
    lines.append("")

    if operation.description:
        lines.append(_clean_description(operation.description))
        lines.append("")

    if operation.parameters:
        lines.append("### Parameters")
        for param in operation.parameters:
            required = "(required)" if param.required else "(optional)"
            desc = param.description or "No description"
            lines.append(f"- **{param.name}** [{param.location}] {required}: {desc}")
        lines.append("")

    if operation.request_body is not None and operation.request_body.description:
        lines.append("### Request Body")
        lines.append(operation.request_body.description)
        lines.append("")

    if operation.responses:
        lines.append("### Responses")
        for code, response in operation.responses.items():
            lines.append(f"- **{code}**: {response.description or 'No description'}")

    return "\n".join(lines)


def extract_chunks(
    document: OpenApiDocument, filename: str, config: OpenApiSourceConfig
) -> list[ChunkDocument]:
    """Overview chunk plus one chunk per operation longer than ``MIN_ENDPOINT_TEXT``."""
    title = document.info.title
    api_url = f"{config.docs_base_url.rstrip('/')}/{api_slug(filename, config.file_prefix)}"
    file_hash = short_hash(filename)
    chunks: list[ChunkDocument] = []

    if document.info.description:
        chunks.append(
            ChunkDocument(
                id=f"openapi_{file_hash}_overview",
                text=f"# {title}\n\n{document.info.description}",
                source=title,
                url=api_url,
            )
        )

    for path, item in document.paths.items():
        for method in HTTP_METHODS:
            operation: Operation | None = getattr(item, method)
            if operation is None:
                continue
            text = build_endpoint_text(method.upper(), path, operation, title)
            if len(text) <= MIN_ENDPOINT_TEXT:
                logger.debug("Dropping %s %s: %d chars", method.upper(), path, len(text))
                continue

            summary = operation.summary or path
            tags = "/".join(operation.tags)
            source = f"{title} - {tags} - {summary}" if tags else f"{title} - {summary}"
            chunks.append(
                ChunkDocument(
                    id=f"openapi_{file_hash}_{short_hash(path + method)}",
                    text=text,
                    source=source,
                    url=f"{api_url}#{operation.operation_id or ''}",
                )
            )

    return chunks


def parse_openapi(raw: str, location: str) -> OpenApiDocument:
    """Decode and validate an OpenAPI document; raises :class:`ParseError` on bad input."""
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ParseError(location, str(exc)) from exc
    try:
        return OpenApiDocument.model_validate(payload)
    except ValidationError as exc:
        raise ParseError(location, f"not an OpenAPI document ({exc.error_count()} error(s))") from exc


# ---------------------------------------------------------------------------
# Ingester
# ---------------------------------------------------------------------------


class OpenApiIngester(SourceAdapter):
    kind = "openapi"
    title = "OpenAPI ingestion"

    def __init__(
        self,
        index: IndexClient,
        cache: CacheStore,
        config: OpenApiSourceConfig,
        options: RunOptions | None = None,
        *,
        upsert_batch_size: int | None = None,
    ) -> None:
        super().__init__(index, cache, options, upsert_batch_size=upsert_batch_size)
        self.cache: CacheStore = cache
        self.config = config

    def discover(self) -> list[DiscoveredItem]:
        logger.info("Listing OpenAPI schemas in %s@%s", self.config.github_repo, self.config.branch)
        try:
            body = fetch_url(self.config.listing_url, accept=GITHUB_ACCEPT)
            files = _listing_adapter.validate_json(body)
        except FetchError as exc:
            raise DiscoveryError(f"GitHub listing failed: {exc}") from exc
        except ValidationError as exc:
            raise DiscoveryError(f"Unexpected GitHub listing payload: {exc.error_count()} error(s)") from exc

        items = [
            DiscoveredItem(location=f.name, change_signal=f.sha)
            for f in files
            if f.type == "file" and f.name.endswith(".json") and f.name.startswith(self.config.file_prefix)
        ]
        logger.info("Found %d OpenAPI schema(s)", len(items))
        return items

    def should_skip(self, item: DiscoveredItem) -> bool:
        return self.cache.should_skip_remote_hash(
            item.location, item.change_signal, force=self.options.force
        )

    def raw_url(self, filename: str) -> str:
        return f"{self.config.raw_url_base}/{quote(filename)}"

    def process(self, item: DiscoveredItem) -> ItemOutcome:
        raw = fetch_url(self.raw_url(item.location), accept="application/json")
        document = parse_openapi(raw, item.location)
        docs = extract_chunks(document, item.location, self.config)
        logger.info("%s: %d chunk(s)", item.location, len(docs))
        return ItemOutcome(
            item,
            "processed",
            docs=docs,
            content_hash=hash_content(raw),
            remote_hash=item.change_signal,
        )
