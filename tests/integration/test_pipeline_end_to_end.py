"""End-to-end tests for the generation pipeline.

Real provider adapters over mocked HTTP, a SQLite record store and a
filesystem blob store in a temporary directory.
"""

from pathlib import Path

import httpx
import pytest

from thotnet.core.generation.fallback import FallbackArtifactGenerator
from thotnet.core.generation.gate import ContentGate
from thotnet.core.generation.models import (
    FALLBACK_SOURCE,
    AttemptOutcome,
    ContentKind,
    GenerationOptions,
    TargetIdentity,
)
from thotnet.core.generation.orchestrator import CascadeOrchestrator, RetryPolicy
from thotnet.core.generation.pipeline import GenerationPipeline
from thotnet.core.providers.anthropic import AnthropicTextProvider
from thotnet.core.providers.gemini import GeminiTextProvider
from thotnet.core.providers.ollama import OllamaTextProvider
from thotnet.core.providers.registry import ProviderRegistry
from thotnet.core.storage.backends.fs import FSBlobStore
from thotnet.core.storage.backends.sqlite import SQLiteRecordStore
from thotnet.core.storage.models import ARTIFACT_COLUMNS
from thotnet.core.storage.writer import SchemaAdaptiveWriter

from tests.conftest import LONG_ARTICLE, PLACEHOLDER_TEXT, SleepRecorder

TABLE = "generated_artifacts"
PAYLOAD = "Explain how neural networks learn."


class Endpoint:
    """Mock HTTP endpoint counting requests."""

    def __init__(self, response: httpx.Response | Exception) -> None:
        self._response = response
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if isinstance(self._response, Exception):
            raise self._response
        return self._response

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


def _gemini_response(text: str) -> httpx.Response:
    return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": text}]}}]})


def _anthropic_response(text: str) -> httpx.Response:
    return httpx.Response(200, json={"model": "claude-x", "content": [{"type": "text", "text": text}]})


@pytest.fixture
def endpoints() -> dict[str, Endpoint]:
    return {
        "p1": Endpoint(httpx.ReadTimeout("timed out")),
        "p2": Endpoint(_anthropic_response(PLACEHOLDER_TEXT)),
        "p3": Endpoint(_gemini_response(LONG_ARTICLE)),
    }


@pytest.fixture
def registry(endpoints: dict[str, Endpoint]) -> ProviderRegistry:
    return ProviderRegistry(
        [
            OllamaTextProvider("p1", client=endpoints["p1"].client()),
            AnthropicTextProvider("p2", api_key="a-key", client=endpoints["p2"].client()),
            GeminiTextProvider("p3", api_key="g-key", client=endpoints["p3"].client()),
        ]
    )


@pytest.fixture
def records(tmp_path: Path) -> SQLiteRecordStore:
    return SQLiteRecordStore(tmp_path / "thotnet.db")


@pytest.fixture
def blobs(tmp_path: Path) -> FSBlobStore:
    return FSBlobStore(tmp_path / "artifacts")


@pytest.fixture
def target() -> TargetIdentity:
    return TargetIdentity(subject_id="intro-ml", locale="en", variant="textbook")


def _pipeline(registry: ProviderRegistry, records, blobs, **kwargs) -> GenerationPipeline:
    orchestrator = CascadeOrchestrator(
        registry,
        ContentGate(),
        FallbackArtifactGenerator(),
        RetryPolicy(max_attempts=1, initial_delay_s=0.0, jitter=0.0),
        sleep=SleepRecorder(),
    )
    return GenerationPipeline(orchestrator, SchemaAdaptiveWriter(records, blobs), **kwargs)


class TestCascadeEndToEnd:
    """Cascade across real adapters with durable storage."""

    async def test_cascade_then_cache_hit(self, registry, endpoints, records, blobs, target):
        """Test timeout, gate rejection and success, then a cache hit."""
        await records.create_table(TABLE)
        pipeline = _pipeline(registry, records, blobs)

        result = await pipeline.generate(target, PAYLOAD, ["p1", "p2", "p3"])

        assert [a.outcome for a in result.attempts] == [
            AttemptOutcome.PROVIDER_ERROR,
            AttemptOutcome.REJECTED_BY_GATE,
            AttemptOutcome.SUCCESS,
        ]
        assert [a.provider_id for a in result.attempts] == ["p1", "p2", "p3"]
        assert result.artifact is not None
        assert result.artifact.source_tag == "p3"
        assert not result.used_fallback
        stored_path = Path(result.artifact.storage_location or "")
        assert stored_path.is_relative_to(blobs.root)
        assert stored_path.read_text() == LONG_ARTICLE.strip()

        again = await pipeline.generate(target, PAYLOAD, ["p3", "p2", "p1"])

        assert again.cache_hit
        assert again.checksum == result.checksum
        assert again.artifact is not None
        assert again.artifact.source_tag == "p3"
        assert [len(e.requests) for e in endpoints.values()] == [1, 1, 1]

    async def test_changed_options_regenerate(self, registry, endpoints, records, blobs, target):
        """Test a different option set misses the cache and replaces the canonical row."""
        await records.create_table(TABLE)
        pipeline = _pipeline(registry, records, blobs)

        first = await pipeline.generate(target, PAYLOAD, ["p3"])
        second = await pipeline.generate(target, PAYLOAD, ["p3"], GenerationOptions(temperature=0.2))

        assert first.checksum != second.checksum
        assert not second.cache_hit
        assert len(endpoints["p3"].requests) == 2
        latest = await records.fetch_latest(TABLE, target.conflict_key)
        assert latest is not None
        assert latest["checksum"] == second.checksum

    async def test_all_providers_fail(self, registry, endpoints, records, blobs, target):
        """Test exhaustion stores a fallback that later calls reuse."""
        await records.create_table(TABLE)
        pipeline = _pipeline(registry, records, blobs)

        result = await pipeline.generate(target, PAYLOAD, ["p1", "p2"])

        assert result.success
        assert result.used_fallback
        assert result.artifact is not None
        assert result.artifact.source_tag == FALLBACK_SOURCE
        assert len(result.attempts) == 2
        assert Path(result.artifact.storage_location or "").read_text()

        reused = await pipeline.generate(target, PAYLOAD, ["p1", "p2"])

        assert reused.cache_hit
        assert reused.used_fallback
        assert len(endpoints["p1"].requests) == 1

    async def test_fallback_regenerated_when_configured(
        self, registry, endpoints, records, blobs, target
    ):
        """Test stored fallbacks are treated as misses when requested."""
        await records.create_table(TABLE)
        pipeline = _pipeline(registry, records, blobs, regenerate_fallbacks=True)

        await pipeline.generate(target, PAYLOAD, ["p2"])
        again = await pipeline.generate(target, PAYLOAD, ["p2"])

        assert not again.cache_hit
        assert again.used_fallback
        assert len(endpoints["p2"].requests) == 2


class TestSchemaDriftEndToEnd:
    """Persistence against an older table layout."""

    async def test_older_table_layout(self, registry, records, blobs, target):
        """Test rows are stored and reused when optional columns are missing."""
        await records.create_table(
            TABLE, [c for c in ARTIFACT_COLUMNS if c not in ("anchor", "prompt_summary", "model")]
        )
        pipeline = _pipeline(registry, records, blobs)

        result = await pipeline.generate(target, PAYLOAD, ["p3"])
        again = await pipeline.generate(target, PAYLOAD, ["p3"])

        assert result.artifact is not None
        assert result.artifact.model is None
        assert again.cache_hit
        assert again.artifact is not None
        assert again.artifact.kind == ContentKind.TEXT
