"""Unit tests for the thotnet CLI."""

from __future__ import annotations

from pathlib import Path

import pytest

from thotnet.cli import main as cli
from thotnet.core.config.models import AppConfig
from thotnet.core.generation.idempotency import compute_idempotency_key
from thotnet.core.generation.models import (
    Artifact,
    ContentKind,
    GenerationRequest,
    GenerationResult,
    TargetIdentity,
)
from thotnet.core.providers.registry import ProviderRegistry
from thotnet.core.session import ThotnetSession
from thotnet.core.storage.backends.memory import InMemoryRecordStore
from thotnet.core.storage.models import ARTIFACT_COLUMNS

from tests.conftest import LONG_ARTICLE, FakeProvider

TARGET_ARGS = ["--subject", "intro-ml", "--locale", "en", "--variant", "textbook"]


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "thotnet.yaml"
    path.write_text("storage:\n  backend: memory\n")
    return path


@pytest.fixture
def fake_session(monkeypatch: pytest.MonkeyPatch):
    """Route CLI sessions to scripted providers and in-memory stores."""

    def _install(*providers: FakeProvider, records: InMemoryRecordStore | None = None) -> None:
        def factory(*, app_config: AppConfig) -> ThotnetSession:
            return ThotnetSession(
                app_config=app_config, registry=ProviderRegistry(providers), records=records
            )

        monkeypatch.setattr(cli, "ThotnetSession", factory)
        monkeypatch.setattr(cli, "configure_logging", lambda config: None)

    return _install


def _exit_code(argv: list[str]) -> int | str | None:
    with pytest.raises(SystemExit) as exc_info:
        cli.main(argv)
    return exc_info.value.code


def test_key_prints_idempotency_key(capsys: pytest.CaptureFixture[str]) -> None:
    """Key command prints the same key the pipeline computes."""
    code = _exit_code(["key", *TARGET_ARGS, "--payload", "Explain  gradients", "--provider", "p1"])

    expected = compute_idempotency_key(
        GenerationRequest(
            kind=ContentKind.TEXT,
            target=TargetIdentity(subject_id="intro-ml", locale="en", variant="textbook"),
            provider_order=[],
            payload="Explain gradients",
        )
    )
    assert code == cli.EXIT_OK
    assert capsys.readouterr().out.strip() == expected


def test_key_reads_payload_file(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    """Payload files and inline payloads with equal content share a key."""
    payload_file = tmp_path / "prompt.txt"
    payload_file.write_text("Explain gradients\n")

    _exit_code(["key", *TARGET_ARGS, "--payload-file", str(payload_file)])
    from_file = capsys.readouterr().out.strip()
    _exit_code(["key", *TARGET_ARGS, "--payload", "Explain gradients"])

    assert capsys.readouterr().out.strip() == from_file


def test_key_missing_payload_file(tmp_path: Path) -> None:
    """A missing payload file is an invalid request."""
    code = _exit_code(["key", *TARGET_ARGS, "--payload-file", str(tmp_path / "missing.txt")])

    assert code == cli.EXIT_INVALID_REQUEST


def test_payload_is_required() -> None:
    """Argument parsing rejects requests without a payload."""
    assert _exit_code(["key", *TARGET_ARGS]) == 2


def test_generate_success(fake_session, config_file: Path, capsys: pytest.CaptureFixture[str]) -> None:
    """Generate prints the accepted provider and exits 0."""
    fake_session(FakeProvider("p1", [LONG_ARTICLE]))

    code = _exit_code(
        ["generate", *TARGET_ARGS, "--payload", "Explain", "--provider", "p1", "--config", str(config_file)]
    )

    out = capsys.readouterr().out
    assert code == cli.EXIT_OK
    assert "Accepted output from p1" in out
    assert "Attempts" in out


def test_generate_unknown_provider(fake_session, config_file: Path) -> None:
    """Unknown providers are rejected before any call."""
    fake_session(FakeProvider("p1"))

    code = _exit_code(
        ["generate", *TARGET_ARGS, "--payload", "Explain", "--provider", "p9", "--config", str(config_file)]
    )

    assert code == cli.EXIT_INVALID_REQUEST


def test_generate_persistence_failure(
    fake_session, config_file: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    """A record store that cannot hold the row exits 1 after printing attempts."""
    records = InMemoryRecordStore([c for c in ARTIFACT_COLUMNS if c != "checksum"])
    fake_session(FakeProvider("p1", [LONG_ARTICLE]), records=records)

    code = _exit_code(
        ["generate", *TARGET_ARGS, "--payload", "Explain", "--provider", "p1", "--config", str(config_file)]
    )

    out = capsys.readouterr().out
    assert code == cli.EXIT_PERSISTENCE_FAILED
    assert "Attempts" in out


def test_generate_missing_config(tmp_path: Path) -> None:
    """An explicit config path that does not exist exits 1."""
    code = _exit_code(
        ["generate", *TARGET_ARGS, "--payload", "Explain", "--config", str(tmp_path / "none.yaml")]
    )

    assert code == cli.EXIT_PERSISTENCE_FAILED


def test_generate_missing_payload_file(fake_session, config_file: Path, tmp_path: Path) -> None:
    """A missing payload file exits 2 without generating."""
    provider = FakeProvider("p1")
    fake_session(provider)

    code = _exit_code(
        [
            "generate",
            *TARGET_ARGS,
            "--payload-file",
            str(tmp_path / "missing.txt"),
            "--config",
            str(config_file),
        ]
    )

    assert code == cli.EXIT_INVALID_REQUEST
    assert provider.calls == []


def test_build_arg_parser_defaults() -> None:
    """Parser fills defaults for optional arguments."""
    args = cli.build_arg_parser().parse_args(["generate", *TARGET_ARGS, "--payload", "x"])

    assert args.kind == "text"
    assert args.provider is None
    assert args.slot is None
    assert not args.force


def test_cache_hit_output(capsys: pytest.CaptureFixture[str]) -> None:
    """print_result reports cache hits."""
    artifact = Artifact(
        target=TargetIdentity(subject_id="intro-ml", locale="en", variant="textbook"),
        checksum="a" * 64,
        source_tag="p1",
        storage_location="memory://x",
    )
    cli.print_result(
        GenerationResult(success=True, artifact=artifact, provider="p1", checksum="a" * 64, cache_hit=True)
    )

    out = capsys.readouterr().out
    assert "Cache hit" in out
    assert "memory://x" in out
