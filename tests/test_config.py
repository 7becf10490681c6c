from pathlib import Path

import pytest

from thoughtgraph.config import DEFAULT_DIMENSIONS, Settings
from thoughtgraph.main import build_parser


def test_settings_defaults() -> None:
    settings = Settings(_env_file=None)

    assert settings.max_concurrent_calls == 8
    assert settings.prune_threshold == 0.4
    assert settings.decomposition_dimensions == DEFAULT_DIMENSIONS
    assert settings.log_level == "INFO"


def test_settings_read_environment(monkeypatch) -> None:
    monkeypatch.setenv("PRUNE_THRESHOLD", "0.25")
    monkeypatch.setenv("MAX_CONCURRENT_CALLS", "2")
    monkeypatch.setenv("DECOMPOSITION_DIMENSIONS", '["Scope", "Data Needs"]')

    settings = Settings(_env_file=None)

    assert settings.prune_threshold == 0.25
    assert settings.max_concurrent_calls == 2
    assert settings.decomposition_dimensions == ["Scope", "Data Needs"]


def test_settings_reject_out_of_range_threshold(monkeypatch) -> None:
    monkeypatch.setenv("PRUNE_THRESHOLD", "1.5")
    with pytest.raises(ValueError):
        Settings(_env_file=None)


def test_cli_parser_defaults_and_options() -> None:
    args = build_parser().parse_args(["Why is the sky blue?"])
    assert args.backend == "ollama"
    assert args.through_stage == 9
    assert args.output is None

    args = build_parser().parse_args(
        ["q", "--backend", "http", "--endpoint", "http://svc", "--through-stage", "4", "--output", "g.json"]
    )
    assert args.backend == "http"
    assert args.endpoint == "http://svc"
    assert args.through_stage == 4
    assert args.output == Path("g.json")


def test_cli_rejects_unknown_stage() -> None:
    with pytest.raises(SystemExit):
        build_parser().parse_args(["q", "--through-stage", "12"])
