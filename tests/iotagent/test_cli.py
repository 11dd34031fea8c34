"""Tests for the command-line entry point."""

from pathlib import Path
from unittest.mock import patch

from iotagent.__main__ import main, parse_args


def test_defaults(monkeypatch):
    monkeypatch.delenv("IOTAGENT_PORT", raising=False)
    args = parse_args([])

    assert args.port == 80
    assert args.metrics_port == 8000
    assert args.config is None
    assert args.no_retry is False
    assert args.log_level == "INFO"


def test_port_from_environment(monkeypatch):
    monkeypatch.setenv("IOTAGENT_PORT", "8080")
    assert parse_args([]).port == 8080


def test_options():
    args = parse_args(
        ["--config", "local.yaml", "--port", "9000", "--metrics-port", "0", "--no-retry", "--log-to-stdout"]
    )

    assert args.config == Path("local.yaml")
    assert args.port == 9000
    assert args.metrics_port == 0
    assert args.no_retry is True
    assert args.log_to_stdout is True


def test_missing_config_file_exits_nonzero(tmp_path):
    with patch("iotagent.__main__.setup_logging"):
        code = main(["--config", str(tmp_path / "missing.yaml"), "--metrics-port", "0"])
    assert code == 1
