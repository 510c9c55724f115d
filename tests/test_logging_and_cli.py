from __future__ import annotations

import logging
from pathlib import Path

import pytest

import version
from cosmos_server import cli
from cosmos_server.logging_utils import (
    LOG_DIR_ENV_VAR,
    ROOT_LOGGER_NAME,
    ReleaseLogLevelFilter,
    configure_logging,
    resolve_log_level,
    resolve_logs_dir,
)


@pytest.fixture
def restore_cosmos_logger():
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    handlers = list(logger.handlers)
    level = logger.level
    propagate = logger.propagate
    yield logger
    for handler in list(logger.handlers):
        if handler not in handlers:
            logger.removeHandler(handler)
            handler.close()
    logger.setLevel(level)
    logger.propagate = propagate


def test_release_filter_promotes_debug_records():
    record = logging.LogRecord("Cosmos.Test", logging.DEBUG, __file__, 1, "hello", None, None)
    assert ReleaseLogLevelFilter(release_mode=True).filter(record) is True
    assert record.levelno == logging.INFO
    assert record.levelname == "INFO"


def test_debug_filter_leaves_records_alone():
    record = logging.LogRecord("Cosmos.Test", logging.DEBUG, __file__, 1, "hello", None, None)
    ReleaseLogLevelFilter(release_mode=False).filter(record)
    assert record.levelno == logging.DEBUG


def test_resolve_log_level():
    assert resolve_log_level(True) == logging.DEBUG
    assert resolve_log_level(False) == logging.INFO


def test_logs_dir_honours_env_override(tmp_path, monkeypatch):
    monkeypatch.setenv(LOG_DIR_ENV_VAR, str(tmp_path / "custom"))
    target = resolve_logs_dir(tmp_path)
    assert target == tmp_path / "custom" / "CosmosExplorer"
    assert target.is_dir()


def test_configure_logging_writes_file_and_replaces_handlers(tmp_path, restore_cosmos_logger):
    logger = configure_logging(debug=True, log_dir=tmp_path, retention=3, console=False)
    assert logger is restore_cosmos_logger
    assert logger.level == logging.DEBUG
    logging.getLogger("Cosmos.Server.Test").info("store ready")
    managed = [handler for handler in logger.handlers if getattr(handler, "_cosmos_managed", False)]
    assert len(managed) == 1
    managed[0].flush()
    assert "store ready" in (tmp_path / "cosmos-server.log").read_text(encoding="utf-8")

    configure_logging(debug=False, log_dir=tmp_path, console=False)
    managed = [handler for handler in logger.handlers if getattr(handler, "_cosmos_managed", False)]
    assert len(managed) == 1


@pytest.mark.parametrize(
    "env_value, version_string, expected",
    [
        (None, "0.4.0", False),
        (None, "0.5.0-dev", True),
        ("1", "0.4.0", True),
        ("off", "0.5.0-dev", False),
    ],
)
def test_is_dev_build(monkeypatch, env_value, version_string, expected):
    if env_value is None:
        monkeypatch.delenv(version.DEV_MODE_ENV_VAR, raising=False)
    else:
        monkeypatch.setenv(version.DEV_MODE_ENV_VAR, env_value)
    assert version.is_dev_build(version_string) is expected


def test_cli_parser_defaults():
    args = cli.build_parser().parse_args([])
    assert args.host == "127.0.0.1"
    assert args.port == 8765
    assert args.data_dir is None
    assert args.config == Path("cosmos_settings.json")
    assert args.debug is False


def test_cli_main_wires_settings_into_app(tmp_path, monkeypatch):
    captured = {}

    class _App:
        def run(self, **kwargs):
            captured["run"] = kwargs

    def fake_create_app(settings):
        captured["settings"] = settings
        return _App()

    monkeypatch.setattr(cli, "create_app", fake_create_app)
    monkeypatch.setattr(cli, "configure_logging", lambda **kwargs: captured.setdefault("logging", kwargs))
    exit_code = cli.main(
        [
            "--data-dir",
            str(tmp_path / "data"),
            "--config",
            str(tmp_path / "missing.json"),
            "--port",
            "9000",
            "--debug",
        ]
    )
    assert exit_code == 0
    assert captured["settings"].data_dir == tmp_path / "data"
    assert captured["settings"].debug is True
    assert captured["logging"]["debug"] is True
    assert captured["run"]["port"] == 9000
    assert captured["run"]["use_reloader"] is False
