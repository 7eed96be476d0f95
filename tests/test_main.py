"""Tests for the command line entry point."""
import logging
from pathlib import Path
from unittest.mock import patch

import pytest

from memo_graph import main as main_module
from memo_graph.config import config
from memo_graph.exceptions import ConfigurationError
from memo_graph.observability import metrics


@pytest.fixture
def restored_config(monkeypatch):
    """Let main() mutate the global config; monkeypatch restores it."""
    for field in ("database_path", "similarity_threshold", "similarity_limit", "log_level"):
        monkeypatch.setattr(config, field, getattr(config, field))
    return config


@pytest.fixture
def startup():
    """Patch out logging, atexit, the database and the server."""
    with patch.object(main_module, "configure_logging") as configure_logging, \
            patch.object(main_module, "atexit"), \
            patch.object(main_module, "init_db") as init_db, \
            patch.object(main_module, "MemoGraphMcpServer") as server_cls:
        yield {
            "configure_logging": configure_logging,
            "init_db": init_db,
            "server_cls": server_cls,
        }


def test_parse_args():
    args = main_module.parse_args(
        ["--database-path", "/tmp/g.db", "--threshold", "0.7", "--limit", "4"]
    )
    assert args.database_path == "/tmp/g.db"
    assert args.threshold == 0.7
    assert args.limit == 4


def test_update_config(restored_config):
    args = main_module.parse_args(
        ["--database-path", "/tmp/g.db", "--threshold", "0.7", "--log-level", "DEBUG"]
    )
    main_module.update_config(args)
    assert restored_config.database_path == Path("/tmp/g.db")
    assert restored_config.similarity_threshold == 0.7
    assert restored_config.log_level == "DEBUG"


def test_main_runs_server(restored_config, startup, tmp_path):
    main_module.main(["--database-path", str(tmp_path / "g.db")])

    startup["init_db"].assert_called_once()
    engine = startup["init_db"].return_value
    startup["server_cls"].assert_called_once_with(engine=engine)
    startup["server_cls"].return_value.run.assert_called_once()


def test_invalid_threshold_exits(restored_config, startup, tmp_path):
    with pytest.raises(SystemExit) as exc_info:
        main_module.main(
            ["--database-path", str(tmp_path / "g.db"), "--threshold", "1.5"]
        )
    assert exc_info.value.code == 1
    startup["init_db"].assert_not_called()


def test_startup_check_failure_exits(restored_config, startup, tmp_path):
    startup["server_cls"].side_effect = ConfigurationError("dimension mismatch")
    with pytest.raises(SystemExit) as exc_info:
        main_module.main(["--database-path", str(tmp_path / "g.db")])
    assert exc_info.value.code == 1


def test_file_logging_failure_falls_back(restored_config, startup, tmp_path):
    startup["configure_logging"].side_effect = OSError("read-only")
    with patch.object(main_module.logging, "basicConfig") as basic_config:
        main_module.main(["--database-path", str(tmp_path / "g.db")])
    basic_config.assert_called_once()
    startup["server_cls"].return_value.run.assert_called_once()


def test_metrics_saved_on_exit(caplog):
    caplog.set_level(logging.INFO, logger="memo_graph.main")
    main_module._save_metrics_on_exit()
    path = metrics.get_metrics_file()
    assert path.exists()
    assert str(path) in caplog.text
