"""Tests for the tasktree CLI commands."""

from __future__ import annotations

import argparse

from tasktree.config_loader import load_app_config
from tasktree.main import _cmd_doctor, _cmd_init, build_board


def test_init_writes_loadable_config(tmp_path, capsys):
    _cmd_init(argparse.Namespace(dir=str(tmp_path), name="demo"))
    config = load_app_config(tmp_path / "config" / "app.yaml")
    assert config.app_name == "demo"
    assert config.dashboard_port == 8420
    assert (tmp_path / ".env.example").exists()
    assert "Created" in capsys.readouterr().out


def test_init_keeps_existing_config(tmp_path, capsys):
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    (config_dir / "app.yaml").write_text("app_name: keep\n")
    _cmd_init(argparse.Namespace(dir=str(tmp_path), name=None))
    assert (config_dir / "app.yaml").read_text() == "app_name: keep\n"
    assert "already exists" in capsys.readouterr().out


def test_doctor_passes_for_valid_config(tmp_path, capsys):
    config_path = tmp_path / "app.yaml"
    config_path.write_text(
        f'app_name: demo\n'
        f'database:\n  path: "{tmp_path / "data" / "demo.db"}"\n'
        f'dashboard:\n  host: "127.0.0.1"\n  port: 8420\n'
    )
    assert _cmd_doctor(argparse.Namespace(config=str(config_path))) is True
    assert "All checks passed!" in capsys.readouterr().out
    assert (tmp_path / "data").is_dir()


def test_doctor_fails_for_invalid_config(tmp_path, capsys):
    config_path = tmp_path / "app.yaml"
    config_path.write_text("app_name: demo\n")
    assert _cmd_doctor(argparse.Namespace(config=str(config_path))) is False
    assert "[FAIL]" in capsys.readouterr().out


async def test_build_board_uses_hop_bounds(tmp_path):
    config_path = tmp_path / "app.yaml"
    config_path.write_text(
        f'app_name: demo\n'
        f'database:\n  path: "{tmp_path / "demo.db"}"\n'
        f'dashboard:\n  host: "127.0.0.1"\n  port: 8420\n'
        f'hierarchy:\n  max_task_hops: 12\n  max_subtask_hops: 34\n'
    )
    db, event_bus, board = await build_board(load_app_config(config_path))
    try:
        assert board.task_mutator.max_hops == 12
        assert board.subtask_mutator.max_hops == 34
        project = await board.create_project("Demo")
        assert (await board.get_project(project["id"]))["name"] == "Demo"
    finally:
        await db.close()
