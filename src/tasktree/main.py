"""TaskTree entry point: init, serve and doctor commands."""

from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path

from tasktree.board.database import Database
from tasktree.board.event_bus import EventBus
from tasktree.board.task_board import TaskBoard
from tasktree.config_loader import AppConfig, load_app_config

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = Path("config") / "app.yaml"


async def build_board(config: AppConfig) -> tuple[Database, EventBus, TaskBoard]:
    """Open the database and wire the task board for *config*."""
    db = Database(config.db_path)
    await db.initialize()
    event_bus = EventBus()
    board = TaskBoard(
        db,
        event_bus,
        max_task_hops=config.hierarchy.max_task_hops,
        max_subtask_hops=config.hierarchy.max_subtask_hops,
    )
    return db, event_bus, board


async def run_server(config: AppConfig, host: str | None = None, port: int | None = None):
    """Serve the dashboard API until interrupted."""
    import uvicorn
    from tasktree.dashboard.app import create_app

    db, event_bus, board = await build_board(config)
    app = create_app(task_board=board, event_bus=event_bus, config=config)

    server_config = uvicorn.Config(
        app,
        host=host or config.dashboard_host,
        port=port or config.dashboard_port,
        log_level="info",
    )
    server = uvicorn.Server(server_config)
    try:
        await server.serve()
    finally:
        await event_bus.drain()
        await db.close()
        logger.info("Database closed")


def _cmd_init(args):
    """Write a starter config/app.yaml."""
    project_dir = Path(args.dir).resolve()
    app_name = args.name or project_dir.name

    config_dir = project_dir / "config"
    config_dir.mkdir(parents=True, exist_ok=True)

    app_yaml = config_dir / "app.yaml"
    if app_yaml.exists():
        print(f"  config/app.yaml already exists in {project_dir}")
        return

    app_yaml.write_text(
        f'app_name: "{app_name}"\n\n'
        f'database:\n  path: "~/.tasktree/data/{app_name}.db"\n\n'
        f'dashboard:\n  host: "127.0.0.1"\n  port: 8420\n\n'
        f'hierarchy:\n'
        f'  max_task_hops: 100\n'
        f'  max_subtask_hops: 1000\n\n'
        f'# cors_origins: ["http://localhost:3000"]\n'
    )
    print(f"  Created {app_yaml.relative_to(project_dir)}")

    env_example = project_dir / ".env.example"
    if not env_example.exists():
        env_example.write_text(
            '# Optional\n'
            'LOG_LEVEL=INFO\n'
            'LOG_FORMAT=dev\n'
        )
        print("  Created .env.example")

    print("\nNext step: tasktree serve")


def _cmd_doctor(args) -> bool:
    """Check the configuration and database location."""
    import sys

    print("TaskTree Doctor\n")
    all_ok = True

    py_version = f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"
    if sys.version_info >= (3, 10):
        print(f"  [OK] Python {py_version}")
    else:
        print(f"  [FAIL] Python {py_version} (need 3.10+)")
        all_ok = False

    config_path = Path(args.config)
    config = None
    if not config_path.exists():
        print(f"  [WARN] {config_path} not found (run: tasktree init)")
    else:
        try:
            config = load_app_config(config_path)
            print(f"  [OK] {config_path} validates successfully")
        except (ValueError, TypeError) as e:
            print(f"  [FAIL] {config_path} invalid: {e}")
            all_ok = False

    if config is not None:
        try:
            db_dir = Path(config.db_path).expanduser().parent
            db_dir.mkdir(parents=True, exist_ok=True)
            print(f"  [OK] Database directory writable: {db_dir}")
        except OSError as e:
            print(f"  [FAIL] Database directory: {e}")
            all_ok = False

    print()
    if all_ok:
        print("All checks passed!")
    else:
        print("Some checks failed. Fix the issues above and run again.")
    return all_ok


def cli_main():
    # Load .env before anything else so env vars are available immediately
    try:
        from dotenv import load_dotenv
        load_dotenv()
    except ImportError:
        pass  # python-dotenv is optional

    from tasktree.logging_config import setup_logging
    setup_logging()

    parser = argparse.ArgumentParser(prog="tasktree", description="TaskTree task board server")
    sub = parser.add_subparsers(dest="command", help="Available commands")

    init_parser = sub.add_parser("init", help="Write a starter configuration")
    init_parser.add_argument("--name", help="Application name")
    init_parser.add_argument("--dir", default=".", help="Project directory")

    serve_parser = sub.add_parser("serve", help="Start the API server")
    serve_parser.add_argument("--config", default=str(DEFAULT_CONFIG), help="Path to app.yaml")
    serve_parser.add_argument("--host", default=None)
    serve_parser.add_argument("--port", type=int, default=None)
    serve_parser.add_argument("--log-file", default=None, help="Write logs to a rotating file")

    doctor_parser = sub.add_parser("doctor", help="Validate configuration")
    doctor_parser.add_argument("--config", default=str(DEFAULT_CONFIG), help="Path to app.yaml")

    args = parser.parse_args()

    if args.command == "init":
        _cmd_init(args)
    elif args.command == "doctor":
        if not _cmd_doctor(args):
            raise SystemExit(1)
    elif args.command == "serve":
        if args.log_file:
            from tasktree.logging_config import setup_file_logging
            setup_file_logging(Path(args.log_file))
        config = load_app_config(Path(args.config))
        asyncio.run(run_server(config, host=args.host, port=args.port))
    else:
        parser.print_help()


if __name__ == "__main__":
    cli_main()
