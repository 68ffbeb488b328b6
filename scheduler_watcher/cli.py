"""Command line interface for scheduler-watcher."""
from __future__ import annotations

import argparse
import json
import logging
import sys
import threading
from pathlib import Path

from .config import AppConfig, ConfigError, load_config, parse_interval
from .directory_watcher import ChangeSink, DirectoryWatcher, logging_sink
from .logger import configure_logging, next_log_path
from .scheduler import Scheduler, schedule_task_creation
from .store import PersistenceError, TaskStore
from .watcher.types import ChangeEvent, WatchError

# without --log or logPath these write to ~/.scheduler_watcher/logs
_FILE_LOGGED_COMMANDS = {"schedule", "run"}


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "handler"):
        parser.print_help()
        return 1
    try:
        config = _resolve_config(args)
    except ConfigError as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return 2
    log_path = config.log_path
    if log_path is None and args.command in _FILE_LOGGED_COMMANDS:
        log_path = next_log_path(args.command)
    configure_logging(log_path, level=logging.DEBUG if args.verbose else logging.INFO)
    return args.handler(args, config)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="scheduler-watcher",
        description="Periodic task recorder and directory watcher",
    )
    parser.add_argument("--config", type=Path, help="JSON configuration file")
    parser.add_argument(
        "--log",
        type=Path,
        help="Write JSON logs to this file (default: stderr, or a timestamped file for schedule and run)",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command")

    # watch command
    watch_parser = subparsers.add_parser("watch", help="Report changes in a directory")
    _add_watch_arguments(watch_parser)
    watch_parser.add_argument("--duration", type=float, help="Stop after this many seconds")
    watch_parser.set_defaults(handler=_handle_watch)

    # schedule command
    schedule_parser = subparsers.add_parser("schedule", help="Record a task on a fixed interval")
    _add_schedule_arguments(schedule_parser)
    schedule_parser.add_argument("--duration", type=float, help="Stop after this many seconds")
    schedule_parser.set_defaults(handler=_handle_schedule)

    # run command
    run_parser = subparsers.add_parser("run", help="Run the scheduler and the watcher together")
    _add_watch_arguments(run_parser)
    _add_schedule_arguments(run_parser)
    run_parser.add_argument("--duration", type=float, help="Stop after this many seconds")
    run_parser.set_defaults(handler=_handle_run)

    # tasks commands
    tasks_parser = subparsers.add_parser("tasks", help="Inspect recorded tasks")
    tasks_sub = tasks_parser.add_subparsers(dest="tasks_command")

    tasks_list = tasks_sub.add_parser("list", help="List recorded tasks")
    tasks_list.add_argument("--db", type=Path, help="Path to the task SQLite database")
    tasks_list.add_argument("--format", choices=["text", "json"], default="text")
    tasks_list.set_defaults(handler=_handle_tasks_list)

    # serve command
    serve_parser = subparsers.add_parser("serve", help="Serve the task list over HTTP")
    _add_schedule_arguments(serve_parser)
    serve_parser.add_argument("--host")
    serve_parser.add_argument("--port", type=int)
    serve_parser.add_argument(
        "--no-scheduler", action="store_true", help="Only serve the list; do not record tasks"
    )
    serve_parser.set_defaults(handler=_handle_serve)

    return parser


def _add_watch_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("directory", nargs="?", type=Path, help="Directory to watch")
    parser.add_argument("--poll-interval", type=float, help="Seconds to wait for events per cycle")


def _add_schedule_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--interval", help="Firing interval, e.g. 10s, 500ms, 5m")
    parser.add_argument("--identity", help="Job identity used for deduplication")
    parser.add_argument("--db", type=Path, help="Path to the task SQLite database")


def _resolve_config(args: argparse.Namespace) -> AppConfig:
    config = load_config(args.config)
    if args.log is not None:
        config.log_path = args.log
    if getattr(args, "directory", None) is not None:
        config.watch.watch_dir = args.directory
    if getattr(args, "poll_interval", None) is not None:
        if args.poll_interval < 0:
            raise ConfigError("--poll-interval must not be negative")
        config.watch.poll_interval = args.poll_interval
    if getattr(args, "interval", None) is not None:
        config.schedule.interval = parse_interval(args.interval)
    if getattr(args, "identity", None):
        config.schedule.identity = args.identity
    if getattr(args, "db", None) is not None:
        config.store.db_path = args.db
    if getattr(args, "host", None):
        config.api.host = args.host
    if getattr(args, "port", None) is not None:
        config.api.port = args.port
    return config


def _print_sink(logger: logging.Logger) -> ChangeSink:
    log = logging_sink(logger)

    def report(event: ChangeEvent) -> None:
        print(f"Event kind = {event.kind.value}, Event.context = {event.path}", flush=True)
        log(event)

    return report


def _wait(duration: float | None) -> None:
    stop = threading.Event()
    try:
        if duration is None:
            while not stop.wait(1.0):
                pass
        else:
            stop.wait(duration)
    except KeyboardInterrupt:
        pass


def _build_watcher(config: AppConfig) -> DirectoryWatcher | None:
    if config.watch.watch_dir is None:
        print("No watch directory given (argument, watchDir or SCHEDULER_WATCHER_WATCH_DIR)", file=sys.stderr)
        return None
    watcher = DirectoryWatcher(config.watch.watch_dir, poll_interval=config.watch.poll_interval)
    watcher.sink = _print_sink(watcher.logger)
    return watcher


def _handle_watch(args: argparse.Namespace, config: AppConfig) -> int:
    watcher = _build_watcher(config)
    if watcher is None:
        return 2
    try:
        if args.duration is None:
            watcher.run()
        else:
            watcher.start()
            _wait(args.duration)
    except WatchError as exc:
        print(f"Watch failed: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        pass
    finally:
        watcher.stop()
    if watcher.error is not None:
        print(f"Watch failed: {watcher.error}", file=sys.stderr)
        return 1
    return 0


def _handle_schedule(args: argparse.Namespace, config: AppConfig) -> int:
    try:
        store = TaskStore(config.store.db_path)
    except PersistenceError as exc:
        print(f"Cannot open task store: {exc}", file=sys.stderr)
        return 1
    scheduler = Scheduler(misfire_grace_time=config.schedule.misfire_grace_time)
    try:
        schedule_task_creation(scheduler, store, config.schedule)
        scheduler.start()
        print(
            f"Recording a task every {config.schedule.interval.total_seconds():g}s "
            f"as {config.schedule.identity!r} in {store.db_path}",
            flush=True,
        )
        _wait(args.duration)
    finally:
        scheduler.shutdown()
        recorded = store.count()
        store.close()
    print(f"{recorded} task(s) recorded in total.")
    return 0


def _handle_run(args: argparse.Namespace, config: AppConfig) -> int:
    watcher = _build_watcher(config)
    if watcher is None:
        return 2
    try:
        watcher.start()
    except WatchError as exc:
        print(f"Watch failed: {exc}", file=sys.stderr)
        watcher.stop()
        return 1

    try:
        store = TaskStore(config.store.db_path)
    except PersistenceError as exc:
        print(f"Cannot open task store: {exc}", file=sys.stderr)
        watcher.stop()
        return 1
    scheduler = Scheduler(misfire_grace_time=config.schedule.misfire_grace_time)
    try:
        schedule_task_creation(scheduler, store, config.schedule)
        scheduler.start()
        _wait(args.duration)
    finally:
        scheduler.shutdown()
        watcher.stop()
        store.close()

    if watcher.error is not None:
        print(f"Watch failed: {watcher.error}", file=sys.stderr)
        return 1
    return 0


def _handle_tasks_list(args: argparse.Namespace, config: AppConfig) -> int:
    try:
        with TaskStore(config.store.db_path) as store:
            tasks = store.list_all()
    except PersistenceError as exc:
        print(f"Cannot read tasks: {exc}", file=sys.stderr)
        return 1

    if args.format == "json":
        print(json.dumps([task.to_dict() for task in tasks], indent=2))
        return 0
    if not tasks:
        print("No tasks recorded.")
        return 0
    for task in tasks:
        print(f"{task.id}\t{task.created_at.isoformat()}")
    return 0


def _handle_serve(args: argparse.Namespace, config: AppConfig) -> int:
    import uvicorn

    from .api import create_app

    try:
        store = TaskStore(config.store.db_path)
    except PersistenceError as exc:
        print(f"Cannot open task store: {exc}", file=sys.stderr)
        return 1
    scheduler = None
    if not args.no_scheduler:
        scheduler = Scheduler(misfire_grace_time=config.schedule.misfire_grace_time)
        schedule_task_creation(scheduler, store, config.schedule)
    try:
        uvicorn.run(create_app(store, scheduler=scheduler), host=config.api.host, port=config.api.port)
    finally:
        store.close()
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
