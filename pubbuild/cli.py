"""Command line interface for the Pub task pipeline."""
from __future__ import annotations

from argparse import ArgumentParser, Namespace
from pathlib import Path
from typing import Iterable, List
import os
import signal
import sys
import threading

from loguru import logger

from core.command_runner import CommandRunner, RecordingCommandRunner, SubprocessCommandRunner
from .config import configure_project, load_project_config
from .errors import ConfigurationError
from .executor import ExecutionReport, TaskExecutor, TaskStatus
from .extension import BuildContext, PipelineExtension


CONFIG_ENV_VAR = "PUBBUILD_CONFIG"


def configure_logging(verbose: bool = False, *, quiet: bool = False) -> None:
    """Send loguru output to stderr at the requested level."""

    level = "DEBUG" if verbose else ("WARNING" if quiet else "INFO")
    logger.remove()
    logger.add(
        sys.stderr,
        level=level,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
    )


def _make_runner(dry_run: bool) -> CommandRunner:
    return RecordingCommandRunner() if dry_run else SubprocessCommandRunner()


def _split_values(values: Iterable[str]) -> List[str]:
    parts: List[str] = []
    for value in values:
        if not value:
            continue
        parts.extend(part.strip() for part in value.split(",") if part.strip())
    return parts


def _config_files(args: Namespace) -> List[Path]:
    files: List[Path] = []
    env_value = os.environ.get(CONFIG_ENV_VAR)
    if env_value:
        files.extend(Path(entry) for entry in env_value.split(os.pathsep) if entry.strip())
    files.extend(Path(entry) for entry in getattr(args, "config_files", []) or [])
    return files


def _load_extension(args: Namespace) -> PipelineExtension:
    project_dir = Path(args.project_dir).resolve() if args.project_dir else Path.cwd()
    config = load_project_config(project_dir, _config_files(args))
    if args.build_dir:
        config.build_dir = args.build_dir
    if args.root_dir:
        config.root_dir = args.root_dir
    return configure_project(BuildContext(), config, host=args.host)


def _parse_arguments(argv: Iterable[str]) -> Namespace:
    parser = ArgumentParser(prog="pubbuild", description="Dart/Pub build and publish task runner")
    parser.add_argument("-P", "--project-dir", help="Project directory (defaults to the current directory)")
    parser.add_argument("--build-dir", help="Build directory (defaults to <project>/build)")
    parser.add_argument("--root-dir", help="Repository root holding the LICENSE file")
    parser.add_argument("--host", help="Override the detected host OS family (e.g. windows, linux)")
    parser.add_argument(
        "-c",
        "--config",
        dest="config_files",
        action="append",
        default=[],
        metavar="PATH",
        help="Additional configuration file merged over pubbuild.toml (repeatable)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("-q", "--quiet", action="store_true", help="Only log warnings and errors")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run tasks and their dependencies")
    run_parser.add_argument("tasks", nargs="+", metavar="TASK", help="Task names (comma-separated or repeated)")
    run_parser.add_argument("-n", "--dry-run", action="store_true", help="Print commands without executing them")
    run_parser.add_argument("-x", "--exclude-task", action="append", default=[], metavar="TASK", help="Disable a task for this run")
    run_parser.add_argument("-j", "--jobs", type=int, default=1, help="Run up to N independent tasks in parallel")
    run_parser.add_argument("--incremental", action="store_true", help="Skip tasks whose outputs are newer than their inputs")

    tasks_parser = subparsers.add_parser("tasks", help="List registered tasks")
    tasks_parser.add_argument("--all", action="store_true", help="Include lifecycle tasks")
    tasks_parser.add_argument("--dependencies", action="store_true", help="Show dependency edges")

    subparsers.add_parser("env", help="Show the resolved environment")

    return parser.parse_args(list(argv))


def main(argv: Iterable[str] | None = None) -> int:
    args = _parse_arguments(sys.argv[1:] if argv is None else argv)
    configure_logging(args.verbose, quiet=args.quiet)

    try:
        extension = _load_extension(args)
    except (ConfigurationError, ValueError, TypeError, OSError) as exc:
        print(f"Error: {exc}")
        return 2

    if args.command == "run":
        return _handle_run(args, extension)
    if args.command == "tasks":
        return _handle_tasks(args, extension)
    if args.command == "env":
        return _handle_env(extension)
    raise ValueError(f"Unknown command: {args.command}")


def _handle_run(args: Namespace, extension: PipelineExtension) -> int:
    requested = _split_values(args.tasks)
    runner = _make_runner(args.dry_run)
    executor = TaskExecutor(runner, max_workers=max(1, args.jobs), incremental=args.incremental, dry_run=args.dry_run)

    try:
        for name in _split_values(args.exclude_task):
            extension.tasks.configure(name, enabled=False)
        executor.plan(extension.registry, requested)
    except ConfigurationError as exc:
        print(f"Error: {exc}")
        return 2

    previous = signal.getsignal(signal.SIGINT)

    def _interrupt(signum, frame) -> None:  # pragma: no cover - signal delivery
        _cancel_in_background(executor)

    signal.signal(signal.SIGINT, _interrupt)
    try:
        report = executor.run(extension.registry, requested)
    finally:
        signal.signal(signal.SIGINT, previous)

    if args.dry_run and isinstance(runner, RecordingCommandRunner):
        for line in runner.iter_formatted(workspace=extension.project.project_dir):
            print(line)

    _print_report(report)
    return report.exit_code


def _cancel_in_background(executor: TaskExecutor) -> threading.Thread:
    """Cancel ``executor`` off the interrupted thread.

    The signal handler runs on the main thread, which may already hold the
    runner's process lock or a logging lock.
    """

    thread = threading.Thread(target=executor.cancel, name="pubbuild-cancel", daemon=True)
    thread.start()
    return thread


def _print_report(report: ExecutionReport) -> None:
    width = max((len(name) for name in report.order), default=0)
    for outcome in report.iter_outcomes():
        line = f"{outcome.name.ljust(width)}  {outcome.status.value.upper()}"
        if outcome.reason and outcome.status is not TaskStatus.FAILED:
            line = f"{line} ({outcome.reason})"
        print(line)
        if outcome.status is TaskStatus.FAILED and outcome.error is not None:
            print(f"  {outcome.error}")
    if report.cancelled:
        print("BUILD CANCELLED")
    else:
        print("BUILD SUCCESSFUL" if report.succeeded else "BUILD FAILED")


def _handle_tasks(args: Namespace, extension: PipelineExtension) -> int:
    registry = extension.registry
    tasks = [task for task in registry if args.all or task.group != "lifecycle"]
    if not tasks:
        print("No tasks registered")
        return 0

    groups: dict[str, list] = {}
    for task in tasks:
        groups.setdefault(task.group or "Other", []).append(task)

    for group in sorted(groups):
        print(f"{group} tasks")
        print("-" * (len(group) + 6))
        for task in sorted(groups[group], key=lambda item: item.name):
            status = "" if task.enabled else " [disabled]"
            print(f"{task.name} - {task.describe()}{status}")
            if args.dependencies:
                if task.depends_on:
                    print(f"    depends on: {', '.join(sorted(task.depends_on))}")
                if task.must_run_after:
                    print(f"    must run after: {', '.join(sorted(task.must_run_after))}")
        print()
    return 0


def _handle_env(extension: PipelineExtension) -> int:
    from pprint import pprint

    project = extension.project
    print(f"Project: {project.name} ({project.project_dir})")
    print(f"Host: {project.host.os_family}")
    pprint(extension.environment().to_mapping())
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
