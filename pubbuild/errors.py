"""Error types raised while configuring and running the Pub task pipeline."""
from __future__ import annotations

from pathlib import Path
from typing import Sequence

from core.command_runner import CommandResult


class PipelineError(Exception):
    """Base class for every pipeline failure."""


class ConfigurationError(PipelineError):
    """Raised before execution when the task graph is not usable."""


class DuplicateTaskError(ConfigurationError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Task '{name}' is already registered")
        self.name = name


class UnknownTaskError(ConfigurationError):
    def __init__(self, name: str, *, referenced_by: str | None = None, available: Sequence[str] = ()) -> None:
        message = f"Task '{name}' not found"
        if referenced_by:
            message = f"Task '{name}' referenced by '{referenced_by}' not found"
        if available:
            message = f"{message}. Available tasks: {', '.join(sorted(available))}"
        super().__init__(message)
        self.name = name
        self.referenced_by = referenced_by


class CyclicDependencyError(ConfigurationError):
    def __init__(self, cycle: Sequence[str]) -> None:
        super().__init__(f"Circular dependency detected: {' -> '.join(cycle)}")
        self.cycle = list(cycle)


class FrozenRegistryError(ConfigurationError):
    def __init__(self, operation: str) -> None:
        super().__init__(f"Cannot {operation}: the task registry is frozen for execution")
        self.operation = operation


class ExternalCommandError(PipelineError):
    """A task's external command exited with a non-zero status."""

    def __init__(self, task: str, result: CommandResult) -> None:
        command = " ".join(result.command)
        message = f"Task '{task}' failed: '{command}' exited with code {result.returncode}"
        if result.terminated:
            message = f"{message} (terminated)"
        super().__init__(message)
        self.task = task
        self.result = result

    @property
    def exit_code(self) -> int:
        return self.result.returncode

    @property
    def stdout(self) -> str:
        return self.result.stdout

    @property
    def stderr(self) -> str:
        return self.result.stderr


class ExecutableNotFoundError(PipelineError):
    """A task's external command could not be started."""

    def __init__(self, task: str, executable: str) -> None:
        super().__init__(f"Task '{task}' failed: executable '{executable}' not found")
        self.task = task
        self.executable = executable


class FileSystemError(PipelineError):
    """A file action (delete, stage copy) could not complete."""

    def __init__(self, task: str, path: Path | str, reason: str) -> None:
        super().__init__(f"Task '{task}' failed on '{path}': {reason}")
        self.task = task
        self.path = Path(path)
        self.reason = reason


class TaskActionError(PipelineError):
    """A task action raised an unexpected exception."""

    def __init__(self, task: str, cause: BaseException) -> None:
        super().__init__(f"Task '{task}' failed: {type(cause).__name__}: {cause}")
        self.task = task
        self.cause = cause


__all__ = [
    "ConfigurationError",
    "CyclicDependencyError",
    "DuplicateTaskError",
    "ExecutableNotFoundError",
    "ExternalCommandError",
    "FileSystemError",
    "FrozenRegistryError",
    "PipelineError",
    "TaskActionError",
    "UnknownTaskError",
]
