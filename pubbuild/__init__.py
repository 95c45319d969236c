"""Dart/Pub build pipeline: task registry, executor and configuration scope."""

from .environment import Environment, EnvironmentOverrides, HostPlatform, resolve_environment
from .errors import (
    ConfigurationError,
    CyclicDependencyError,
    DuplicateTaskError,
    ExecutableNotFoundError,
    ExternalCommandError,
    FileSystemError,
    PipelineError,
    TaskActionError,
    UnknownTaskError,
)
from .executor import ExecutionReport, TaskExecutor, TaskStatus
from .extension import BuildContext, PipelineExtension, ProjectDescriptor
from .tasks import TaskDefinition, TaskRegistry
from .cli import main

__all__ = [
    "BuildContext",
    "ConfigurationError",
    "CyclicDependencyError",
    "DuplicateTaskError",
    "Environment",
    "EnvironmentOverrides",
    "ExecutableNotFoundError",
    "ExecutionReport",
    "ExternalCommandError",
    "FileSystemError",
    "HostPlatform",
    "PipelineError",
    "PipelineExtension",
    "ProjectDescriptor",
    "TaskActionError",
    "TaskDefinition",
    "TaskExecutor",
    "TaskRegistry",
    "TaskStatus",
    "UnknownTaskError",
    "main",
    "resolve_environment",
]
