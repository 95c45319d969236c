"""Per-project configuration scope holding an environment and a task registry."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping

from .environment import ConfigurableEnvironment, Environment, EnvironmentOverrides, HostPlatform, default_environment
from .pipeline import (
    register_build_tasks,
    register_docs_task,
    register_publish_tasks,
    register_test_suite,
)
from .tasks import TaskDefinition, TaskRegistry


@dataclass(frozen=True, slots=True)
class ProjectDescriptor:
    """Identity of a project; equal descriptors share one extension."""

    name: str
    project_dir: Path
    build_dir: Path
    root_dir: Path
    host: HostPlatform

    @classmethod
    def create(
        cls,
        name: str,
        project_dir: Path | str,
        *,
        build_dir: Path | str | None = None,
        root_dir: Path | str | None = None,
        host: HostPlatform | str | None = None,
    ) -> "ProjectDescriptor":
        project_path = Path(project_dir).resolve()
        build_path = Path(build_dir) if build_dir is not None else project_path / "build"
        if not build_path.is_absolute():
            build_path = project_path / build_path
        root_path = Path(root_dir) if root_dir is not None else project_path
        if not root_path.is_absolute():
            root_path = project_path / root_path
        return cls(
            name=name,
            project_dir=project_path,
            build_dir=build_path.resolve(),
            root_dir=root_path.resolve(),
            host=HostPlatform.of(host),
        )


class TaskScope:
    """Task registration facade bound to one project."""

    def __init__(self, extension: "PipelineExtension") -> None:
        self._extension = extension

    @property
    def registry(self) -> TaskRegistry:
        return self._extension.registry

    def register(self, name: str, definition: TaskDefinition | None = None, **values: Any) -> TaskDefinition:
        return self.registry.register(name, definition, **values)

    def configure(
        self,
        name: str,
        configuration: Callable[[TaskDefinition], None] | None = None,
        **values: Any,
    ) -> TaskDefinition:
        return self.registry.configure(name, configuration, **values)

    def depends_on(self, task: str, *dependencies: str) -> None:
        self.registry.depends_on(task, *dependencies)

    def must_run_after(self, task: str, *others: str) -> None:
        self.registry.must_run_after(task, *others)

    def build(self, configuration: Callable[["TaskScope"], None] | None = None) -> List[TaskDefinition]:
        extension = self._extension
        tasks = register_build_tasks(self.registry, extension.configurable_environment, extension.project.project_dir)
        if configuration is not None:
            configuration(self)
        return tasks

    def publish(self, configuration: Callable[["TaskScope"], None] | None = None) -> List[TaskDefinition]:
        extension = self._extension
        project = extension.project
        tasks = register_publish_tasks(
            self.registry,
            extension.configurable_environment,
            project.project_dir,
            project.root_dir,
        )
        if configuration is not None:
            configuration(self)
        return tasks

    def docs(self, output_dir: Path | str | None = None) -> TaskDefinition:
        project = self._extension.project
        target = Path(output_dir) if output_dir is not None else project.build_dir / "docs" / "dart"
        if not target.is_absolute():
            target = project.project_dir / target
        return register_docs_task(self.registry, self._extension.configurable_environment, project.project_dir, target)

    def test_suite(
        self,
        name: str,
        test_dir: str,
        *,
        platform: str | None = None,
        depends_on: Iterable[str] = (),
    ) -> TaskDefinition:
        return register_test_suite(
            self.registry,
            self._extension.configurable_environment,
            self._extension.project.project_dir,
            name,
            test_dir,
            platform=platform,
            depends_on=depends_on,
        )


class PipelineExtension:
    """Environment and task registry of a single project."""

    def __init__(self, project: ProjectDescriptor) -> None:
        self.project = project
        self.configurable_environment = ConfigurableEnvironment(
            default_environment(project.host, project.project_dir, project.build_dir, project.name)
        )
        self.registry = TaskRegistry()
        self.tasks = TaskScope(self)

    def environment(
        self,
        overrides: EnvironmentOverrides | Mapping[str, Any] | None = None,
        **values: Any,
    ) -> Environment:
        """Override environment defaults; call before registering tasks."""
        if overrides is None and not values:
            return self.configurable_environment.current
        return self.configurable_environment.override(overrides, **values)


class BuildContext:
    """Explicit holder of the extensions of every configured project."""

    def __init__(self) -> None:
        self._extensions: Dict[ProjectDescriptor, PipelineExtension] = {}

    def __contains__(self, project: object) -> bool:
        return project in self._extensions

    def with_scope(
        self,
        project: ProjectDescriptor,
        body: Callable[[PipelineExtension], None] | None = None,
    ) -> PipelineExtension:
        extension = self._extensions.get(project)
        if extension is None:
            extension = PipelineExtension(project)
            self._extensions[project] = extension
        if body is not None:
            body(extension)
        return extension

    def projects(self) -> List[ProjectDescriptor]:
        return list(self._extensions)


__all__ = ["BuildContext", "PipelineExtension", "ProjectDescriptor", "TaskScope"]
