"""Project configuration files and the Pub manifest."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping

from core.config_loader import find_config_file, load_config_file, merge_mappings, normalize_string_list
from .environment import EnvironmentOverrides, HostPlatform
from .extension import BuildContext, PipelineExtension, ProjectDescriptor


CONFIG_STEM = "pubbuild"
MANIFEST_NAME = "pubspec.yaml"

_TASK_KEYS = frozenset({"enabled", "description", "depends_on", "must_run_after"})


@dataclass(slots=True)
class TestSuiteConfig:
    __test__ = False

    name: str
    directory: str
    platform: str | None = None
    depends_on: List[str] = field(default_factory=list)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "TestSuiteConfig":
        name = data.get("name")
        directory = data.get("directory")
        if not name:
            raise ValueError("test_suites entries require a 'name'")
        if not directory:
            raise ValueError(f"test suite '{name}' requires a 'directory'")
        platform = data.get("platform")
        return cls(
            name=str(name),
            directory=str(directory),
            platform=str(platform) if platform else None,
            depends_on=normalize_string_list(data.get("depends_on"), field_name="depends_on"),
        )


@dataclass(slots=True)
class DocsConfig:
    enabled: bool = False
    output: str | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "DocsConfig":
        output = data.get("output")
        return cls(enabled=bool(data.get("enabled", True)), output=str(output) if output else None)


@dataclass(slots=True)
class ProjectConfig:
    project_dir: Path
    name: str
    build_dir: str | None = None
    root_dir: str | None = None
    build: bool = True
    publish: bool = True
    environment: EnvironmentOverrides = field(default_factory=EnvironmentOverrides)
    tasks: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    test_suites: List[TestSuiteConfig] = field(default_factory=list)
    docs: DocsConfig = field(default_factory=DocsConfig)

    @classmethod
    def from_mapping(cls, project_dir: Path, data: Mapping[str, Any]) -> "ProjectConfig":
        project_section = data.get("project", {})
        if not isinstance(project_section, Mapping):
            raise TypeError("'project' must be a table")

        name = project_section.get("name") or read_manifest_name(project_dir / MANIFEST_NAME) or project_dir.name

        environment_section = data.get("environment", {})
        if not isinstance(environment_section, Mapping):
            raise TypeError("'environment' must be a table")

        tasks_section = data.get("tasks", {})
        if not isinstance(tasks_section, Mapping):
            raise TypeError("'tasks' must be a table")
        tasks: Dict[str, Dict[str, Any]] = {}
        for task_name, settings in tasks_section.items():
            if not isinstance(settings, Mapping):
                raise TypeError(f"tasks.{task_name} must be a table")
            unknown = sorted(set(settings) - _TASK_KEYS)
            if unknown:
                raise ValueError(f"tasks.{task_name}: unknown key(s) {', '.join(unknown)}")
            tasks[str(task_name)] = dict(settings)

        suites_section = data.get("test_suites", [])
        if not isinstance(suites_section, list):
            raise TypeError("'test_suites' must be an array of tables")

        docs_section = data.get("docs")
        docs = DocsConfig.from_mapping(docs_section) if isinstance(docs_section, Mapping) else DocsConfig()

        return cls(
            project_dir=project_dir,
            name=str(name),
            build_dir=_optional_str(project_section.get("build_dir")),
            root_dir=_optional_str(project_section.get("root_dir")),
            build=bool(project_section.get("build", True)),
            publish=bool(project_section.get("publish", True)),
            environment=EnvironmentOverrides.from_mapping(environment_section),
            tasks=tasks,
            test_suites=[TestSuiteConfig.from_mapping(entry) for entry in suites_section],
            docs=docs,
        )

    def descriptor(self, host: HostPlatform | str | None = None) -> ProjectDescriptor:
        return ProjectDescriptor.create(
            self.name,
            self.project_dir,
            build_dir=self.build_dir,
            root_dir=self.root_dir,
            host=host,
        )


def _optional_str(value: Any) -> str | None:
    return str(value) if value else None


def read_manifest_name(path: Path) -> str | None:
    """Return the package ``name`` declared in a ``pubspec.yaml`` file."""

    if not path.is_file():
        return None
    data = load_config_file(path)
    name = data.get("name")
    return str(name) if name else None


def load_project_config(project_dir: Path, extra_files: Iterable[Path] = ()) -> ProjectConfig:
    """Load ``pubbuild.{toml,yaml,yml,json}`` and merge ``extra_files`` over it."""

    project_dir = Path(project_dir).resolve()
    data: Dict[str, Any] = {}
    primary = find_config_file(project_dir, CONFIG_STEM, suffixes=(".toml", ".yaml", ".yml", ".json"))
    if primary is not None:
        data = merge_mappings(data, load_config_file(primary))
    for extra in extra_files:
        path = Path(extra)
        if not path.is_absolute():
            path = project_dir / path
        if not path.is_file():
            raise FileNotFoundError(f"Configuration file '{path}' does not exist")
        data = merge_mappings(data, load_config_file(path))
    return ProjectConfig.from_mapping(project_dir, data)


def configure_project(
    context: BuildContext,
    config: ProjectConfig,
    *,
    host: HostPlatform | str | None = None,
) -> PipelineExtension:
    """Populate the extension for ``config``: environment first, then tasks."""

    def body(extension: PipelineExtension) -> None:
        extension.environment(config.environment)
        if config.build:
            extension.tasks.build()
        if config.publish:
            extension.tasks.publish()
        if config.docs.enabled:
            extension.tasks.docs(config.docs.output)
        for suite in config.test_suites:
            extension.tasks.test_suite(
                suite.name,
                suite.directory,
                platform=suite.platform,
                depends_on=suite.depends_on,
            )
        for task_name, settings in config.tasks.items():
            _apply_task_settings(extension, task_name, settings)

    return context.with_scope(config.descriptor(host), body)


def _apply_task_settings(extension: PipelineExtension, task_name: str, settings: Mapping[str, Any]) -> None:
    values: Dict[str, Any] = {}
    if "enabled" in settings:
        values["enabled"] = bool(settings["enabled"])
    if "description" in settings:
        values["description"] = str(settings["description"])
    if values:
        extension.tasks.configure(task_name, **values)
    depends_on = normalize_string_list(settings.get("depends_on"), field_name=f"tasks.{task_name}.depends_on")
    if depends_on:
        extension.tasks.depends_on(task_name, *depends_on)
    must_run_after = normalize_string_list(settings.get("must_run_after"), field_name=f"tasks.{task_name}.must_run_after")
    if must_run_after:
        extension.tasks.must_run_after(task_name, *must_run_after)


__all__ = [
    "CONFIG_STEM",
    "DocsConfig",
    "MANIFEST_NAME",
    "ProjectConfig",
    "TestSuiteConfig",
    "configure_project",
    "load_project_config",
    "read_manifest_name",
]
