"""Resolution of the Pub environment: executables and well-known paths."""
from __future__ import annotations

from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping
import platform

from loguru import logger


WINDOWS_FAMILY = "windows"


@dataclass(frozen=True, slots=True)
class HostPlatform:
    os_family: str

    @classmethod
    def detect(cls) -> "HostPlatform":
        return cls(os_family=platform.system().lower())

    @classmethod
    def of(cls, value: "HostPlatform | str | None") -> "HostPlatform":
        if value is None:
            return cls.detect()
        if isinstance(value, HostPlatform):
            return value
        return cls(os_family=str(value).strip().lower())

    @property
    def is_windows(self) -> bool:
        return self.os_family.startswith("win") or self.os_family.startswith("cygwin")

    def executable(self, name: str) -> str:
        """Return the name of a batch-wrapped tool for this platform."""
        return f"{name}.bat" if self.is_windows else name


@dataclass(frozen=True, slots=True)
class Environment:
    """Paths and executables the Pub tasks operate on."""

    pub_executable: str
    pubspec: Path
    package_index: Path
    package_config: Path
    publication_directory: Path
    docs_executable: str = "dartdoc"

    @property
    def lockfiles(self) -> tuple[Path, Path]:
        return (self.package_index, self.package_config)

    def to_mapping(self) -> Dict[str, str]:
        return {field.name: str(getattr(self, field.name)) for field in fields(self)}


_PATH_FIELDS = frozenset({"pubspec", "package_index", "package_config", "publication_directory"})


@dataclass(slots=True)
class EnvironmentOverrides:
    """Partial environment; ``None`` fields keep the current value."""

    pub_executable: str | None = None
    pubspec: Path | str | None = None
    package_index: Path | str | None = None
    package_config: Path | str | None = None
    publication_directory: Path | str | None = None
    docs_executable: str | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "EnvironmentOverrides":
        known = {field.name for field in fields(cls)}
        unknown = sorted(str(key) for key in data if key not in known)
        if unknown:
            raise ValueError(f"Unknown environment field(s): {', '.join(unknown)}")
        values = {key: str(value) for key, value in data.items() if value is not None}
        return cls(**values)

    def changes(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        for field in fields(self):
            value = getattr(self, field.name)
            if value is None:
                continue
            result[field.name] = Path(value) if field.name in _PATH_FIELDS else str(value)
        return result

    def apply_to(self, environment: Environment) -> Environment:
        changes = self.changes()
        return replace(environment, **changes) if changes else environment


def default_environment(
    host: HostPlatform | str | None,
    project_dir: Path,
    build_dir: Path,
    project_name: str,
) -> Environment:
    host_platform = HostPlatform.of(host)
    return Environment(
        pub_executable=host_platform.executable("pub"),
        pubspec=project_dir / "pubspec.yaml",
        package_index=project_dir / ".packages",
        package_config=project_dir / ".dart_tool" / "package_config.json",
        publication_directory=build_dir / "pub" / "publication" / project_name,
    )


def resolve_environment(
    host: HostPlatform | str | None,
    project_dir: Path,
    build_dir: Path,
    project_name: str,
    overrides: EnvironmentOverrides | Mapping[str, Any] | None = None,
) -> Environment:
    """Compute the default environment and apply ``overrides`` on top of it."""

    environment = default_environment(host, Path(project_dir), Path(build_dir), project_name)
    if overrides is None:
        return environment
    if isinstance(overrides, Mapping):
        overrides = EnvironmentOverrides.from_mapping(overrides)
    return overrides.apply_to(environment)


class ConfigurableEnvironment:
    """Environment holder for a configuration scope.

    Overrides are last-write-wins per field. Tasks capture the values when they
    are registered, so overrides have to happen before registration; a late
    override is applied but only affects tasks registered afterwards.
    """

    def __init__(self, initial: Environment) -> None:
        self._current = initial
        self._read_by: list[str] = []

    @property
    def current(self) -> Environment:
        return self._current

    def override(self, overrides: EnvironmentOverrides | Mapping[str, Any] | None = None, **values: Any) -> Environment:
        if isinstance(overrides, Mapping):
            overrides = EnvironmentOverrides.from_mapping(overrides)
        if values:
            extra = EnvironmentOverrides.from_mapping(values)
            self._current = extra.apply_to(overrides.apply_to(self._current) if overrides else self._current)
        elif overrides is not None:
            self._current = overrides.apply_to(self._current)

        if self._read_by:
            logger.warning(
                "Environment overridden after tasks were registered ({}); they keep the previous values",
                ", ".join(self._read_by),
            )
        return self._current

    def mark_read(self, task_name: str) -> Environment:
        if task_name not in self._read_by:
            self._read_by.append(task_name)
        return self._current


__all__ = [
    "ConfigurableEnvironment",
    "Environment",
    "EnvironmentOverrides",
    "HostPlatform",
    "default_environment",
    "resolve_environment",
]
