"""Typed task registry with dependency and ordering edges."""
from __future__ import annotations

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, Iterator, List, Sequence

from .errors import DuplicateTaskError, FrozenRegistryError, UnknownTaskError

if TYPE_CHECKING:  # pragma: no cover
    from .executor import ActionContext


LIFECYCLE_GROUP = "lifecycle"

CLEAN = "clean"
ASSEMBLE = "assemble"
CHECK = "check"
PUBLISH = "publish"

LIFECYCLE_TASKS: Dict[str, str] = {
    CLEAN: "Deletes the build outputs.",
    ASSEMBLE: "Assembles the outputs of this project.",
    CHECK: "Runs all checks.",
    PUBLISH: "Publishes all publications produced by this project.",
}

TaskAction = Callable[["ActionContext"], None]


@dataclass(slots=True)
class TaskDefinition:
    name: str
    group: str | None = None
    description: str | None = None
    command: List[str] = field(default_factory=list)
    working_directory: Path | None = None
    stdin: str | None = None
    action: TaskAction | None = None
    inputs: set[Path] = field(default_factory=set)
    outputs: set[Path] = field(default_factory=set)
    depends_on: set[str] = field(default_factory=set)
    must_run_after: set[str] = field(default_factory=set)
    enabled: bool = True

    @property
    def has_work(self) -> bool:
        return bool(self.command) or self.action is not None

    def describe(self) -> str:
        if self.description:
            return self.description
        if self.command:
            return " ".join(self.command)
        return ""


_CONFIGURABLE_FIELDS = frozenset(item.name for item in fields(TaskDefinition)) - {"name"}


def _coerce_field(name: str, value: Any) -> Any:
    if name in {"inputs", "outputs"}:
        return {Path(item) for item in value}
    if name in {"depends_on", "must_run_after"}:
        if isinstance(value, str):
            return {value}
        return {str(item) for item in value}
    if name == "command":
        return [str(part) for part in value]
    if name == "working_directory" and value is not None:
        return Path(value)
    return value


class TaskRegistry:
    """Mapping of task name to :class:`TaskDefinition`.

    Edges are stored as names on the dependent task and are checked for
    referential integrity when the registry is validated or frozen.
    """

    def __init__(self, *, lifecycle: bool = True) -> None:
        self._tasks: Dict[str, TaskDefinition] = {}
        self._frozen = False
        if lifecycle:
            for name, description in LIFECYCLE_TASKS.items():
                self._tasks[name] = TaskDefinition(name=name, group=LIFECYCLE_GROUP, description=description)

    def __contains__(self, name: object) -> bool:
        return name in self._tasks

    def __iter__(self) -> Iterator[TaskDefinition]:
        return iter(self._tasks.values())

    def __len__(self) -> int:
        return len(self._tasks)

    @property
    def frozen(self) -> bool:
        return self._frozen

    def names(self) -> List[str]:
        return sorted(self._tasks)

    def get(self, name: str) -> TaskDefinition:
        try:
            return self._tasks[name]
        except KeyError:
            raise UnknownTaskError(name, available=list(self._tasks)) from None

    def by_group(self, group: str | None) -> List[TaskDefinition]:
        return [task for task in self._tasks.values() if task.group == group]

    def _ensure_mutable(self, operation: str) -> None:
        if self._frozen:
            raise FrozenRegistryError(operation)

    def register(self, name: str, definition: TaskDefinition | None = None, **values: Any) -> TaskDefinition:
        """Add a new task; the registry is unchanged when this raises."""

        self._ensure_mutable(f"register task '{name}'")
        if name in self._tasks:
            raise DuplicateTaskError(name)

        if definition is None:
            definition = TaskDefinition(name=name)
        elif definition.name != name:
            raise ValueError(f"Task definition is named '{definition.name}', expected '{name}'")

        updates = self._validated_updates(values)
        for key, value in updates.items():
            setattr(definition, key, value)

        self._tasks[name] = definition
        return definition

    def configure(
        self,
        name: str,
        configuration: Callable[[TaskDefinition], None] | None = None,
        **values: Any,
    ) -> TaskDefinition:
        """Update an already registered task in place."""

        self._ensure_mutable(f"configure task '{name}'")
        task = self.get(name)
        updates = self._validated_updates(values)
        for key, value in updates.items():
            setattr(task, key, value)
        if configuration is not None:
            configuration(task)
        return task

    def depends_on(self, task: str, *dependencies: str) -> None:
        self._add_edges("depends_on", task, dependencies)

    def must_run_after(self, task: str, *others: str) -> None:
        self._add_edges("must_run_after", task, others)

    def _add_edges(self, kind: str, task: str, targets: Sequence[str]) -> None:
        self._ensure_mutable(f"add {kind} edge to '{task}'")
        definition = self.get(task)
        for target in targets:
            if target not in self._tasks:
                raise UnknownTaskError(target, referenced_by=task, available=list(self._tasks))
        getattr(definition, kind).update(targets)

    @staticmethod
    def _validated_updates(values: Dict[str, Any]) -> Dict[str, Any]:
        unknown = sorted(set(values) - _CONFIGURABLE_FIELDS)
        if unknown:
            raise TypeError(f"Unknown task field(s): {', '.join(unknown)}")
        return {key: _coerce_field(key, value) for key, value in values.items()}

    def validate(self) -> None:
        """Raise :class:`UnknownTaskError` for the first dangling edge."""

        for task in self._tasks.values():
            for target in sorted(task.depends_on | task.must_run_after):
                if target not in self._tasks:
                    raise UnknownTaskError(target, referenced_by=task.name, available=list(self._tasks))

    def freeze(self) -> None:
        if self._frozen:
            return
        self.validate()
        self._frozen = True

    def dependents_of(self, name: str) -> List[str]:
        return sorted(task.name for task in self._tasks.values() if name in task.depends_on)

    def closure(self, names: Iterable[str]) -> List[str]:
        """Return ``names`` plus every task they transitively depend on."""

        seen: set[str] = set()
        pending = list(names)
        while pending:
            current = pending.pop()
            if current in seen:
                continue
            seen.add(current)
            pending.extend(self.get(current).depends_on - seen)
        return sorted(seen)


__all__ = [
    "ASSEMBLE",
    "CHECK",
    "CLEAN",
    "LIFECYCLE_GROUP",
    "LIFECYCLE_TASKS",
    "PUBLISH",
    "TaskAction",
    "TaskDefinition",
    "TaskRegistry",
]
