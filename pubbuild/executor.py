"""Ordering and execution of registered tasks."""
from __future__ import annotations

from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Sequence
import heapq
import threading
import time

from loguru import logger

from core.command_runner import CommandError, CommandRunner
from .errors import (
    CyclicDependencyError,
    ExecutableNotFoundError,
    ExternalCommandError,
    FileSystemError,
    PipelineError,
    TaskActionError,
)
from .tasks import TaskDefinition, TaskRegistry


class TaskStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    NOT_RUN = "not-run"


@dataclass(slots=True)
class TaskOutcome:
    name: str
    status: TaskStatus
    reason: str | None = None
    error: PipelineError | None = None
    duration: float = 0.0


@dataclass(slots=True)
class ExecutionReport:
    """Terminal status of every scheduled task, in execution order."""

    requested: List[str]
    order: List[str]
    outcomes: Dict[str, TaskOutcome] = field(default_factory=dict)
    cancelled: bool = False

    def status_of(self, name: str) -> TaskStatus:
        return self.outcomes[name].status

    def _with_status(self, status: TaskStatus) -> List[str]:
        return [name for name in self.order if name in self.outcomes and self.outcomes[name].status is status]

    @property
    def executed(self) -> List[str]:
        return self._with_status(TaskStatus.SUCCEEDED)

    @property
    def failed(self) -> List[str]:
        return self._with_status(TaskStatus.FAILED)

    @property
    def skipped(self) -> List[str]:
        return self._with_status(TaskStatus.SKIPPED)

    @property
    def not_run(self) -> List[str]:
        return self._with_status(TaskStatus.NOT_RUN)

    @property
    def succeeded(self) -> bool:
        return not self.failed and not self.cancelled

    @property
    def exit_code(self) -> int:
        return 0 if self.succeeded else 1

    def iter_outcomes(self) -> Iterable[TaskOutcome]:
        for name in self.order:
            outcome = self.outcomes.get(name)
            if outcome is not None:
                yield outcome


@dataclass(slots=True)
class ActionContext:
    """What a task action gets to work with."""

    task: TaskDefinition
    runner: CommandRunner
    dry_run: bool = False


def build_order_graph(registry: TaskRegistry, scheduled: Iterable[str]) -> Dict[str, List[str]]:
    """Map each scheduled task to the scheduled tasks that must finish first."""

    scheduled_set = set(scheduled)
    graph: Dict[str, List[str]] = {}
    for name in sorted(scheduled_set):
        task = registry.get(name)
        predecessors = set(task.depends_on)
        predecessors.update(other for other in task.must_run_after if other in scheduled_set)
        graph[name] = sorted(predecessors)
    return graph


def find_cycle(graph: Mapping[str, Sequence[str]]) -> List[str]:
    visited: set[str] = set()
    active: set[str] = set()
    path: List[str] = []

    def _dfs(node: str) -> List[str] | None:
        visited.add(node)
        active.add(node)
        path.append(node)
        for dep in graph.get(node, ()):
            if dep not in graph:
                continue
            if dep in active:
                start_index = path.index(dep)
                return path[start_index:] + [dep]
            if dep not in visited:
                result = _dfs(dep)
                if result:
                    return result
        active.remove(node)
        path.pop()
        return None

    for node in graph:
        if node not in visited:
            cycle = _dfs(node)
            if cycle:
                return cycle
    return []


def topological_order(graph: Mapping[str, Sequence[str]]) -> List[str]:
    """Return a deterministic ordering or raise :class:`CyclicDependencyError`."""

    dependents: Dict[str, List[str]] = {node: [] for node in graph}
    indegree: Dict[str, int] = {}
    for node, deps in graph.items():
        filtered = [dep for dep in deps if dep in graph]
        indegree[node] = len(filtered)
        for dep in filtered:
            dependents[dep].append(node)

    ready = [node for node, degree in indegree.items() if degree == 0]
    heapq.heapify(ready)
    order: List[str] = []
    while ready:
        node = heapq.heappop(ready)
        order.append(node)
        for dependent in sorted(dependents[node]):
            indegree[dependent] -= 1
            if indegree[dependent] == 0:
                heapq.heappush(ready, dependent)

    if len(order) != len(graph):
        raise CyclicDependencyError(find_cycle(graph) or sorted(set(graph) - set(order)))
    return order


def is_up_to_date(task: TaskDefinition) -> bool:
    """True when every declared output exists and is newer than every input."""

    if not task.inputs or not task.outputs:
        return False
    try:
        newest_input = max(path.stat().st_mtime for path in task.inputs)
    except FileNotFoundError:
        return False
    for output in task.outputs:
        try:
            if output.stat().st_mtime <= newest_input:
                return False
        except FileNotFoundError:
            return False
    return True


class TaskExecutor:
    """Runs the closure of requested tasks in dependency order.

    With ``max_workers`` above one, tasks whose predecessors have all reached a
    terminal status are submitted to a thread pool, so independent branches
    run side by side while every ordering edge still holds.
    """

    def __init__(
        self,
        command_runner: CommandRunner,
        *,
        max_workers: int = 1,
        incremental: bool = False,
        dry_run: bool = False,
    ) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self._runner = command_runner
        self._max_workers = max_workers
        self._incremental = incremental
        self._dry_run = dry_run
        self._cancel = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def cancel(self) -> None:
        """Stop scheduling new tasks and terminate the running commands."""

        if self._cancel.is_set():
            return
        self._cancel.set()
        terminated = self._runner.terminate_running()
        logger.warning("Build cancelled; terminated {} running command(s)", terminated)

    def plan(self, registry: TaskRegistry, requested: Sequence[str]) -> List[str]:
        """Validate ``registry`` and return the execution order for ``requested``."""

        registry.freeze()
        for name in requested:
            registry.get(name)
        scheduled = registry.closure(requested)
        return topological_order(build_order_graph(registry, scheduled))

    def run(self, registry: TaskRegistry, requested: Sequence[str]) -> ExecutionReport:
        order = self.plan(registry, requested)
        graph = build_order_graph(registry, order)
        report = ExecutionReport(requested=list(requested), order=order)
        logger.debug("Execution order: {}", " -> ".join(order))

        if self._max_workers == 1:
            self._run_sequential(registry, report)
        else:
            self._run_parallel(registry, graph, report)

        report.cancelled = self.cancelled
        return report

    def _blocked_reason(self, task: TaskDefinition, report: ExecutionReport) -> str | None:
        if self.cancelled:
            return "cancelled"
        for dependency in sorted(task.depends_on):
            outcome = report.outcomes.get(dependency)
            if outcome is None:
                continue
            if outcome.status is TaskStatus.FAILED:
                return f"dependency '{dependency}' failed"
            if outcome.status is TaskStatus.NOT_RUN:
                return f"dependency '{dependency}' did not run"
        return None

    def _pre_execution_outcome(self, task: TaskDefinition, report: ExecutionReport) -> TaskOutcome | None:
        reason = self._blocked_reason(task, report)
        if reason is not None:
            return TaskOutcome(task.name, TaskStatus.NOT_RUN, reason)
        if not task.enabled:
            return TaskOutcome(task.name, TaskStatus.SKIPPED, "disabled")
        if not task.has_work:
            return TaskOutcome(task.name, TaskStatus.SUCCEEDED, "no actions")
        if self._incremental and not self._dry_run and is_up_to_date(task):
            return TaskOutcome(task.name, TaskStatus.SKIPPED, "up-to-date")
        return None

    def _record(self, report: ExecutionReport, outcome: TaskOutcome) -> None:
        report.outcomes[outcome.name] = outcome
        if outcome.status is TaskStatus.FAILED:
            logger.error("Task '{}' FAILED: {}", outcome.name, outcome.error or outcome.reason)
        elif outcome.status is TaskStatus.SUCCEEDED:
            logger.info("Task '{}' succeeded ({:.2f}s)", outcome.name, outcome.duration)
        else:
            logger.info("Task '{}' {}: {}", outcome.name, outcome.status.value, outcome.reason)

    def _execute(self, task: TaskDefinition) -> TaskOutcome:
        logger.info("> Task :{}", task.name)
        started = time.monotonic()
        try:
            if task.command:
                self._run_command(task)
            if task.action is not None:
                self._run_action(task)
        except PipelineError as exc:
            return TaskOutcome(task.name, TaskStatus.FAILED, str(exc), exc, time.monotonic() - started)
        except Exception as exc:
            error = TaskActionError(task.name, exc)
            logger.opt(exception=exc).debug("Task '{}' raised an unexpected error", task.name)
            return TaskOutcome(task.name, TaskStatus.FAILED, str(error), error, time.monotonic() - started)
        return TaskOutcome(task.name, TaskStatus.SUCCEEDED, None, None, time.monotonic() - started)

    def _run_command(self, task: TaskDefinition) -> None:
        try:
            self._runner.run(
                task.command,
                cwd=task.working_directory,
                stdin=task.stdin,
                note=task.name,
            )
        except CommandError as exc:
            raise ExternalCommandError(task.name, exc.result) from exc
        except FileNotFoundError as exc:
            if task.working_directory is not None and exc.filename == str(task.working_directory):
                raise FileSystemError(task.name, task.working_directory, exc.strerror or str(exc)) from exc
            raise ExecutableNotFoundError(task.name, task.command[0]) from exc
        except OSError as exc:
            raise FileSystemError(task.name, task.command[0], exc.strerror or str(exc)) from exc

    def _run_action(self, task: TaskDefinition) -> None:
        context = ActionContext(task=task, runner=self._runner, dry_run=self._dry_run)
        try:
            task.action(context)  # type: ignore[misc]
        except OSError as exc:
            path = exc.filename if exc.filename else task.working_directory or Path(".")
            raise FileSystemError(task.name, path, exc.strerror or str(exc)) from exc

    def _run_sequential(self, registry: TaskRegistry, report: ExecutionReport) -> None:
        for name in report.order:
            task = registry.get(name)
            outcome = self._pre_execution_outcome(task, report)
            if outcome is None:
                outcome = self._execute(task)
            self._record(report, outcome)

    def _run_parallel(self, registry: TaskRegistry, graph: Mapping[str, Sequence[str]], report: ExecutionReport) -> None:
        pending = list(report.order)
        running: Dict[Future[TaskOutcome], str] = {}

        def ready(name: str) -> bool:
            return all(dep in report.outcomes for dep in graph[name])

        with ThreadPoolExecutor(max_workers=self._max_workers) as pool:
            while pending or running:
                for name in [name for name in pending if ready(name)]:
                    task = registry.get(name)
                    outcome = self._pre_execution_outcome(task, report)
                    if outcome is not None:
                        pending.remove(name)
                        self._record(report, outcome)
                        continue
                    if len(running) >= self._max_workers:
                        continue
                    pending.remove(name)
                    running[pool.submit(self._execute, task)] = name

                if not running:
                    if pending and not any(ready(name) for name in pending):
                        raise CyclicDependencyError(find_cycle({name: graph[name] for name in pending}) or pending)
                    continue

                done, _ = wait(list(running), return_when=FIRST_COMPLETED)
                for future in done:
                    running.pop(future)
                    self._record(report, future.result())


__all__ = [
    "ActionContext",
    "ExecutionReport",
    "TaskExecutor",
    "TaskOutcome",
    "TaskStatus",
    "build_order_graph",
    "find_cycle",
    "is_up_to_date",
    "topological_order",
]
