"""Registration of the Dart build, publish, docs and test-suite task groups."""
from __future__ import annotations

from pathlib import Path
from typing import Iterable, List, Sequence
import shlex

from loguru import logger

from .environment import ConfigurableEnvironment, Environment
from .errors import UnknownTaskError
from .executor import ActionContext
from .filesets import FileSet, delete_paths, stage_files
from .tasks import ASSEMBLE, CHECK, CLEAN, PUBLISH, TaskDefinition, TaskRegistry


BUILD_GROUP = "Dart/Build"
PUBLISH_GROUP = "Dart/Publish"
DOCS_GROUP = "Dart/Docs"

CLEAN_PACKAGE_INDEX = "cleanPackageIndex"
RESOLVE_DEPENDENCIES = "resolveDependencies"
RUN_TESTS = "runTests"
STAGE_PUBLICATION = "stagePublication"
PUBLISH_TO_REGISTRY = "publishToRegistry"
ACTIVATE_LOCALLY = "activateLocally"
GENERATE_DOCS = "generateDocs"

SOURCE_EXTENSION = "dart"

PUBLICATION_INCLUDES: tuple[str, ...] = (f"**/*.{SOURCE_EXTENSION}", "pubspec.yaml", "**/*.md")
PUBLICATION_EXCLUDES: tuple[str, ...] = ("proto/", "generated/", "build/", "**/.*")
LICENSE_FILE = "LICENSE"


def executable_argv(executable: str) -> List[str]:
    """Split a configured executable like ``dart pub`` into argv parts."""

    if " " not in executable.strip() or Path(executable).exists():
        return [executable]
    return shlex.split(executable)


def pub_command(environment: Environment, *arguments: str) -> List[str]:
    return [*executable_argv(environment.pub_executable), *arguments]


def _delete_action(paths: Sequence[Path]):
    def action(context: ActionContext) -> None:
        if context.dry_run:
            logger.info("[dry-run] {} would delete {}", context.task.name, ", ".join(map(str, paths)))
            return
        deleted = delete_paths(paths)
        logger.debug("Deleted {}", ", ".join(map(str, deleted)) or "nothing")

    return action


def _stage_action(destination: Path, file_sets: Sequence[FileSet], extra_files: Sequence[Path]):
    def action(context: ActionContext) -> None:
        if context.dry_run:
            logger.info("[dry-run] {} would stage files into {}", context.task.name, destination)
            return
        copied = stage_files(destination, file_sets, extra_files)
        logger.debug("Prepared Pub publication in directory `{}` ({} files).", destination, len(copied))

    return action


def register_build_tasks(
    registry: TaskRegistry,
    environment: ConfigurableEnvironment,
    project_dir: Path,
) -> List[TaskDefinition]:
    """Register ``cleanPackageIndex``, ``resolveDependencies`` and ``runTests``.

    Each task is attached to its lifecycle task: ``clean``, ``assemble`` and
    ``check`` respectively.
    """

    env = environment.mark_read(BUILD_GROUP)

    clean = registry.register(
        CLEAN_PACKAGE_INDEX,
        group=BUILD_GROUP,
        description="Deletes the resolved `.packages` and `package_config.json` files.",
        action=_delete_action(env.lockfiles),
    )
    registry.depends_on(CLEAN, clean.name)

    resolve = registry.register(
        RESOLVE_DEPENDENCIES,
        group=BUILD_GROUP,
        description="Fetches dependencies declared via `pubspec.yaml`.",
        command=pub_command(env, "get"),
        working_directory=project_dir,
        inputs={env.pubspec},
        outputs={env.package_index},
    )
    registry.must_run_after(resolve.name, clean.name)
    registry.depends_on(ASSEMBLE, resolve.name)

    tests = registry.register(
        RUN_TESTS,
        group=BUILD_GROUP,
        description="Runs Dart tests declared in the `./test` directory.",
        command=pub_command(env, "run", "test"),
        working_directory=project_dir,
    )
    registry.depends_on(tests.name, resolve.name)
    registry.depends_on(CHECK, tests.name)

    return [clean, resolve, tests]


def register_publish_tasks(
    registry: TaskRegistry,
    environment: ConfigurableEnvironment,
    project_dir: Path,
    root_dir: Path,
) -> List[TaskDefinition]:
    """Register ``stagePublication``, ``publishToRegistry`` and ``activateLocally``."""

    env = environment.mark_read(PUBLISH_GROUP)
    publication = env.publication_directory

    sources = FileSet(project_dir, includes=PUBLICATION_INCLUDES, excludes=PUBLICATION_EXCLUDES)
    stage = registry.register(
        STAGE_PUBLICATION,
        group=PUBLISH_GROUP,
        description="Prepares the Dart package for Pub publication.",
        action=_stage_action(publication, [sources], [root_dir / LICENSE_FILE]),
        outputs={publication},
    )
    registry.depends_on(stage.name, ASSEMBLE)

    publish = registry.register(
        PUBLISH_TO_REGISTRY,
        group=PUBLISH_GROUP,
        description="Publishes this package to Pub.",
        command=pub_command(env, "publish", "--trace"),
        working_directory=publication,
        stdin="y\n",
    )
    registry.depends_on(publish.name, stage.name)
    registry.depends_on(PUBLISH, publish.name)

    activate = registry.register(
        ACTIVATE_LOCALLY,
        group=PUBLISH_GROUP,
        description="Activates this package locally.",
        command=pub_command(env, "global", "activate", "--source", "path", str(publication), "--trace"),
        working_directory=publication,
    )
    registry.depends_on(activate.name, stage.name)

    return [stage, publish, activate]


def register_docs_task(
    registry: TaskRegistry,
    environment: ConfigurableEnvironment,
    project_dir: Path,
    output_dir: Path,
    *,
    name: str = GENERATE_DOCS,
) -> TaskDefinition:
    """Register the API documentation generator for ``<project>/lib``."""

    env = environment.mark_read(name)
    return registry.register(
        name,
        group=DOCS_GROUP,
        description="Generates the API documentation of the package.",
        command=[*executable_argv(env.docs_executable), "--output", str(output_dir), f"{project_dir / 'lib'}/"],
        working_directory=project_dir,
        inputs={project_dir / "lib"},
        outputs={output_dir},
    )


def register_test_suite(
    registry: TaskRegistry,
    environment: ConfigurableEnvironment,
    project_dir: Path,
    name: str,
    test_dir: str,
    *,
    platform: str | None = None,
    depends_on: Iterable[str] = (),
) -> TaskDefinition:
    """Register an extra ``pub run test <dir>`` suite wired into ``check``."""

    prerequisites = [RESOLVE_DEPENDENCIES, *depends_on]
    for prerequisite in prerequisites:
        if prerequisite not in registry:
            raise UnknownTaskError(prerequisite, referenced_by=name, available=registry.names())

    env = environment.mark_read(name)
    arguments = ["run", "test", test_dir]
    if platform:
        arguments.extend(["-p", platform])
    task = registry.register(
        name,
        group=BUILD_GROUP,
        description=f"Runs Dart tests declared in `{test_dir}`.",
        command=pub_command(env, *arguments),
        working_directory=project_dir,
    )
    registry.depends_on(task.name, *prerequisites)
    registry.depends_on(CHECK, task.name)
    return task


__all__ = [
    "ACTIVATE_LOCALLY",
    "BUILD_GROUP",
    "CLEAN_PACKAGE_INDEX",
    "DOCS_GROUP",
    "GENERATE_DOCS",
    "PUBLICATION_EXCLUDES",
    "PUBLICATION_INCLUDES",
    "PUBLISH_GROUP",
    "PUBLISH_TO_REGISTRY",
    "RESOLVE_DEPENDENCIES",
    "RUN_TESTS",
    "STAGE_PUBLICATION",
    "executable_argv",
    "pub_command",
    "register_build_tasks",
    "register_docs_task",
    "register_publish_tasks",
    "register_test_suite",
]
