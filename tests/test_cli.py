from __future__ import annotations

from contextlib import redirect_stdout
from pathlib import Path
import io
import os
import tempfile
import textwrap
import unittest
from unittest.mock import patch

from core.command_runner import SubprocessCommandRunner
from pubbuild import cli
from pubbuild.executor import TaskExecutor

from tests.fakes import ScriptedCommandRunner


class CliTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name).resolve()
        self.project_dir = self.root / "client"
        (self.project_dir / "lib").mkdir(parents=True)
        (self.project_dir / "lib" / "client.dart").write_text("library client;")
        (self.project_dir / "pubspec.yaml").write_text("name: spine_client\n")
        (self.root / "LICENSE").write_text("Apache")
        (self.project_dir / "pubbuild.toml").write_text(
            textwrap.dedent(
                """
                [project]
                root_dir = ".."
                """
            )
        )
        original_env = os.environ.pop(cli.CONFIG_ENV_VAR, None)
        if original_env is not None:
            self.addCleanup(os.environ.__setitem__, cli.CONFIG_ENV_VAR, original_env)

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def _main(self, *argv: str) -> tuple[int, str]:
        buffer = io.StringIO()
        with redirect_stdout(buffer):
            code = cli.main(["-q", "-P", str(self.project_dir), "--host", "linux", *argv])
        return code, buffer.getvalue()

    def test_tasks_listing(self) -> None:
        code, output = self._main("tasks", "--dependencies")
        self.assertEqual(code, 0)
        self.assertIn("Dart/Build tasks", output)
        self.assertIn("Dart/Publish tasks", output)
        self.assertIn("runTests - Runs Dart tests declared in the `./test` directory.", output)
        self.assertIn("    depends on: resolveDependencies", output)
        self.assertNotIn("lifecycle tasks", output)

    def test_dry_run_prints_commands_without_touching_files(self) -> None:
        code, output = self._main("run", "-n", "publish")
        self.assertEqual(code, 0)
        self.assertIn(f"[dry-run] resolveDependencies (cwd={self.project_dir}) pub get", output)
        publication = self.project_dir / "build" / "pub" / "publication" / "spine_client"
        self.assertIn(f"[dry-run] publishToRegistry (cwd={publication}) pub publish --trace <<< 'y'", output)
        self.assertIn("BUILD SUCCESSFUL", output)
        self.assertFalse(publication.exists())

    def test_failed_publish_exits_non_zero(self) -> None:
        runner = ScriptedCommandRunner({("pub", "publish"): 1})
        with patch("pubbuild.cli._make_runner", return_value=runner):
            code, output = self._main("run", "publish,activateLocally")

        self.assertEqual(code, 1)
        self.assertIn("publishToRegistry", output)
        self.assertIn("FAILED", output)
        self.assertIn("BUILD FAILED", output)
        publication = self.project_dir / "build" / "pub" / "publication" / "spine_client"
        self.assertTrue((publication / "lib" / "client.dart").exists())
        self.assertTrue((publication / "LICENSE").exists())
        self.assertIn(["pub", "global", "activate", "--source", "path", str(publication), "--trace"],
                      [entry.command for entry in runner.invocations])

    def test_exclude_task(self) -> None:
        runner = ScriptedCommandRunner()
        with patch("pubbuild.cli._make_runner", return_value=runner):
            code, output = self._main("run", "check", "-x", "runTests")
        self.assertEqual(code, 0)
        self.assertIn("SKIPPED (disabled)", output)
        self.assertEqual(runner.notes, ["resolveDependencies"])

    def test_unknown_task_is_configuration_error(self) -> None:
        code, output = self._main("run", "deploy")
        self.assertEqual(code, 2)
        self.assertIn("Error: Task 'deploy' not found", output)

    def test_invalid_configuration(self) -> None:
        (self.project_dir / "pubbuild.toml").write_text("[environment]\nunknown = 1\n")
        code, output = self._main("env")
        self.assertEqual(code, 2)
        self.assertIn("Unknown environment field", output)

    def test_malformed_manifest_is_reported(self) -> None:
        (self.project_dir / "pubspec.yaml").write_text("name: [unterminated\n")
        code, output = self._main("tasks")
        self.assertEqual(code, 2)
        self.assertIn("Error: Invalid YAML in configuration file", output)

    def test_env_command(self) -> None:
        code, output = self._main("env")
        self.assertEqual(code, 0)
        self.assertIn("Project: spine_client", output)
        self.assertIn("'pub_executable': 'pub'", output)

    def test_config_env_var_is_merged(self) -> None:
        extra = self.root / "ci.toml"
        extra.write_text('[environment]\npub_executable = "/opt/pub"\n')
        with patch.dict(os.environ, {cli.CONFIG_ENV_VAR: str(extra)}):
            code, output = self._main("env")
        self.assertEqual(code, 0)
        self.assertIn("'pub_executable': '/opt/pub'", output)


class InterruptTests(unittest.TestCase):
    def test_cancel_does_not_block_on_the_interrupted_thread(self) -> None:
        runner = SubprocessCommandRunner()
        executor = TaskExecutor(runner)

        with runner._lock:
            thread = cli._cancel_in_background(executor)
        thread.join(timeout=5)

        self.assertFalse(thread.is_alive())
        self.assertTrue(executor.cancelled)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
