from __future__ import annotations

from pathlib import Path
import tempfile
import textwrap
import unittest

from pubbuild.config import configure_project, load_project_config, read_manifest_name
from pubbuild.errors import UnknownTaskError
from pubbuild.extension import BuildContext
from pubbuild.pipeline import GENERATE_DOCS, PUBLISH_TO_REGISTRY, RESOLVE_DEPENDENCIES, RUN_TESTS


class ProjectConfigTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name).resolve()
        self.project_dir = self.root / "client-test"
        self.project_dir.mkdir()
        (self.project_dir / "pubspec.yaml").write_text(
            textwrap.dedent(
                """
                name: spine_client_test
                version: 1.0.0
                dependencies:
                  protobuf: ^1.0.0
                """
            )
        )

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def test_name_falls_back_to_manifest(self) -> None:
        config = load_project_config(self.project_dir)
        self.assertEqual(config.name, "spine_client_test")
        self.assertTrue(config.build)
        self.assertTrue(config.publish)
        self.assertEqual(read_manifest_name(self.project_dir / "missing.yaml"), None)

    def test_name_falls_back_to_directory(self) -> None:
        (self.project_dir / "pubspec.yaml").unlink()
        self.assertEqual(load_project_config(self.project_dir).name, "client-test")

    def test_toml_configuration_drives_extension(self) -> None:
        (self.project_dir / "pubbuild.toml").write_text(
            textwrap.dedent(
                """
                [project]
                name = "client-test"
                build_dir = "out"
                root_dir = ".."

                [environment]
                publication_directory = "/tmp/out"

                [tasks.runTests]
                enabled = false

                [[test_suites]]
                name = "integrationTest"
                directory = "./integration-test"
                platform = "chrome"

                [docs]
                output = "out/docs"
                """
            )
        )
        config = load_project_config(self.project_dir)
        extension = configure_project(BuildContext(), config, host="linux")
        registry = extension.registry

        self.assertEqual(extension.project.build_dir, self.project_dir / "out")
        self.assertEqual(extension.project.root_dir, self.root)
        self.assertEqual(extension.environment().publication_directory, Path("/tmp/out"))
        self.assertFalse(registry.get(RUN_TESTS).enabled)
        self.assertEqual(
            registry.get("integrationTest").command,
            ["pub", "run", "test", "./integration-test", "-p", "chrome"],
        )
        self.assertEqual(registry.get(PUBLISH_TO_REGISTRY).working_directory, Path("/tmp/out"))
        self.assertEqual(
            registry.get(GENERATE_DOCS).command[:3],
            ["dartdoc", "--output", str(self.project_dir / "out" / "docs")],
        )

    def test_extra_files_merge_over_project_file(self) -> None:
        (self.project_dir / "pubbuild.yaml").write_text(
            textwrap.dedent(
                """
                project:
                  publish: false
                environment:
                  pub_executable: dart pub
                """
            )
        )
        extra = self.root / "ci.json"
        extra.write_text('{"environment": {"pub_executable": "/opt/dart/bin/pub"}}')

        config = load_project_config(self.project_dir, [extra])
        extension = configure_project(BuildContext(), config, host="linux")

        self.assertFalse(config.publish)
        self.assertNotIn(PUBLISH_TO_REGISTRY, extension.registry)
        self.assertEqual(extension.registry.get(RESOLVE_DEPENDENCIES).command, ["/opt/dart/bin/pub", "get"])

    def test_task_edges_from_configuration(self) -> None:
        (self.project_dir / "pubbuild.toml").write_text(
            textwrap.dedent(
                """
                [tasks.runTests]
                depends_on = ["ghost"]
                """
            )
        )
        config = load_project_config(self.project_dir)
        with self.assertRaises(UnknownTaskError):
            configure_project(BuildContext(), config, host="linux")

    def test_multiple_formats_are_rejected(self) -> None:
        (self.project_dir / "pubbuild.toml").write_text("")
        (self.project_dir / "pubbuild.json").write_text("{}")
        with self.assertRaises(ValueError):
            load_project_config(self.project_dir)

    def test_unknown_task_keys_are_rejected(self) -> None:
        (self.project_dir / "pubbuild.toml").write_text("[tasks.runTests]\nenable = false\n")
        with self.assertRaises(ValueError):
            load_project_config(self.project_dir)

    def test_missing_extra_file(self) -> None:
        with self.assertRaises(FileNotFoundError):
            load_project_config(self.project_dir, [Path("nope.toml")])

    def test_test_suite_requires_directory(self) -> None:
        (self.project_dir / "pubbuild.toml").write_text('[[test_suites]]\nname = "it"\n')
        with self.assertRaises(ValueError):
            load_project_config(self.project_dir)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
