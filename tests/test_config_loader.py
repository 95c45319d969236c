from __future__ import annotations

from pathlib import Path
import tempfile
import textwrap
import unittest

from core.config_loader import (
    find_config_file,
    load_config_file,
    merge_mappings,
    normalize_string_list,
)


class ConfigurationLoaderTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name)

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def test_supports_toml_json_and_yaml(self) -> None:
        (self.root / "a.toml").write_text('[environment]\npub_executable = "pub"\n')
        (self.root / "b.json").write_text('{"environment": {"pub_executable": "pub"}}')
        (self.root / "c.yaml").write_text(
            textwrap.dedent(
                """
                environment:
                  pub_executable: pub
                """
            )
        )
        for name in ("a.toml", "b.json", "c.yaml"):
            data = load_config_file(self.root / name)
            self.assertEqual(data["environment"]["pub_executable"], "pub")

    def test_empty_yaml_is_empty_mapping(self) -> None:
        (self.root / "empty.yaml").write_text("")
        self.assertEqual(load_config_file(self.root / "empty.yaml"), {})

    def test_rejects_non_mapping_root(self) -> None:
        (self.root / "list.yaml").write_text("- a\n- b\n")
        with self.assertRaises(TypeError):
            load_config_file(self.root / "list.yaml")

    def test_rejects_unknown_suffix(self) -> None:
        (self.root / "config.ini").write_text("[x]")
        with self.assertRaises(ValueError):
            load_config_file(self.root / "config.ini")

    def test_malformed_yaml_is_value_error(self) -> None:
        (self.root / "pubspec.yaml").write_text("name: [unterminated\n")
        with self.assertRaises(ValueError) as ctx:
            load_config_file(self.root / "pubspec.yaml")
        self.assertIn("pubspec.yaml", str(ctx.exception))

    def test_find_config_file(self) -> None:
        self.assertIsNone(find_config_file(self.root, "pubbuild"))
        (self.root / "pubbuild.yml").write_text("{}")
        self.assertEqual(find_config_file(self.root, "pubbuild"), self.root / "pubbuild.yml")

    def test_merge_mappings_is_deep(self) -> None:
        base = {"environment": {"a": 1, "b": 2}, "tasks": {"runTests": {"enabled": True}}}
        overlay = {"environment": {"b": 3}, "tasks": {"runTests": {"enabled": False}}}
        merged = merge_mappings(base, overlay)
        self.assertEqual(merged["environment"], {"a": 1, "b": 3})
        self.assertEqual(merged["tasks"]["runTests"], {"enabled": False})
        self.assertEqual(base["environment"], {"a": 1, "b": 2})

    def test_normalize_string_list(self) -> None:
        self.assertEqual(normalize_string_list(None), [])
        self.assertEqual(normalize_string_list(" a "), ["a"])
        self.assertEqual(normalize_string_list(["a", " ", "b"]), ["a", "b"])
        with self.assertRaises(TypeError):
            normalize_string_list([1], field_name="depends_on")
        with self.assertRaises(TypeError):
            normalize_string_list(5)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
