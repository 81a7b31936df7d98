"""Tests for configuration loading and export path resolution."""

import os
import shutil
import sys
import tempfile
import unittest
from pathlib import Path
from unittest import mock

import yaml

# Add parent directory to path
sys.path.append(str(Path(__file__).resolve().parent.parent))

from photogen import config as config_module
from photogen.config import load_config, resolve_export_path


class TestLoadConfig(unittest.TestCase):
    """Test YAML loading over the built-in defaults."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        env = mock.patch.dict(os.environ)
        env.start()
        self.addCleanup(env.stop)
        os.environ.pop("COLMAP_PATH", None)

    def tearDown(self):
        shutil.rmtree(self.temp_dir)

    def write_config(self, data) -> str:
        path = os.path.join(self.temp_dir, "config.yaml")
        with open(path, "w") as f:
            yaml.safe_dump(data, f)
        return path

    def test_defaults_without_file(self):
        missing = Path(self.temp_dir) / "absent.yaml"
        with mock.patch.object(config_module, "DEFAULT_CONFIG_PATH", missing):
            config = load_config()
        self.assertEqual(config, config_module.DEFAULT_CONFIG)
        self.assertIsNot(config["engine"], config_module.DEFAULT_CONFIG["engine"])

    def test_shipped_config_matches_defaults(self):
        config = load_config()
        self.assertEqual(config["engine"]["name"], "colmap")
        self.assertEqual(config["export"]["format"], "obj")
        self.assertTrue(config["progress"]["show_bar"])

    def test_nested_override_keeps_other_keys(self):
        path = self.write_config({"engine": {"use_gpu": False}, "export": {"format": "stl"}})
        config = load_config(path)
        self.assertFalse(config["engine"]["use_gpu"])
        self.assertEqual(config["engine"]["colmap_executable"], "colmap")
        self.assertEqual(config["export"]["format"], "stl")
        self.assertTrue(config["export"]["enabled"])

    def test_empty_file(self):
        path = os.path.join(self.temp_dir, "empty.yaml")
        open(path, "w").close()
        self.assertEqual(load_config(path)["logging"]["level"], "INFO")

    def test_missing_explicit_path(self):
        with self.assertRaises(FileNotFoundError):
            load_config(os.path.join(self.temp_dir, "nope.yaml"))

    def test_colmap_path_environment(self):
        os.environ["COLMAP_PATH"] = "/opt/colmap/bin/colmap"
        config = load_config(self.write_config({}))
        self.assertEqual(config["engine"]["colmap_executable"], "/opt/colmap/bin/colmap")


class TestResolveExportPath(unittest.TestCase):
    """Test where the auxiliary export is written."""

    def setUp(self):
        self.config = {"export": {"enabled": True, "format": "obj", "path": None}}

    def test_derived_from_output(self):
        self.assertEqual(
            resolve_export_path(self.config, "/data/out/chair.ply"),
            Path("/data/out/chair.obj")
        )

    def test_explicit_path(self):
        self.config["export"]["path"] = "/data/exports/chair_copy.stl"
        self.assertEqual(
            resolve_export_path(self.config, "/data/out/chair.ply"),
            Path("/data/exports/chair_copy.stl")
        )

    def test_disabled(self):
        self.config["export"]["enabled"] = False
        self.assertIsNone(resolve_export_path(self.config, "/data/out/chair.ply"))

    def test_same_format_as_output(self):
        self.assertIsNone(resolve_export_path(self.config, "/data/out/chair.obj"))


if __name__ == "__main__":
    unittest.main()
