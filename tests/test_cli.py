"""Tests for the voicerelay command line."""

import io
import json
import os
import tempfile
import unittest
from contextlib import redirect_stdout
from unittest.mock import patch

from voicerelay.cli import main


class TestConfigCommands(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.path = os.path.join(self._tmp.name, "voicerelay.yaml")

    def tearDown(self):
        self._tmp.cleanup()

    def run_cli(self, *argv) -> tuple:
        out = io.StringIO()
        with redirect_stdout(out), patch.dict(os.environ, {"VR_DATA_DIR": self._tmp.name}):
            code = main(list(argv))
        return code, out.getvalue()

    def test_generate_validate_show(self):
        code, out = self.run_cli("config", "generate", "-o", self.path)
        self.assertEqual(code, 0)
        self.assertTrue(os.path.exists(self.path))

        code, out = self.run_cli("config", "validate", "-c", self.path)
        self.assertEqual(code, 0)
        self.assertIn("Configuration valid", out)
        self.assertIn("GROQ_API_KEY", out)

        code, out = self.run_cli("config", "show", "-c", self.path)
        self.assertEqual(code, 0)
        shown = json.loads(out)
        self.assertEqual(shown["server"]["port"], 3001)

    def test_validate_reports_errors(self):
        code, out = self.run_cli("config", "validate", "-c", os.path.join(self._tmp.name, "missing.yaml"))
        self.assertEqual(code, 1)
        self.assertIn("Configuration error", out)

    def test_config_without_subcommand(self):
        code, _ = self.run_cli("config")
        self.assertEqual(code, 2)

    def test_serve_refuses_broken_config(self):
        code, out = self.run_cli("serve", "-c", os.path.join(self._tmp.name, "missing.yaml"))
        self.assertEqual(code, 1)

    def test_no_command_prints_help(self):
        code, out = self.run_cli()
        self.assertEqual(code, 0)
        self.assertIn("usage", out)


if __name__ == "__main__":
    unittest.main()
