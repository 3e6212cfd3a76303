import io
import json
import os
import sys
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path
from unittest.mock import patch

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from askimage import cli
from askimage.config import API_KEY_ENCODED, ConfigStore, is_first_time_setup
from askimage.credentials import decode_api_key
from askimage.transport import FetchedImage, HttpResponse

API_KEY = "AIza" + "c" * 35


class FakeTransport:
    def __init__(self, *args, **kwargs) -> None:
        self.response = HttpResponse(200, json.dumps({"candidates": [{"content": {"parts": [{"text": "Two birds."}]}}]}))

    async def fetch_bytes(self, url: str) -> FetchedImage:
        return FetchedImage(b"gif", "image/gif")

    async def http_call(self, method, url, *, headers=None, body=None, timeout=None) -> HttpResponse:
        return self.response


class TestCli(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.config = Path(self._tmp.name) / "settings.yml"
        env = patch.dict(os.environ)
        env.start()
        self.addCleanup(env.stop)
        os.environ.pop("GEMINI_API_KEY", None)
        os.environ.pop("GEMINI_API_BASE_URL", None)
        logging_patch = patch.object(cli, "configure_logging")
        logging_patch.start()
        self.addCleanup(logging_patch.stop)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def run_cli(self, *argv: str) -> tuple[int, str, str]:
        out, err = io.StringIO(), io.StringIO()
        with redirect_stdout(out), redirect_stderr(err):
            with self.assertRaises(SystemExit) as ctx:
                cli.main(["--config", str(self.config), *argv])
        return ctx.exception.code, out.getvalue(), err.getvalue()

    def test_parser_commands(self) -> None:
        parser = cli.build_parser()
        args = parser.parse_args(["ask", "cat.png", "What is it?", "--model", "gemini-2.5-pro"])
        self.assertEqual((args.image, args.question, args.model), ("cat.png", "What is it?", "gemini-2.5-pro"))
        self.assertIs(args.func, cli.ask_command)
        self.assertIs(parser.parse_args(["config", "reset"]).func, cli.config_reset_command)

    def test_set_key_rejects_short(self) -> None:
        code, _, err = self.run_cli("config", "set-key", "short")
        self.assertEqual(code, cli.EXIT_FAILURE)
        self.assertIn("Invalid API key format", err)

    def test_set_key_and_show(self) -> None:
        code, out, _ = self.run_cli("config", "set-key", API_KEY)
        self.assertEqual(code, cli.EXIT_OK)
        self.assertNotIn(API_KEY, out)
        self.assertEqual(decode_api_key(ConfigStore(self.config).get(API_KEY_ENCODED)), API_KEY)
        code, out, _ = self.run_cli("config", "show")
        self.assertEqual(code, cli.EXIT_OK)
        self.assertIn("(persisted)", out)
        self.assertNotIn(API_KEY, out)

    def test_set_url_and_model(self) -> None:
        code, out, _ = self.run_cli("config", "set-url", "https://proxy.example.com/api/")
        self.assertEqual(code, cli.EXIT_OK)
        self.assertIn("https://proxy.example.com/api", out)
        self.assertEqual(self.run_cli("config", "set-url", "not a url")[0], cli.EXIT_FAILURE)
        self.assertEqual(self.run_cli("config", "set-model", "gemini-1.5-pro")[0], cli.EXIT_OK)
        self.assertEqual(self.run_cli("config", "set-model", "  ")[0], cli.EXIT_FAILURE)
        _, out, _ = self.run_cli("config", "show")
        self.assertIn("gemini-1.5-pro", out)

    def test_reset(self) -> None:
        self.run_cli("config", "set-key", API_KEY)
        code, _, _ = self.run_cli("config", "reset")
        self.assertEqual(code, cli.EXIT_OK)
        self.assertIsNone(ConfigStore(self.config).get(API_KEY_ENCODED))
        self.assertTrue(is_first_time_setup(ConfigStore(self.config)))

    def test_ask_unconfigured(self) -> None:
        code, out, err = self.run_cli("ask", "cat.png", "What is it?")
        self.assertEqual(code, cli.EXIT_FAILURE)
        self.assertEqual(out, "")
        self.assertIn("Unconfigured", err)

    def test_ask_success(self) -> None:
        self.run_cli("config", "set-key", API_KEY)
        with patch.object(cli, "HttpxTransport", FakeTransport):
            code, out, _ = self.run_cli("ask", "birds.gif", "How many birds?")
        self.assertEqual(code, cli.EXIT_OK)
        self.assertEqual(out.strip(), "Two birds.")

    def test_config_test_without_key(self) -> None:
        code, _, err = self.run_cli("config", "test")
        self.assertEqual(code, cli.EXIT_FAILURE)
        self.assertIn("API key", err)
