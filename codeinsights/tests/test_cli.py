import io
import json
import unittest
from contextlib import redirect_stderr, redirect_stdout
from unittest.mock import patch

from codeinsights import cli


class CliTests(unittest.TestCase):
    def test_unknown_source_exits_with_usage_error(self) -> None:
        stderr = io.StringIO()
        with redirect_stderr(stderr), patch("codeinsights.cli._open_store") as open_store:
            exit_code = cli.main(["sync", "--source", "nope"])

        self.assertEqual(exit_code, cli.EXIT_USAGE)
        self.assertIn("Unknown provider: nope", stderr.getvalue())
        open_store.assert_not_called()

    def test_parser_accepts_sync_flags(self) -> None:
        args = cli.build_parser().parse_args(
            ["sync", "-f", "-p", "api", "--dry-run", "-q", "-s", "cursor"]
        )
        self.assertTrue(args.force)
        self.assertEqual(args.project, "api")
        self.assertTrue(args.dry_run)
        self.assertTrue(args.quiet)
        self.assertEqual(args.source, "cursor")

    def test_missing_command_is_rejected(self) -> None:
        with redirect_stderr(io.StringIO()), self.assertRaises(SystemExit) as ctx:
            cli.build_parser().parse_args([])
        self.assertEqual(ctx.exception.code, 2)

    def test_install_and_uninstall_hook_commands(self) -> None:
        import tempfile
        from pathlib import Path

        with tempfile.TemporaryDirectory() as tmp:
            settings_file = Path(tmp) / "settings.json"
            with patch("codeinsights.config.CLAUDE_SETTINGS_FILE", settings_file), redirect_stdout(io.StringIO()) as out:
                self.assertEqual(cli.main(["install-hook"]), cli.EXIT_OK)
                self.assertEqual(cli.main(["install-hook"]), cli.EXIT_OK)
                installed = json.loads(settings_file.read_text(encoding="utf-8"))
                self.assertEqual(cli.main(["uninstall-hook"]), cli.EXIT_OK)

        self.assertIn("Stop", installed["hooks"])
        self.assertIn("already installed", out.getvalue())
        self.assertIn("Hook uninstalled.", out.getvalue())

    def test_reset_store_requires_confirmation(self) -> None:
        with patch("codeinsights.cli._confirm", return_value=False), redirect_stdout(io.StringIO()) as out:
            exit_code = cli.main(["reset", "--store"])
        self.assertEqual(exit_code, cli.EXIT_FAILURE)
        self.assertIn("Aborted.", out.getvalue())


if __name__ == "__main__":
    unittest.main()
