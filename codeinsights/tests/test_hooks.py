import json
import tempfile
import unittest
from pathlib import Path

from codeinsights.errors import CodeInsightsError
from codeinsights.hooks import install_hook, is_hook_installed, uninstall_hook


class ClaudeHookTests(unittest.TestCase):
    def setUp(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        self.settings_file = Path(tmpdir.name) / ".claude" / "settings.json"

    def _settings(self) -> dict:
        return json.loads(self.settings_file.read_text(encoding="utf-8"))

    def test_install_creates_settings_and_is_idempotent(self) -> None:
        self.assertFalse(is_hook_installed(self.settings_file))

        self.assertTrue(install_hook(self.settings_file, command="code-insights sync -q"))
        self.assertFalse(install_hook(self.settings_file, command="code-insights sync -q"))

        stop_hooks = self._settings()["hooks"]["Stop"]
        self.assertEqual(len(stop_hooks), 1)
        self.assertEqual(stop_hooks[0]["hooks"], [{"type": "command", "command": "code-insights sync -q"}])
        self.assertTrue(is_hook_installed(self.settings_file))

    def test_install_keeps_existing_settings_and_hooks(self) -> None:
        self.settings_file.parent.mkdir(parents=True)
        self.settings_file.write_text(
            json.dumps(
                {
                    "model": "opus",
                    "hooks": {"Stop": [{"matcher": "", "hooks": [{"type": "command", "command": "notify-send done"}]}]},
                }
            ),
            encoding="utf-8",
        )

        install_hook(self.settings_file, command="code-insights sync -q")

        settings = self._settings()
        self.assertEqual(settings["model"], "opus")
        self.assertEqual(len(settings["hooks"]["Stop"]), 2)

        self.assertTrue(uninstall_hook(self.settings_file))
        settings = self._settings()
        self.assertEqual(
            settings["hooks"]["Stop"],
            [{"matcher": "", "hooks": [{"type": "command", "command": "notify-send done"}]}],
        )

    def test_uninstall_removes_empty_sections(self) -> None:
        install_hook(self.settings_file, command="code-insights sync -q")
        self.assertTrue(uninstall_hook(self.settings_file))
        self.assertEqual(self._settings(), {})
        self.assertFalse(uninstall_hook(self.settings_file))

    def test_legacy_string_hooks_are_recognized(self) -> None:
        self.settings_file.parent.mkdir(parents=True)
        self.settings_file.write_text(
            json.dumps({"hooks": {"Stop": [{"hooks": ["code-insights sync -q"]}]}}),
            encoding="utf-8",
        )
        self.assertTrue(is_hook_installed(self.settings_file))
        self.assertFalse(install_hook(self.settings_file))

    def test_missing_settings_file_uninstall_is_noop(self) -> None:
        self.assertFalse(uninstall_hook(self.settings_file))
        self.assertFalse(self.settings_file.exists())

    def test_invalid_settings_are_not_overwritten(self) -> None:
        self.settings_file.parent.mkdir(parents=True)
        self.settings_file.write_text("{broken", encoding="utf-8")

        with self.assertRaises(CodeInsightsError):
            install_hook(self.settings_file)
        self.assertEqual(self.settings_file.read_text(encoding="utf-8"), "{broken")


if __name__ == "__main__":
    unittest.main()
