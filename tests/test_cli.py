import json
import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import MagicMock, patch

from ccode.cli import COMMANDS, build_arg_parser, build_context, main
from ccode.errors import ProviderInUse
from ccode.settings import ROUTER_PATH_ENV, STORE_PATH_ENV, Settings, SettingsManager
from ccode.store import Store


class FakeUI:
    def __init__(self, answers=None, confirm=True):
        self.answers = list(answers or [])
        self.confirm_answer = confirm
        self.messages = []
        self.tables = []

    def display_message(self, content, style=None):
        self.messages.append(content)

    def print_success(self, msg):
        self.messages.append(msg)

    def print_error(self, msg):
        self.messages.append(msg)

    def print_warning(self, msg):
        self.messages.append(msg)

    def print_info(self, msg):
        self.messages.append(msg)

    def ask(self, prompt, default=None, password=False):
        if self.answers:
            return self.answers.pop(0)
        return default or ""

    def confirm(self, prompt, default=False):
        return self.confirm_answer

    def display_direct_profiles(self, rows):
        self.tables.append(("direct", rows))

    def display_router_profiles(self, rows):
        self.tables.append(("router", rows))

    def display_providers(self, providers):
        self.tables.append(("providers", providers))

    def display_provider(self, provider):
        self.tables.append(("provider", provider))

    def display_stats(self, stats):
        self.tables.append(("stats", stats))

    def display_settings(self, settings):
        self.tables.append(("settings", settings))


class CliTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.store_path = self.root / "store.json"
        self.ccr_path = self.root / "ccr" / "config.json"
        self._env = patch.dict(os.environ)
        self._env.start()
        os.environ.pop(STORE_PATH_ENV, None)
        os.environ.pop(ROUTER_PATH_ENV, None)
        self.ui = FakeUI()
        settings = Settings(store_path=str(self.store_path), router_config_path=str(self.ccr_path))
        self.ctx = build_context(settings, self.ui)

    def tearDown(self):
        self._env.stop()
        self._tmp.cleanup()

    def run_cli(self, *argv):
        args = build_arg_parser().parse_args(list(argv))
        return COMMANDS[args.command](args, self.ctx)

    def ccr_document(self):
        return json.loads(self.ccr_path.read_text(encoding="utf-8"))

    def add_deepseek(self):
        return self.run_cli(
            "provider", "add", "ds",
            "--type", "deepseek",
            "--url", "https://api.deepseek.com/chat/completions",
            "--key", "sk-test",
            "--models", "deepseek-chat, deepseek-reasoner",
        )

    def test_parser_accepts_group_alias(self):
        args = build_arg_parser().parse_args(["use", "fast", "--group", "ccr"])

        self.assertEqual(args.command, "use")
        self.assertEqual(args.group, "ccr")

    def test_add_and_list_direct_profiles(self):
        self.assertEqual(self.run_cli("add", "work", "--token", "tok", "--url", "https://api.example.com"), 0)
        self.assertEqual(self.run_cli("add", "home", "--token", "tok2", "--url", "https://home.test", "--description", "h"), 0)

        self.assertEqual(self.run_cli("list", "--group", "direct"), 0)

        kind, rows = self.ui.tables[-1]
        self.assertEqual(kind, "direct")
        self.assertEqual([(name, is_default) for name, _, is_default in rows], [("work", True), ("home", False)])
        self.assertFalse(self.ccr_path.exists())

    def test_add_prompts_for_missing_fields(self):
        self.ui.answers = ["prompted-token", "https://prompted.test", "desc"]

        self.run_cli("add", "work")

        profile = Store.load(self.store_path).get_profile("direct", "work")
        self.assertEqual(profile.auth_token, "prompted-token")
        self.assertEqual(profile.base_url, "https://prompted.test")
        self.assertEqual(profile.description, "desc")

    def test_use_and_remove_direct(self):
        self.run_cli("add", "alpha", "--token", "t", "--url", "https://a.test", "--description", "")
        self.run_cli("add", "beta", "--token", "t", "--url", "https://b.test", "--description", "")

        self.run_cli("use", "beta")
        self.run_cli("remove", "beta", "--yes")

        self.assertEqual(Store.load(self.store_path).group("direct").default_profile, "alpha")

    def test_remove_can_be_cancelled(self):
        self.run_cli("add", "alpha", "--token", "t", "--url", "https://a.test", "--description", "")
        self.ui.confirm_answer = False

        self.run_cli("remove", "alpha")

        self.assertIn("alpha", Store.load(self.store_path).group("direct").profiles)

    def test_edit_keeps_unspecified_fields(self):
        self.run_cli("add", "work", "--token", "t", "--url", "https://a.test", "--model", "m", "--description", "d")

        self.run_cli("edit", "work", "--token", "new", "--url", "https://a.test")

        profile = Store.load(self.store_path).get_profile("direct", "work")
        self.assertEqual(profile.auth_token, "new")
        self.assertEqual(profile.model, "m")
        self.assertEqual(profile.description, "d")

    def test_provider_add_projects_provider_list(self):
        self.assertEqual(self.add_deepseek(), 0)

        document = self.ccr_document()
        self.assertEqual(document["router"], {})
        self.assertEqual(document["transformer"], {})
        provider = document["providers"][0]
        self.assertEqual(provider["name"], "ds")
        self.assertEqual(provider["models"], ["deepseek-chat", "deepseek-reasoner"])
        self.assertEqual(provider["transformer"]["use"], ["deepseek"])

    def test_router_profile_is_applied_when_default(self):
        self.add_deepseek()

        status = self.run_cli("add", "fast", "--group", "ccr", "--default-route", "ds,deepseek-chat", "--think", "ds,deepseek-reasoner", "--description", "")

        self.assertEqual(status, 0)
        router = self.ccr_document()["router"]
        self.assertEqual(router["default"], "ds,deepseek-chat")
        self.assertEqual(router["think"], "ds,deepseek-reasoner")
        self.assertEqual(router["longContextThreshold"], 60000)

    def test_use_switches_router_rules(self):
        self.add_deepseek()
        self.run_cli("add", "fast", "--group", "ccr", "--default-route", "ds,deepseek-chat", "--description", "")
        self.run_cli("add", "deep", "--group", "ccr", "--default-route", "ds,deepseek-reasoner", "--description", "")
        self.assertEqual(self.ccr_document()["router"]["default"], "ds,deepseek-chat")

        self.run_cli("use", "deep", "--group", "ccr")

        self.assertEqual(self.ccr_document()["router"]["default"], "ds,deepseek-reasoner")

    def test_dangling_provider_saves_locally_but_skips_projection(self):
        self.add_deepseek()
        before = self.ccr_document()

        status = self.run_cli("add", "ghosty", "--group", "ccr", "--default-route", "ghost,model", "--description", "")

        self.assertEqual(status, 1)
        self.assertIn("ghosty", Store.load(self.store_path).group("router").profiles)
        self.assertEqual(self.ccr_document(), before)

    def test_provider_remove_in_use_is_rejected(self):
        self.add_deepseek()
        self.run_cli("add", "fast", "--group", "ccr", "--default-route", "ds,deepseek-chat", "--description", "")

        with self.assertRaises(ProviderInUse):
            self.run_cli("provider", "remove", "ds", "--yes")
        self.assertIn("ds", Store.load(self.store_path).providers)

    def test_provider_edit_regenerates_transformer(self):
        self.add_deepseek()

        self.run_cli("provider", "edit", "ds", "--models", "deepseek-reasoner")

        provider = self.ccr_document()["providers"][0]
        self.assertEqual(provider["models"], ["deepseek-reasoner"])
        self.assertEqual(provider["transformer"], {"use": ["deepseek"]})

    def test_import_adopts_router_config(self):
        self.ccr_path.parent.mkdir(parents=True)
        self.ccr_path.write_text(
            json.dumps(
                {
                    "Providers": [{"name": "or", "api_base_url": "https://openrouter.ai/api/v1/chat/completions", "api_key": "k", "models": ["m"]}],
                    "Router": {"default": "or,m"},
                    "LOG": True,
                }
            ),
            encoding="utf-8",
        )

        self.assertEqual(self.run_cli("import"), 0)

        store = Store.load(self.store_path)
        self.assertIn("or", store.providers)
        self.assertEqual(store.group("router").default_profile, "default")

    def test_router_commands_keep_providers_configured_directly(self):
        self.ccr_path.parent.mkdir(parents=True)
        self.ccr_path.write_text(
            json.dumps({"Providers": [{"name": "manual", "api_base_url": "https://m.test", "api_key": "k", "models": ["m"]}], "Router": {}}),
            encoding="utf-8",
        )

        self.add_deepseek()

        names = [provider["name"] for provider in self.ccr_document()["Providers"]]
        self.assertEqual(names, ["manual", "ds"])

    def test_run_direct_launches_claude_with_env(self):
        self.run_cli("add", "work", "--token", "tok", "--url", "https://api.example.com", "--description", "")

        with patch("ccode.cli.subprocess.run", return_value=MagicMock(returncode=0)) as run_mock:
            status = self.run_cli("run", "work", "--verbose")

        self.assertEqual(status, 0)
        command = run_mock.call_args.args[0]
        env = run_mock.call_args.kwargs["env"]
        self.assertEqual(command, ["claude", "--verbose"])
        self.assertEqual(env["ANTHROPIC_AUTH_TOKEN"], "tok")
        self.assertNotIn("ANTHROPIC_MODEL", env)

    def test_run_router_projects_then_launches_ccr(self):
        self.add_deepseek()
        self.run_cli("add", "fast", "--group", "ccr", "--default-route", "ds,deepseek-chat", "--description", "")

        with patch("ccode.cli.subprocess.run", return_value=MagicMock(returncode=0)) as run_mock:
            status = self.run_cli("run", "--group", "ccr")

        self.assertEqual(status, 0)
        self.assertEqual(run_mock.call_args.args[0], ["ccr", "code"])

    def test_legacy_store_is_upgraded_on_first_command(self):
        self.store_path.write_text(
            json.dumps(
                {
                    "version": "1.0",
                    "default_profile": {"direct": "work"},
                    "groups": {"direct": {"work": {"ANTHROPIC_AUTH_TOKEN": "t", "ANTHROPIC_BASE_URL": "https://w.test"}}},
                }
            ),
            encoding="utf-8",
        )

        self.assertEqual(self.run_cli("list"), 0)

        raw = json.loads(self.store_path.read_text(encoding="utf-8"))
        self.assertEqual(raw["version"], "2.0")
        self.assertEqual(raw["groups"]["direct"]["default_profile"], "work")
        self.assertIn("Upgraded profile store to version 2.0", self.ui.messages)

    def test_settings_command_saves_changes(self):
        manager = SettingsManager(self.root / "ccode.toml")
        self.ctx.settings_manager = manager

        self.assertEqual(self.run_cli("settings", "--backups", "off", "--claude-command", "my-claude"), 0)

        saved = manager.load_settings()
        self.assertFalse(saved.backup)
        self.assertEqual(saved.claude_command, "my-claude")
        self.assertEqual(self.ui.tables[-1], ("settings", saved))

    def test_settings_command_without_flags_only_displays(self):
        manager = SettingsManager(self.root / "ccode.toml")
        self.ctx.settings_manager = manager

        self.run_cli("settings")

        self.assertFalse(manager.config_file.exists())
        self.assertEqual(self.ui.tables[-1][0], "settings")

    def test_provider_edit_keeps_unknown_keys(self):
        self.ccr_path.parent.mkdir(parents=True)
        self.ccr_path.write_text(
            json.dumps({"providers": [{"name": "p", "api_base_url": "https://p.test", "api_key": "k", "models": ["m"], "max_retries": 3}]}),
            encoding="utf-8",
        )

        self.run_cli("provider", "edit", "p", "--key", "new-key")

        provider = self.ccr_document()["providers"][0]
        self.assertEqual(provider["api_key"], "new-key")
        self.assertEqual(provider["max_retries"], 3)

    def test_run_missing_binary(self):
        self.run_cli("add", "work", "--token", "tok", "--url", "https://api.example.com", "--description", "")

        with patch("ccode.cli.subprocess.run", side_effect=FileNotFoundError):
            self.assertEqual(self.run_cli("run"), 127)


class MainTests(unittest.TestCase):
    def test_errors_exit_with_status_one(self):
        with tempfile.TemporaryDirectory() as tmp_dir:
            root = Path(tmp_dir)
            settings_file = root / "ccode.toml"
            settings_file.write_text(
                f'store_path = "{(root / "store.json").as_posix()}"\nrouter_config_path = "{(root / "ccr.json").as_posix()}"\n',
                encoding="utf-8",
            )
            with patch.dict(os.environ):
                os.environ.pop(STORE_PATH_ENV, None)
                os.environ.pop(ROUTER_PATH_ENV, None)
                status = main(["--settings", str(settings_file), "use", "ghost"])

        self.assertEqual(status, 1)


if __name__ == "__main__":
    unittest.main()
