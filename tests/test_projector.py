import json
import tempfile
import unittest
from pathlib import Path

from ccode.errors import CorruptExternalConfig
from ccode.models import Provider, RouterProfile, RouterRules
from ccode.projector import RouterConfigProjector


def provider(name="p1", models=("m1",)):
    return Provider(name, "https://api.example.com/v1/chat/completions", "key", list(models))


class ProjectorTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.path = self.root / "config.json"
        self.projector = RouterConfigProjector(self.path)

    def tearDown(self):
        self._tmp.cleanup()

    def write(self, data):
        self.path.write_text(json.dumps(data), encoding="utf-8")

    def read(self):
        return json.loads(self.path.read_text(encoding="utf-8"))

    def test_missing_file_loads_skeleton(self):
        self.assertEqual(self.projector.load(), {"providers": [], "router": {}, "transformer": {}})

    def test_sync_preserves_unknown_keys_and_transformer(self):
        self.write(
            {
                "providers": [],
                "router": {"default": "old,model", "custom_route": "keep"},
                "transformer": {"x": 1},
                "custom_field": 42,
            }
        )
        profile = RouterProfile("r", RouterRules(default="p1,m1"))

        self.projector.sync([provider()], profile)

        document = self.read()
        self.assertEqual(document["custom_field"], 42)
        self.assertEqual(document["transformer"], {"x": 1})
        self.assertEqual(document["router"], {"default": "p1,m1", "custom_route": "keep"})
        self.assertEqual(document["providers"], [provider().to_dict()])

    def test_single_provider_projection_scenario(self):
        self.write({"providers": [], "router": {}, "transformer": {"use": ["x"]}})
        p1 = provider("p1", ("model-a",))

        self.projector.sync_providers([p1])
        self.projector.sync_router_rule(RouterProfile("r", RouterRules(default="p1,model-a")))

        document = self.read()
        self.assertEqual(document["providers"], [p1.to_dict()])
        self.assertEqual(document["router"], {"default": "p1,model-a"})
        self.assertEqual(document["transformer"], {"use": ["x"]})

    def test_unset_rule_keys_are_removed(self):
        self.write({"router": {"default": "a,b", "think": "a,c", "longContextThreshold": 1000}})

        self.projector.sync_router_rule(RouterProfile("r", RouterRules(default="p1,m1", long_context_threshold=60000)))

        self.assertEqual(self.read()["router"], {"default": "p1,m1", "longContextThreshold": 60000})

    def test_capitalised_nodes_keep_their_casing(self):
        self.write({"Providers": [{"name": "old"}], "Router": {"default": "old,x"}, "LOG": True})

        self.projector.sync([provider()], RouterProfile("r", RouterRules(default="p1,m1")))

        document = self.read()
        self.assertNotIn("providers", document)
        self.assertNotIn("router", document)
        self.assertEqual(document["Providers"][0]["name"], "p1")
        self.assertEqual(document["Router"]["default"], "p1,m1")
        self.assertTrue(document["LOG"])

    def test_sync_providers_leaves_router_alone(self):
        self.write({"providers": [], "router": {"default": "a,b"}})

        self.projector.sync_providers([provider("p1"), provider("p2")])

        document = self.read()
        self.assertEqual([item["name"] for item in document["providers"]], ["p1", "p2"])
        self.assertEqual(document["router"], {"default": "a,b"})

    def test_corrupt_document_is_left_untouched(self):
        self.path.write_text("{this is not json", encoding="utf-8")
        before = self.path.read_bytes()

        with self.assertRaises(CorruptExternalConfig):
            self.projector.sync([provider()])

        self.assertEqual(self.path.read_bytes(), before)
        self.assertFalse((self.root / "backups").exists())

    def test_non_object_router_node_is_rejected(self):
        self.write({"router": ["bad"]})

        with self.assertRaises(CorruptExternalConfig):
            self.projector.sync_router_rule(RouterProfile("r", RouterRules(default="p1,m1")))

    def test_write_backs_up_existing_file(self):
        self.write({"providers": []})

        self.projector.sync_providers([provider()])

        backups = list((self.root / "backups").iterdir())
        self.assertEqual(len(backups), 1)
        self.assertEqual(json.loads(backups[0].read_text(encoding="utf-8")), {"providers": []})

    def test_backup_can_be_disabled(self):
        self.write({"providers": []})
        projector = RouterConfigProjector(self.path, backup=False)

        projector.sync_providers([provider()])

        self.assertFalse((self.root / "backups").exists())

    def test_relaxed_document_is_readable(self):
        self.path.write_text(
            '{\n  // providers\n  "Providers": [{"name": "p1", "api_base_url": "https://x.test", "api_key": "k", "models": ["m1"],}],\n'
            '  "Router": {"default": "p1,m1", "longContextThreshold": 60000,},\n}',
            encoding="utf-8",
        )

        providers = self.projector.read_providers()
        rules = self.projector.read_router_rules()

        self.assertEqual([p.name for p in providers], ["p1"])
        self.assertEqual(rules.default, "p1,m1")
        self.assertEqual(rules.long_context_threshold, 60000)

    def test_unknown_provider_keys_survive_a_sync(self):
        self.write({"Providers": [{"name": "p", "api_base_url": "https://p.test", "api_key": "k", "models": ["m"], "max_retries": 3}]})

        providers = self.projector.read_providers()
        self.projector.sync_providers(providers)

        self.assertEqual(self.read()["Providers"][0]["max_retries"], 3)

    def test_non_finite_threshold_is_corrupt(self):
        self.path.write_text('{"Router": {"default": "p1,m1", "longContextThreshold": 1e400}}', encoding="utf-8")

        with self.assertRaises(CorruptExternalConfig):
            self.projector.read_router_rules()

    def test_read_router_rules_without_default(self):
        self.write({"router": {"think": "a,b"}})

        self.assertIsNone(self.projector.read_router_rules())


if __name__ == "__main__":
    unittest.main()
