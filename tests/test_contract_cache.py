import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from contract_build import Preset, build_ui_contract
from contract_cache import ContractCache, cache_key


def _contract(doctype: str = "ToDo", preset: str = "plain"):
    descriptor = {"name": doctype, "fields": [{"fieldname": "description", "fieldtype": "Text", "in_list_view": 1}]}
    return build_ui_contract(doctype, preset, descriptor)


class TestContractCache(unittest.IsolatedAsyncioTestCase):
    async def test_get_or_build_memoizes(self) -> None:
        cache = ContractCache()
        builds = []

        async def build():
            builds.append(1)
            return _contract()

        first = await cache.get_or_build("ToDo", "plain", build)
        second = await cache.get_or_build("ToDo", Preset.PLAIN, build)
        self.assertIs(first, second)
        self.assertEqual(len(builds), 1)

    async def test_preset_is_part_of_key(self) -> None:
        cache = ContractCache()

        async def build_plain():
            return _contract(preset="plain")

        async def build_dense():
            return _contract(preset="dense")

        await cache.get_or_build("ToDo", "plain", build_plain)
        await cache.get_or_build("ToDo", "dense", build_dense)
        self.assertEqual(cache.keys(), [("ToDo", "dense"), ("ToDo", "plain")])

    async def test_build_failure_not_cached(self) -> None:
        cache = ContractCache()

        async def build():
            raise RuntimeError("boom")

        with self.assertRaises(RuntimeError):
            await cache.get_or_build("ToDo", "plain", build)
        self.assertEqual(len(cache), 0)


class TestInvalidate(unittest.TestCase):
    def test_invalidate_single_preset(self) -> None:
        cache = ContractCache()
        cache.put(_contract(preset="plain"))
        cache.put(_contract(preset="desk"))
        self.assertEqual(cache.invalidate("ToDo", "plain"), 1)
        self.assertIsNone(cache.get("ToDo", "plain"))
        self.assertIsNotNone(cache.get("ToDo", "desk"))

    def test_invalidate_all_presets(self) -> None:
        cache = ContractCache()
        cache.put(_contract(preset="plain"))
        cache.put(_contract(preset="desk"))
        cache.put(_contract(doctype="Note"))
        self.assertEqual(cache.invalidate("ToDo"), 2)
        self.assertEqual(cache.keys(), [("Note", "plain")])

    def test_invalidate_missing(self) -> None:
        self.assertEqual(ContractCache().invalidate("ToDo", "plain"), 0)

    def test_contains_and_clear(self) -> None:
        cache = ContractCache()
        cache.put(_contract())
        self.assertIn(cache_key("ToDo", "plain"), cache)
        cache.clear()
        self.assertEqual(len(cache), 0)


if __name__ == "__main__":
    unittest.main()
