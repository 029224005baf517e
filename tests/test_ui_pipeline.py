import os
import re
import sys
import tempfile
import unittest
from pathlib import Path
from unittest import mock


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from contract_cache import ContractCache
from metadata_sources import InMemoryMetadataSource, MetadataFetchError
from pipeline_errors import DESCRIPTOR_FETCH_FAILED, DESCRIPTOR_NOT_FOUND, PipelineError, describe_error
from ui_pipeline import UiPipeline


TASK = {
    "name": "Task",
    "title_field": "subject",
    "is_submittable": 0,
    "fields": [
        {"fieldname": "subject", "fieldtype": "Data", "reqd": 1},
        {"fieldname": "status", "fieldtype": "Select", "options": "Open\nClosed", "in_list_view": 1},
        {"fieldname": "depends", "fieldtype": "Table", "options": "Task Depends On"},
    ],
    "permissions": [{"role": "Projects User", "read": 1, "write": 1}],
}

TASK_DEPENDS_ON = {
    "name": "Task Depends On",
    "istable": 1,
    "fields": [{"fieldname": "task", "fieldtype": "Link", "options": "Task", "in_list_view": 1}],
}

SCRIPT = {
    "name": "Task Form",
    "dt": "Task",
    "enabled": 1,
    "script": 'frappe.ui.form.on("Task", {\n    refresh(frm) {\n        frm.add_custom_button(__("Close"), () => { frm.set_value("status", "Closed"); });\n    }\n});\n',
}


def _source() -> InMemoryMetadataSource:
    return InMemoryMetadataSource(
        descriptors={"Task": TASK, "Task Depends On": TASK_DEPENDS_ON},
        overrides={
            "Task": [
                {"doctype_or_field": "DocField", "field_name": "subject", "property": "in_list_view", "value": "1"},
                {"doctype_or_field": "DocField", "field_name": "ghost", "property": "hidden", "value": "1"},
            ]
        },
        scripts={"Task": [SCRIPT]},
        workflows={"Task": {"workflow_name": "Task Flow", "states": [{"state": "Open"}, {"state": "Closed"}]}},
        methods=["projects.api.close_task"],
    )


class TestBuildContract(unittest.IsolatedAsyncioTestCase):
    async def test_full_build(self) -> None:
        pipeline = UiPipeline(_source())
        contract = await pipeline.build_contract("Task", "plain")
        data = contract.to_dict()
        self.assertEqual(data["list"]["columns"], ["name", "subject", "status"])
        self.assertTrue(data["actions"]["workflow"])
        self.assertEqual(data["actions"]["methods"][0]["method"], "projects.api.close_task")
        self.assertEqual(data["form"]["child_tables"][0]["columns"], ["name", "task"])
        self.assertEqual([e["event"] for e in data["scripts"]["events"]], ["refresh"])
        self.assertEqual([b["label"] for b in data["scripts"]["buttons"]], ["Close"])
        self.assertTrue(data["permissions"]["can_write"])

    async def test_cache_idempotence_without_refetch(self) -> None:
        source = _source()
        pipeline = UiPipeline(source)
        first = await pipeline.build_contract("Task", "plain")
        calls = dict(source.calls)
        second = await pipeline.build_contract("Task", "plain")
        self.assertIs(first, second)
        self.assertEqual(source.calls, calls)

    async def test_invalidate_forces_rebuild(self) -> None:
        source = _source()
        pipeline = UiPipeline(source)
        await pipeline.build_contract("Task", "plain")
        self.assertEqual(pipeline.invalidate("Task"), 1)
        await pipeline.build_contract("Task", "plain")
        self.assertEqual(source.calls["descriptor"], 2)

    async def test_presets_built_separately(self) -> None:
        source = _source()
        cache = ContractCache()
        pipeline = UiPipeline(source, cache=cache)
        plain = await pipeline.build_contract("Task", "plain")
        desk = await pipeline.build_contract("Task", "desk")
        self.assertNotEqual(plain.contract_hash, desk.contract_hash)
        self.assertEqual(len(cache), 2)

    async def test_workflow_failure_is_soft(self) -> None:
        source = _source()
        with mock.patch.object(source, "fetch_workflow", side_effect=MetadataFetchError("workflow", "Task", "503")):
            contract = await UiPipeline(source).build_contract("Task", "plain")
        self.assertFalse(contract.to_dict()["actions"]["workflow"])

    async def test_every_secondary_fetch_failing_still_builds(self) -> None:
        source = _source()
        boom = RuntimeError("down")
        with mock.patch.object(source, "fetch_overrides", side_effect=boom), mock.patch.object(
            source, "fetch_scripts", side_effect=boom
        ), mock.patch.object(source, "fetch_callable_methods", side_effect=boom), mock.patch.object(
            source, "fetch_child_descriptor", side_effect=boom
        ):
            data = (await UiPipeline(source).build_contract("Task", "plain")).to_dict()
        self.assertEqual(data["scripts"], {"events": [], "queries": [], "buttons": []})
        self.assertEqual(data["actions"]["methods"], [])
        self.assertEqual(data["list"]["columns"], ["name", "subject", "status"])
        self.assertEqual(data["form"]["child_tables"][0]["columns"], ["name"])

    async def test_missing_descriptor(self) -> None:
        pipeline = UiPipeline(_source())
        with self.assertRaises(PipelineError) as ctx:
            await pipeline.build_contract("Nope", "plain")
        self.assertEqual(ctx.exception.code, DESCRIPTOR_NOT_FOUND)
        self.assertEqual(ctx.exception.operation, "build_contract")
        self.assertEqual(len(pipeline.cache), 0)

    async def test_descriptor_fetch_failure(self) -> None:
        source = _source()
        with mock.patch.object(source, "fetch_descriptor", side_effect=MetadataFetchError("descriptor", "Task", "timeout")):
            with self.assertRaises(PipelineError) as ctx:
                await UiPipeline(source).build_contract("Task", "plain")
        self.assertEqual(ctx.exception.code, DESCRIPTOR_FETCH_FAILED)
        described = describe_error(ctx.exception)
        self.assertEqual(described["operation"], "build_contract")
        self.assertIn("timeout", described["cause"])

    async def test_unknown_preset(self) -> None:
        with self.assertRaises(ValueError):
            await UiPipeline(_source()).build_contract("Task", "neon")


class TestGenerateAndSync(unittest.IsolatedAsyncioTestCase):
    async def test_generate_files(self) -> None:
        files = await UiPipeline(_source()).generate_files("Task", "dense")
        self.assertEqual(len(files), 7)
        self.assertEqual(files[0].path, "src/pages/task/TaskList.vue")

    async def test_sync_without_destination_returns_files(self) -> None:
        result = await UiPipeline(_source()).sync_files("Task", "plain")
        self.assertEqual(len(result["files"]), 7)
        self.assertIn("contents", result["files"][0])

    async def test_sync_writes_files(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            result = await UiPipeline(_source()).sync_files("Task", "plain", tmp)
            self.assertEqual([f["status"] for f in result["files"]], ["created"] * 7)
            self.assertTrue((Path(tmp) / "src" / "api" / "task.ts").exists())

    async def test_resync_after_metadata_change_refreshes_api_module(self) -> None:
        source = _source()
        pipeline = UiPipeline(source)
        with tempfile.TemporaryDirectory() as tmp:
            await pipeline.sync_files("Task", "plain", tmp)
            api_path = Path(tmp) / "src" / "api" / "task.ts"
            before = api_path.read_text(encoding="utf-8")
            self.assertNotIn("export function submitTask(", before)
            self.assertIn("export function applyWorkflowTask(", before)
            api_path.write_text(before + "export const pinned = () => 1;\n", encoding="utf-8")

            source.add_descriptor(
                dict(TASK, is_submittable=1, fields=TASK["fields"] + [{"fieldname": "priority", "fieldtype": "Int"}])
            )
            source.add_override(
                "Task", {"doctype_or_field": "DocField", "field_name": "priority", "property": "in_list_view", "value": "1"}
            )
            source.add_script(
                "Task",
                {
                    "name": "Task Query",
                    "dt": "Task",
                    "enabled": 1,
                    "script": 'frappe.ui.form.on("Task", {\n    setup(frm) {\n        frm.set_query("status", function() { return {}; });\n    }\n});\n',
                },
            )
            source.set_workflow("Task", None)
            source.add_method("projects.api.reopen_task")
            self.assertEqual(pipeline.invalidate("Task"), 1)

            result = await pipeline.sync_files("Task", "plain", tmp)
            statuses = {f["path"]: f["status"] for f in result["files"]}
            self.assertEqual(statuses["src/api/task.ts"], "merged")

            after = api_path.read_text(encoding="utf-8")
            self.assertIn("export function submitTask(", after)
            self.assertIn("  priority?: number;", after)
            self.assertNotIn("applyWorkflowTask", after)
            self.assertIn("export function callProjectsApiReopenTask(", after)
            self.assertIn("export const pinned = () => 1;", after)
            self.assertEqual(after.count("export interface Task {"), 1)
            self.assertEqual(after.count("export function listTask("), 1)

            detail = (Path(tmp) / "src" / "pages" / "task" / "TaskDetail.vue").read_text(encoding="utf-8")
            imported = re.search(r'import \{(.*?)\} from "\.\./\.\./api/task";', detail, re.S)
            self.assertIsNotNone(imported)
            names = [n.strip().replace("type ", "") for n in imported.group(1).split(",") if n.strip()]
            self.assertIn("submitTask", names)
            for name in names:
                self.assertRegex(after, rf"export (function|const|interface) {name}\b")

        contract = await pipeline.build_contract("Task", "plain")
        data = contract.to_dict()
        self.assertIn("priority", data["list"]["columns"])
        self.assertFalse(data["actions"]["workflow"])
        self.assertEqual([q["fieldname"] for q in data["scripts"]["queries"]], ["status"])


if __name__ == "__main__":
    unittest.main()
