import os
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

import file_sync
from codegen import GeneratedFile, generate_files
from contract_build import build_ui_contract
from file_sync import merge_regions, regions, sync_files
from pipeline_errors import SYNC_PATH_INVALID, SYNC_WRITE_FAILED, PipelineError


GENERATED_V1 = """// Generated by forge from DocType "Task" (sha256:aaa, preset plain).
import { resource } from "../runtime/resource";

// <forge:generated contract>
export const CONTRACT = { "v": 1 };
// </forge:generated contract>

export const list = () => resource.list("Task");
"""

GENERATED_V2 = GENERATED_V1.replace('{ "v": 1 }', '{ "v": 2 }').replace("sha256:aaa", "sha256:bbb")


class TestMergeRegions(unittest.TestCase):
    def test_regions_found(self) -> None:
        found = regions(GENERATED_V1)
        self.assertEqual(list(found), ["contract"])
        self.assertIn('"v": 1', found["contract"])

    def test_hand_edits_survive(self) -> None:
        edited = GENERATED_V1 + "\nexport const extra = () => 42;\n"
        merged = merge_regions(edited, GENERATED_V2)
        self.assertIn('"v": 2', merged)
        self.assertNotIn('"v": 1', merged)
        self.assertIn("export const extra = () => 42;", merged)
        self.assertTrue(merged.startswith('// Generated by forge from DocType "Task" (sha256:bbb'))

    def test_no_markers_overwrites(self) -> None:
        self.assertEqual(merge_regions("hand written\n", GENERATED_V2), GENERATED_V2)

    def test_new_region_appended(self) -> None:
        generated = GENERATED_V2 + "\n// <forge:generated methods>\nexport const m = 1;\n// </forge:generated methods>\n"
        merged = merge_regions(GENERATED_V1, generated)
        self.assertIn("export const m = 1;", merged)
        self.assertIn('"v": 2', merged)


class TestSyncFiles(unittest.TestCase):
    def test_no_destination_returns_files(self) -> None:
        files = [GeneratedFile("a.ts", "x")]
        result = sync_files(files)
        self.assertEqual(result["files"], [{"path": "a.ts", "contents": "x"}])
        self.assertIn("1", result["message"])

    def test_writes_and_creates_dirs(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            result = sync_files([GeneratedFile("src/api/task.ts", GENERATED_V1)], tmp)
            target = Path(tmp) / "src" / "api" / "task.ts"
            self.assertEqual(target.read_text(encoding="utf-8"), GENERATED_V1)
            self.assertEqual(result["files"], [{"path": "src/api/task.ts", "status": "created"}])
            self.assertEqual(os.listdir(target.parent), ["task.ts"])

    def test_regeneration_preserves_edits(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            sync_files([GeneratedFile("api.ts", GENERATED_V1)], tmp)
            target = Path(tmp) / "api.ts"
            target.write_text(GENERATED_V1 + "// mine\n", encoding="utf-8")
            result = sync_files([GeneratedFile("api.ts", GENERATED_V2)], tmp)
            text = target.read_text(encoding="utf-8")
            self.assertIn("// mine", text)
            self.assertIn('"v": 2', text)
            self.assertEqual(result["files"][0]["status"], "merged")

    def test_regenerated_api_module_follows_contract(self) -> None:
        base = {
            "name": "Task",
            "is_submittable": 0,
            "fields": [{"fieldname": "subject", "fieldtype": "Data", "in_list_view": 1}],
            "permissions": [{"read": 1, "write": 1}],
        }
        v1 = generate_files(build_ui_contract("Task", "plain", base))
        v2 = generate_files(
            build_ui_contract(
                "Task",
                "plain",
                dict(base, is_submittable=1, fields=base["fields"] + [{"fieldname": "estimate", "fieldtype": "Float"}]),
            )
        )
        with tempfile.TemporaryDirectory() as tmp:
            sync_files(v1, tmp)
            target = Path(tmp) / "src" / "api" / "task.ts"
            target.write_text(target.read_text(encoding="utf-8") + "// mine\n", encoding="utf-8")
            sync_files(v2, tmp)
            text = target.read_text(encoding="utf-8")
        self.assertIn("// mine", text)
        self.assertIn("  estimate?: number;", text)
        self.assertIn("export function submitTask(", text)
        self.assertEqual(text.count("export interface Task {"), 1)
        self.assertEqual(regions(text)["api"], regions(v2[2].contents)["api"])

    def test_unchanged(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            sync_files([GeneratedFile("a.vue", "<template/>\n")], tmp)
            result = sync_files([GeneratedFile("a.vue", "<template/>\n")], tmp)
            self.assertEqual(result["files"][0]["status"], "unchanged")

    def test_path_escape_rejected(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            with self.assertRaises(PipelineError) as ctx:
                sync_files([GeneratedFile("../outside.ts", "x")], tmp)
            self.assertEqual(ctx.exception.code, SYNC_PATH_INVALID)
            self.assertFalse((Path(tmp).parent / "outside.ts").exists())

    def test_absolute_path_rejected(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            with self.assertRaises(PipelineError) as ctx:
                sync_files([GeneratedFile(os.path.join(tmp, "abs.ts"), "x")], tmp)
            self.assertEqual(ctx.exception.code, SYNC_PATH_INVALID)

    def test_sync_root_enforced(self) -> None:
        with tempfile.TemporaryDirectory() as root, tempfile.TemporaryDirectory() as other:
            with mock.patch.object(file_sync, "SYNC_ROOT", root):
                with self.assertRaises(PipelineError):
                    sync_files([GeneratedFile("a.ts", "x")], other)
                result = sync_files([GeneratedFile("a.ts", "x")], "app")
            self.assertTrue((Path(root) / "app" / "a.ts").exists())
            self.assertEqual(result["files"][0]["status"], "created")

    def test_write_failure(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            (Path(tmp) / "src").write_text("a file, not a directory", encoding="utf-8")
            with self.assertRaises(PipelineError) as ctx:
                sync_files([GeneratedFile("src/api/task.ts", "x")], tmp)
            self.assertEqual(ctx.exception.code, SYNC_WRITE_FAILED)
            self.assertIsNotNone(ctx.exception.cause)

    def test_failure_stops_later_writes(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            files = [GeneratedFile("ok.ts", "1"), GeneratedFile("../bad.ts", "2"), GeneratedFile("later.ts", "3")]
            with self.assertRaises(PipelineError):
                sync_files(files, tmp)
            self.assertTrue((Path(tmp) / "ok.ts").exists())
            self.assertFalse((Path(tmp) / "later.ts").exists())


if __name__ == "__main__":
    unittest.main()
