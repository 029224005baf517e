import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from contract_build import (
    ContractLimits,
    Preset,
    build_contract_payload,
    build_ui_contract,
    child_tables,
    form_sections,
    list_columns,
    list_filters,
    parse_preset,
    permission_summary,
    slugify,
)
from script_extract import extract_from_text


def _sales_order() -> dict:
    return {
        "name": "Sales Order",
        "title_field": "customer_name",
        "sort_field": "transaction_date",
        "sort_order": "ASC",
        "is_submittable": 1,
        "fields": [
            {"fieldname": "customer", "fieldtype": "Link", "options": "Customer", "reqd": 1, "in_standard_filter": 1},
            {"fieldname": "customer_name", "fieldtype": "Data", "label": "Customer Name"},
            {"fieldname": "col1", "fieldtype": "Column Break"},
            {"fieldname": "status", "fieldtype": "Select", "options": "\nDraft\nCompleted", "in_list_view": 1},
            {"fieldname": "items_section", "fieldtype": "Section Break", "label": "Items"},
            {"fieldname": "items", "fieldtype": "Table", "options": "Sales Order Item", "reqd": 1},
            {"fieldname": "totals", "fieldtype": "Section Break"},
            {"fieldname": "grand_total", "fieldtype": "Currency", "in_list_view": 1, "read_only": 1},
            {"fieldname": "notes", "fieldtype": "Text", "depends_on": "eval:doc.status=='Draft'"},
            {"fieldname": "attachment", "fieldtype": "Attach"},
        ],
        "permissions": [
            {"role": "Sales User", "read": 1, "write": 1, "create": 1, "submit": 0},
            {"role": "Sales Manager", "read": 1, "submit": 1, "cancel": 1},
        ],
    }


def _item() -> dict:
    return {
        "name": "Sales Order Item",
        "istable": 1,
        "fields": [
            {"fieldname": "item_code", "fieldtype": "Link", "options": "Item", "in_list_view": 1},
            {"fieldname": "qty", "fieldtype": "Float", "in_list_view": 1, "label": "Quantity"},
            {"fieldname": "rate", "fieldtype": "Currency", "in_list_view": 1},
            {"fieldname": "amount", "fieldtype": "Currency", "in_list_view": 1},
            {"fieldname": "warehouse", "fieldtype": "Link", "options": "Warehouse", "in_list_view": 1},
        ],
    }


class TestListSpec(unittest.TestCase):
    def test_column_derivation(self) -> None:
        descriptor = {
            "name": "X",
            "fields": [
                {"fieldname": "a", "fieldtype": "Data", "in_list_view": 1},
                {"fieldname": "title_field", "fieldtype": "Data", "is_title": 1},
            ],
        }
        self.assertEqual(list_columns(descriptor), ["name", "title_field", "a"])

    def test_columns_deduped_and_capped(self) -> None:
        fields = [{"fieldname": f"f{i}", "fieldtype": "Data", "in_list_view": 1} for i in range(12)]
        fields.append({"fieldname": "name", "fieldtype": "Data", "in_list_view": 1})
        columns = list_columns({"name": "X", "title_field": "f0", "fields": fields})
        self.assertEqual(len(columns), 8)
        self.assertEqual(columns[:3], ["name", "f0", "f1"])
        self.assertEqual(len(set(columns)), len(columns))

    def test_table_fields_not_columns(self) -> None:
        columns = list_columns({"name": "X", "fields": [{"fieldname": "rows", "fieldtype": "Table", "in_list_view": 1}]})
        self.assertEqual(columns, ["name"])

    def test_filters(self) -> None:
        filters = list_filters(_sales_order())
        self.assertEqual([f["fieldname"] for f in filters], ["customer", "status"])
        self.assertEqual(filters[0]["doctype"], "Customer")
        self.assertEqual(filters[1]["options"], ["Draft", "Completed"])

    def test_filter_cap(self) -> None:
        fields = [{"fieldname": f"d{i}", "fieldtype": "Date"} for i in range(5)]
        self.assertEqual(len(list_filters({"fields": fields}, cap=2)), 2)
        self.assertEqual(list_filters({"fields": fields}, cap=0), [])


class TestFormSpec(unittest.TestCase):
    def test_sections(self) -> None:
        sections = form_sections(_sales_order())
        self.assertEqual([s["title"] for s in sections], ["Main", "Items", "Section 3"])
        self.assertEqual(sections[0]["fields"], ["customer", "customer_name", "status"])
        self.assertEqual(sections[2]["fields"], ["grand_total", "notes", "attachment"])

    def test_empty_descriptor_has_main_section(self) -> None:
        self.assertEqual(form_sections({"fields": []}), [{"id": "main", "title": "Main", "fields": []}])

    def test_child_tables_use_child_columns(self) -> None:
        tables = child_tables(_sales_order(), {"Sales Order Item": _item()})
        self.assertEqual(len(tables), 1)
        self.assertEqual(tables[0]["columns"], ["name", "item_code", "qty", "rate"])
        self.assertEqual(tables[0]["column_labels"]["qty"], "Quantity")
        self.assertTrue(tables[0]["resolved"])

    def test_child_table_failure_defaults(self) -> None:
        tables = child_tables(_sales_order(), {"Sales Order Item": None})
        self.assertEqual(tables[0]["columns"], ["name"])
        self.assertFalse(tables[0]["resolved"])


class TestPermissions(unittest.TestCase):
    def test_or_reduction(self) -> None:
        summary = permission_summary([{"read": 0, "write": 1}, {"read": 1, "write": 0}])
        self.assertTrue(summary["can_read"])
        self.assertTrue(summary["can_write"])
        self.assertFalse(summary["can_create"])

    def test_no_rows(self) -> None:
        self.assertFalse(any(permission_summary(None).values()))


class TestPayload(unittest.TestCase):
    def _payload(self, **kwargs) -> dict:
        text = 'frappe.ui.form.on("Sales Order", { refresh(frm) { frm.trigger("x"); } });'
        return build_contract_payload(
            "Sales Order",
            Preset.PLAIN,
            _sales_order(),
            fragments=extract_from_text(text, "Sales Order", "so"),
            children={"Sales Order Item": _item()},
            **kwargs,
        )

    def test_payload_sections(self) -> None:
        payload = self._payload(methods=["erpnext.api.make_invoice"])
        self.assertEqual(
            sorted(payload.keys()),
            sorted(
                [
                    "doctype",
                    "preset",
                    "title_field",
                    "is_submittable",
                    "is_child_table",
                    "routes",
                    "list",
                    "form",
                    "actions",
                    "permissions",
                    "scripts",
                    "realtime",
                ]
            ),
        )
        self.assertEqual(payload["routes"]["detail"], "/app/sales-order/:name")
        self.assertEqual(payload["list"]["default_sort"], {"field": "transaction_date", "order": "asc"})
        self.assertEqual(payload["form"]["attachments"], ["attachment"])
        self.assertEqual(payload["form"]["depends_on"], {"notes": "eval:doc.status=='Draft'"})
        self.assertEqual(payload["form"]["required"], ["customer", "items"])
        self.assertEqual(payload["form"]["links"], {"customer": "Customer"})
        self.assertEqual(payload["scripts"]["events"][0]["event"], "refresh")
        self.assertEqual(payload["realtime"]["room"], "doctype:Sales Order")

    def test_actions_without_workflow(self) -> None:
        actions = self._payload(methods=["erpnext.api.make_invoice"])["actions"]
        self.assertFalse(actions["workflow"])
        self.assertEqual(actions["states"], [])
        self.assertTrue(actions["submit"])
        self.assertEqual(actions["methods"], [{"method": "erpnext.api.make_invoice", "label": "Make Invoice"}])

    def test_actions_with_workflow(self) -> None:
        workflow = {
            "workflow_name": "SO Approval",
            "states": [{"state": "Draft"}, {"state": "Approved"}],
            "transitions": [{"state": "Draft", "action": "Approve", "next_state": "Approved", "allowed": "Sales Manager"}],
        }
        actions = self._payload(workflow=workflow)["actions"]
        self.assertTrue(actions["workflow"])
        self.assertEqual(actions["workflow_name"], "SO Approval")
        self.assertEqual(actions["states"], ["Draft", "Approved"])
        self.assertEqual(actions["transitions"][0]["action"], "Approve")

    def test_limits_applied(self) -> None:
        payload = self._payload(limits=ContractLimits(list_columns=2, list_filters=1, child_columns=2))
        self.assertEqual(payload["list"]["columns"], ["name", "customer_name"])
        self.assertEqual(len(payload["list"]["filters"]), 1)
        self.assertEqual(payload["form"]["child_tables"][0]["columns"], ["name", "item_code"])


class TestUiContract(unittest.TestCase):
    def test_determinism(self) -> None:
        a = build_ui_contract("Sales Order", "dense", _sales_order(), children={"Sales Order Item": _item()})
        b = build_ui_contract("Sales Order", "dense", _sales_order(), children={"Sales Order Item": _item()})
        self.assertEqual(a.payload, b.payload)
        self.assertEqual(a.contract_hash, b.contract_hash)
        self.assertEqual(a, b)

    def test_preset_changes_hash(self) -> None:
        a = build_ui_contract("Sales Order", "plain", _sales_order())
        b = build_ui_contract("Sales Order", "desk", _sales_order())
        self.assertNotEqual(a.contract_hash, b.contract_hash)

    def test_to_dict_is_a_copy(self) -> None:
        contract = build_ui_contract("Sales Order", "plain", _sales_order())
        data = contract.to_dict()
        data["list"]["columns"].append("hacked")
        self.assertNotIn("hacked", contract.to_dict()["list"]["columns"])

    def test_descriptor_not_mutated(self) -> None:
        descriptor = _sales_order()
        build_ui_contract("Sales Order", "plain", descriptor)
        self.assertEqual(descriptor, _sales_order())


class TestHelpers(unittest.TestCase):
    def test_parse_preset(self) -> None:
        self.assertIs(parse_preset("DESK"), Preset.DESK)
        self.assertIs(parse_preset(None), Preset.PLAIN)
        with self.assertRaises(ValueError):
            parse_preset("fancy")

    def test_slugify(self) -> None:
        self.assertEqual(slugify("Sales Order Item"), "sales-order-item")
        self.assertEqual(slugify("custom_doc"), "custom-doc")


if __name__ == "__main__":
    unittest.main()
