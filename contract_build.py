"""Derive a UI contract (list/form/actions/permissions) from DocType metadata."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List

from forge.canonical_json import canonical_dumps, canonical_loads
from forge.contract_hash import contract_hash

from metadata_sources import TABLE_FIELD_TYPES
from script_extract import ExtractedFragment, group_fragments

PRIMARY_KEY = "name"

LAYOUT_FIELD_TYPES = {"Section Break", "Column Break", "Tab Break", "HTML", "Heading", "Fold", "Button"}
ATTACH_FIELD_TYPES = {"Attach", "Attach Image"}
FILTER_FIELD_TYPES = {"Select", "Link", "Date", "Datetime", "Check"}
PERMISSION_KEYS = ("read", "write", "create", "delete", "submit", "cancel", "amend")

LIST_COLUMN_CAP = int(os.getenv("FORGE_LIST_COLUMN_CAP", "8"))
LIST_FILTER_CAP = int(os.getenv("FORGE_LIST_FILTER_CAP", "8"))
CHILD_COLUMN_CAP = int(os.getenv("FORGE_CHILD_COLUMN_CAP", "4"))


class Preset(str, Enum):
    PLAIN = "plain"
    DENSE = "dense"
    DESK = "desk"


DEFAULT_PRESET = os.getenv("FORGE_DEFAULT_PRESET", Preset.PLAIN.value).strip().lower() or Preset.PLAIN.value


def parse_preset(value: Any) -> Preset:
    if isinstance(value, Preset):
        return value
    if value is None or value == "":
        value = DEFAULT_PRESET
    try:
        return Preset(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(p.value for p in Preset)
        raise ValueError(f"Unknown preset '{value}' (expected one of: {allowed})") from None


@dataclass(frozen=True)
class ContractLimits:
    list_columns: int = LIST_COLUMN_CAP
    list_filters: int = LIST_FILTER_CAP
    child_columns: int = CHILD_COLUMN_CAP


@dataclass(frozen=True)
class UiContract:
    """Immutable, canonical-JSON-backed UI contract.

    ``payload`` is the canonical serialization, so two contracts built from the
    same inputs compare equal byte for byte. ``to_dict`` always returns a fresh
    copy.
    """
    doctype: str
    preset: str
    payload: str
    contract_hash: str

    @classmethod
    def from_payload(cls, payload: dict) -> "UiContract":
        text = canonical_dumps(payload)
        return cls(
            doctype=payload["doctype"],
            preset=payload["preset"],
            payload=text,
            contract_hash=contract_hash(text),
        )

    def to_dict(self) -> dict:
        return canonical_loads(self.payload)


# ---------------------------------------------------------------------------
# Small helpers
# ---------------------------------------------------------------------------

def flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes")
    return bool(value)


def humanize(value: str) -> str:
    """``customer_name`` -> ``Customer Name``; dotted paths use their last segment."""
    if not isinstance(value, str) or not value:
        return ""
    last = value.rsplit(".", 1)[-1]
    parts = [p for p in re.split(r"[_\-\s]+", last) if p]
    return " ".join(p[:1].upper() + p[1:] for p in parts) if parts else last


def slugify(doctype: str) -> str:
    return re.sub(r"[^0-9a-z]+", "-", doctype.strip().lower()).strip("-")


def _fields(descriptor: dict) -> list[dict]:
    return [f for f in descriptor.get("fields") or [] if isinstance(f, dict) and isinstance(f.get("fieldname"), str)]


def _data_fields(descriptor: dict) -> list[dict]:
    return [f for f in _fields(descriptor) if f.get("fieldtype") not in LAYOUT_FIELD_TYPES]


def _label(fdef: dict) -> str:
    label = fdef.get("label")
    return label if isinstance(label, str) and label.strip() else humanize(fdef["fieldname"])


def title_field(descriptor: dict) -> str | None:
    value = descriptor.get("title_field")
    if isinstance(value, str) and value:
        return value
    for fdef in _fields(descriptor):
        if flag(fdef.get("is_title")):
            return fdef["fieldname"]
    return None


def parse_options(options: Any) -> list[str]:
    """Select options arrive newline-delimited or as an array."""
    if isinstance(options, list):
        items = [str(o).strip() for o in options if o is not None]
    elif isinstance(options, str):
        items = [o.strip() for o in options.split("\n")]
    else:
        return []
    return [o for o in items if o]


# ---------------------------------------------------------------------------
# List view
# ---------------------------------------------------------------------------

def list_columns(descriptor: dict, cap: int = LIST_COLUMN_CAP, primary: str = PRIMARY_KEY) -> list[str]:
    """Primary key, then title field, then list-visible/standard-filter fields; deduped and capped."""
    columns: list[str] = [primary]
    title = title_field(descriptor)
    if title and title not in columns:
        columns.append(title)
    for fdef in _data_fields(descriptor):
        if fdef.get("fieldtype") in TABLE_FIELD_TYPES:
            continue
        if not (flag(fdef.get("in_list_view")) or flag(fdef.get("in_standard_filter"))):
            continue
        if fdef["fieldname"] not in columns:
            columns.append(fdef["fieldname"])
    return columns[: max(cap, 0)]


def list_filters(descriptor: dict, cap: int = LIST_FILTER_CAP) -> list[dict]:
    filters: list[dict] = []
    for fdef in _data_fields(descriptor):
        if len(filters) >= cap:
            break
        ftype = fdef.get("fieldtype")
        if not (flag(fdef.get("in_standard_filter")) or ftype in FILTER_FIELD_TYPES):
            continue
        item: Dict[str, Any] = {"fieldname": fdef["fieldname"], "label": _label(fdef), "fieldtype": ftype}
        if ftype == "Select":
            item["options"] = parse_options(fdef.get("options"))
        elif ftype == "Link":
            item["doctype"] = fdef.get("options") or None
        filters.append(item)
    return filters


def default_sort(descriptor: dict) -> dict:
    sort_field = descriptor.get("sort_field")
    order = str(descriptor.get("sort_order") or "desc").strip().lower()
    return {
        "field": sort_field if isinstance(sort_field, str) and sort_field else "modified",
        "order": order if order in ("asc", "desc") else "desc",
    }


# ---------------------------------------------------------------------------
# Form layout
# ---------------------------------------------------------------------------

def form_sections(descriptor: dict) -> list[dict]:
    sections: list[dict] = []
    current: dict | None = None
    for fdef in _fields(descriptor):
        ftype = fdef.get("fieldtype")
        if ftype == "Section Break":
            ordinal = len(sections) + 1
            label = fdef.get("label")
            current = {
                "id": fdef["fieldname"],
                "title": label if isinstance(label, str) and label.strip() else f"Section {ordinal}",
                "fields": [],
            }
            sections.append(current)
            continue
        if ftype in LAYOUT_FIELD_TYPES:
            continue
        if current is None:
            current = {"id": "main", "title": "Main", "fields": []}
            sections.append(current)
        current["fields"].append(fdef["fieldname"])
    if not sections:
        sections.append({"id": "main", "title": "Main", "fields": []})
    return sections


def field_maps(descriptor: dict) -> dict:
    types: Dict[str, str] = {}
    labels: Dict[str, str] = {}
    depends_on: Dict[str, str] = {}
    mandatory_depends_on: Dict[str, str] = {}
    read_only_depends_on: Dict[str, str] = {}
    links: Dict[str, str] = {}
    options: Dict[str, list] = {}
    required: List[str] = []
    hidden: List[str] = []
    read_only: List[str] = []
    for fdef in _data_fields(descriptor):
        name = fdef["fieldname"]
        ftype = fdef.get("fieldtype") or "Data"
        types[name] = ftype
        labels[name] = _label(fdef)
        for key, target in (
            ("depends_on", depends_on),
            ("mandatory_depends_on", mandatory_depends_on),
            ("read_only_depends_on", read_only_depends_on),
        ):
            expr = fdef.get(key)
            if isinstance(expr, str) and expr.strip():
                target[name] = expr
        if ftype == "Link" and isinstance(fdef.get("options"), str) and fdef.get("options"):
            links[name] = fdef["options"]
        if ftype == "Select":
            options[name] = parse_options(fdef.get("options"))
        if flag(fdef.get("reqd")):
            required.append(name)
        if flag(fdef.get("hidden")):
            hidden.append(name)
        if flag(fdef.get("read_only")):
            read_only.append(name)
    return {
        "field_types": types,
        "labels": labels,
        "depends_on": depends_on,
        "mandatory_depends_on": mandatory_depends_on,
        "read_only_depends_on": read_only_depends_on,
        "links": links,
        "options": options,
        "required": required,
        "hidden": hidden,
        "read_only": read_only,
    }


def child_tables(descriptor: dict, children: Dict[str, dict | None], cap: int = CHILD_COLUMN_CAP) -> list[dict]:
    """Summarize table fields using each child doctype's own list columns.

    A child whose descriptor could not be fetched gets a single default column.
    """
    tables: list[dict] = []
    for fdef in _fields(descriptor):
        if fdef.get("fieldtype") not in TABLE_FIELD_TYPES:
            continue
        child_doctype = fdef.get("options") if isinstance(fdef.get("options"), str) else None
        child = children.get(child_doctype) if child_doctype else None
        if isinstance(child, dict):
            columns = list_columns(child, cap)
            child_maps = field_maps(child)
            column_labels = {c: child_maps["labels"].get(c, humanize(c)) for c in columns}
        else:
            columns = [PRIMARY_KEY]
            column_labels = {PRIMARY_KEY: humanize(PRIMARY_KEY)}
        tables.append(
            {
                "fieldname": fdef["fieldname"],
                "label": _label(fdef),
                "doctype": child_doctype,
                "columns": columns,
                "column_labels": column_labels,
                "resolved": isinstance(child, dict),
            }
        )
    return tables


def attachment_fields(descriptor: dict) -> list[str]:
    return [f["fieldname"] for f in _fields(descriptor) if f.get("fieldtype") in ATTACH_FIELD_TYPES]


# ---------------------------------------------------------------------------
# Permissions and actions
# ---------------------------------------------------------------------------

def permission_summary(rows: Iterable[dict] | None) -> dict:
    """OR-reduce permission rows: any row granting a capability grants it for the doctype."""
    summary = {f"can_{key}": False for key in PERMISSION_KEYS}
    for row in rows or []:
        if not isinstance(row, dict):
            continue
        for key in PERMISSION_KEYS:
            if flag(row.get(key)):
                summary[f"can_{key}"] = True
    return summary


def _workflow_states(workflow: dict) -> list[str]:
    states: list[str] = []
    for row in workflow.get("states") or []:
        state = row.get("state") if isinstance(row, dict) else row
        if isinstance(state, str) and state and state not in states:
            states.append(state)
    return states


def _workflow_transitions(workflow: dict) -> list[dict]:
    transitions: list[dict] = []
    for row in workflow.get("transitions") or []:
        if not isinstance(row, dict):
            continue
        transitions.append(
            {
                "state": row.get("state"),
                "action": row.get("action"),
                "next_state": row.get("next_state"),
                "allowed": row.get("allowed"),
            }
        )
    return transitions


def method_table(methods: Iterable[str] | None) -> list[dict]:
    table: list[dict] = []
    seen: set[str] = set()
    for method in methods or []:
        if not isinstance(method, str) or not method or method in seen:
            continue
        seen.add(method)
        table.append({"method": method, "label": humanize(method)})
    return table


def actions_summary(descriptor: dict, workflow: dict | None, methods: Iterable[str] | None) -> dict:
    submittable = flag(descriptor.get("is_submittable"))
    has_workflow = isinstance(workflow, dict) and bool(workflow)
    return {
        "workflow": has_workflow,
        "workflow_name": (workflow.get("workflow_name") or workflow.get("name")) if has_workflow else None,
        "workflow_state_field": (workflow.get("workflow_state_field") or "workflow_state") if has_workflow else None,
        "states": _workflow_states(workflow) if has_workflow else [],
        "transitions": _workflow_transitions(workflow) if has_workflow else [],
        "submit": submittable,
        "cancel": submittable,
        "amend": submittable,
        "methods": method_table(methods),
    }


def routes(doctype: str) -> dict:
    slug = slugify(doctype)
    return {
        "list": f"/app/{slug}",
        "new": f"/app/{slug}/new",
        "detail": f"/app/{slug}/:name",
    }


def realtime_topics(doctype: str) -> dict:
    return {
        "room": f"doctype:{doctype}",
        "list": "list_update",
        "doc": "doc_update",
    }


# ---------------------------------------------------------------------------
# Assembly
# ---------------------------------------------------------------------------

def build_contract_payload(
    doctype: str,
    preset: Preset | str,
    descriptor: dict,
    fragments: Iterable[ExtractedFragment] = (),
    workflow: dict | None = None,
    methods: Iterable[str] | None = None,
    children: Dict[str, dict | None] | None = None,
    limits: ContractLimits | None = None,
) -> dict:
    limits = limits or ContractLimits()
    preset_value = parse_preset(preset).value
    maps = field_maps(descriptor)
    form = {
        "sections": form_sections(descriptor),
        "child_tables": child_tables(descriptor, children or {}, limits.child_columns),
        "attachments": attachment_fields(descriptor),
    }
    form.update(maps)
    return {
        "doctype": doctype,
        "preset": preset_value,
        "title_field": title_field(descriptor),
        "is_submittable": flag(descriptor.get("is_submittable")),
        "is_child_table": flag(descriptor.get("istable")),
        "routes": routes(doctype),
        "list": {
            "columns": list_columns(descriptor, limits.list_columns),
            "filters": list_filters(descriptor, limits.list_filters),
            "default_sort": default_sort(descriptor),
        },
        "form": form,
        "actions": actions_summary(descriptor, workflow, methods),
        "permissions": permission_summary(descriptor.get("permissions")),
        "scripts": group_fragments(fragments),
        "realtime": realtime_topics(doctype),
    }


def build_ui_contract(doctype: str, preset: Preset | str, descriptor: dict, **kwargs: Any) -> UiContract:
    return UiContract.from_payload(build_contract_payload(doctype, preset, descriptor, **kwargs))
