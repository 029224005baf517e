"""Render a UI contract into the client application's source files."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, List

from app.template_render import render_template, validate_templates
from codegen_templates import (
    ACTION_MODULE,
    DETAIL_VIEW,
    LIST_VIEW,
    REGION_CLOSE,
    REGION_OPEN,
    ROUTER_MODULE,
    RUNTIME_REALTIME,
    RUNTIME_RESOURCE,
    RUNTIME_SCRIPT_SHIM,
    RUNTIME_VERSION,
)
from contract_build import Preset, UiContract, humanize, parse_preset, slugify

PRESET_STYLES: Dict[str, Dict[str, str]] = {
    Preset.PLAIN.value: {
        "page": "page",
        "toolbar": "toolbar",
        "actions": "actions",
        "button": "button",
        "primary_button": "button button-primary",
        "badge": "badge",
        "error": "error",
        "filters": "filters",
        "filter": "filter",
        "table": "table",
        "row": "row",
        "cell": "cell",
        "empty": "empty",
        "form": "form",
        "section": "section",
        "field": "field",
        "required": "required",
    },
    Preset.DENSE.value: {
        "page": "page page--dense",
        "toolbar": "toolbar toolbar--dense",
        "actions": "actions actions--dense",
        "button": "button button--sm",
        "primary_button": "button button-primary button--sm",
        "badge": "badge badge--sm",
        "error": "error error--inline",
        "filters": "filters filters--inline",
        "filter": "filter filter--compact",
        "table": "table table--dense",
        "row": "row row--compact",
        "cell": "cell cell--compact",
        "empty": "empty empty--compact",
        "form": "form form--dense",
        "section": "section section--dense",
        "field": "field field--compact",
        "required": "required",
    },
    Preset.DESK.value: {
        "page": "layout-main-section frappe-card",
        "toolbar": "page-head flex justify-between",
        "actions": "page-actions",
        "button": "btn btn-default btn-sm",
        "primary_button": "btn btn-primary btn-sm",
        "badge": "indicator-pill",
        "error": "alert alert-danger",
        "filters": "standard-filter-section flex",
        "filter": "form-group frappe-control",
        "table": "table table-bordered frappe-list",
        "row": "list-row",
        "cell": "list-row-col",
        "empty": "no-result text-muted",
        "form": "form-layout",
        "section": "form-section card-section",
        "field": "form-group frappe-control",
        "required": "reqd",
    },
}

_CONTROLS = {
    "Check": "check",
    "Select": "select",
    "Link": "link",
    "Date": "date",
    "Datetime": "datetime",
    "Int": "number",
    "Float": "number",
    "Currency": "number",
    "Percent": "number",
    "Small Text": "textarea",
    "Text": "textarea",
    "Long Text": "textarea",
    "Text Editor": "textarea",
    "Markdown Editor": "textarea",
    "HTML Editor": "textarea",
    "Code": "textarea",
    "JSON": "textarea",
    "Attach": "attach",
    "Attach Image": "attach",
    "Table": "table",
    "Table MultiSelect": "table",
}

RUNTIME_PATHS = {
    "resource": "src/runtime/resource.ts",
    "shim": "src/runtime/scriptShim.ts",
    "realtime": "src/runtime/realtime.ts",
}

_FILTER_CONTROLS = {"Select": "select", "Check": "check", "Date": "date", "Datetime": "date"}


@dataclass(frozen=True)
class GeneratedFile:
    path: str
    contents: str

    def to_dict(self) -> dict:
        return {"path": self.path, "contents": self.contents}


def region_markers(name: str) -> dict:
    return {"open": REGION_OPEN.format(name=name), "close": REGION_CLOSE.format(name=name)}


def _pascal(doctype: str) -> str:
    return "".join(part[:1].upper() + part[1:] for part in re.split(r"[^0-9A-Za-z]+", doctype) if part)


def file_paths(doctype: str) -> dict:
    slug = slugify(doctype)
    pascal = _pascal(doctype)
    return {
        "list": f"src/pages/{slug}/{pascal}List.vue",
        "detail": f"src/pages/{slug}/{pascal}Detail.vue",
        "api": f"src/api/{slug}.ts",
        "router": f"src/router/{slug}.ts",
        **RUNTIME_PATHS,
    }


def _import_paths(slug: str, pascal: str) -> dict:
    return {
        "api_from_page": f"../../api/{slug}",
        "shim_from_page": "../../runtime/scriptShim",
        "realtime_from_page": "../../runtime/realtime",
        "resource_from_page": "../../runtime/resource",
        "resource_from_api": "../runtime/resource",
        "list_from_router": f"../pages/{slug}/{pascal}List.vue",
        "detail_from_router": f"../pages/{slug}/{pascal}Detail.vue",
    }


def _view_model(contract: dict) -> dict:
    form = contract["form"]
    labels = dict(form["labels"])
    labels.setdefault("name", "ID")
    hidden = set(form["hidden"])
    tables = {t["fieldname"]: t for t in form["child_tables"]}

    columns = [{"fieldname": c, "label": labels.get(c) or humanize(c)} for c in contract["list"]["columns"]]

    filters = []
    for f in contract["list"]["filters"]:
        filters.append(
            {
                "fieldname": f["fieldname"],
                "label": f["label"],
                "control": _FILTER_CONTROLS.get(f["fieldtype"], "text"),
                "options": f.get("options") or [],
                "placeholder": f.get("doctype") or f["label"],
            }
        )

    sections = []
    typed_fields = []
    for section in form["sections"]:
        fields = []
        for fieldname in section["fields"]:
            fieldtype = form["field_types"].get(fieldname, "Data")
            typed_fields.append({"fieldname": fieldname, "fieldtype": fieldtype})
            if fieldname in hidden:
                continue
            table = tables.get(fieldname)
            fields.append(
                {
                    "fieldname": fieldname,
                    "label": labels.get(fieldname) or humanize(fieldname),
                    "fieldtype": fieldtype,
                    "control": _CONTROLS.get(fieldtype, "data"),
                    "options": form["options"].get(fieldname, []),
                    "table": {
                        "doctype": table["doctype"],
                        "columns": [
                            {"fieldname": c, "label": table["column_labels"].get(c) or humanize(c)}
                            for c in table["columns"]
                        ],
                    }
                    if table
                    else None,
                }
            )
        sections.append({"id": section["id"], "title": section["title"], "fields": fields})

    return {
        "columns": columns,
        "filters": filters,
        "sections": sections,
        "typed_fields": typed_fields,
        "title_field": contract.get("title_field") or "name",
    }


def _context(contract: UiContract, preset: Preset) -> dict:
    data = contract.to_dict()
    slug = slugify(contract.doctype)
    pascal = _pascal(contract.doctype)
    return {
        "header": f'Generated by forge from DocType "{contract.doctype}" ({contract.contract_hash}, preset {preset.value}).',
        "doctype": contract.doctype,
        "slug": slug,
        "pascal": pascal,
        "camel": pascal[:1].lower() + pascal[1:],
        "contract": data,
        "styles": PRESET_STYLES[preset.value],
        "paths": _import_paths(slug, pascal),
        "regions": {name: region_markers(name) for name in ("api", "contract", "methods")},
        "vm": _view_model(data),
    }


def runtime_files() -> List[GeneratedFile]:
    """The shared runtime helpers; identical for every doctype."""
    ctx = {"header": f"Generated by forge runtime v{RUNTIME_VERSION}. Shared by every generated doctype."}
    return [
        GeneratedFile(RUNTIME_PATHS["resource"], render_template(RUNTIME_RESOURCE, ctx)),
        GeneratedFile(RUNTIME_PATHS["shim"], render_template(RUNTIME_SCRIPT_SHIM, ctx)),
        GeneratedFile(RUNTIME_PATHS["realtime"], render_template(RUNTIME_REALTIME, ctx)),
    ]


def generate_files(contract: UiContract, preset: Preset | str | None = None) -> List[GeneratedFile]:
    """Render the fixed file set for ``contract``.

    ``preset`` defaults to the preset the contract was built for. The result is
    a pure function of its inputs.
    """
    chosen = parse_preset(preset if preset is not None else contract.preset)
    ctx = _context(contract, chosen)
    paths = file_paths(contract.doctype)
    api_header = ctx["header"] + " Edits outside forge:generated regions survive regeneration."
    return [
        GeneratedFile(paths["list"], render_template(LIST_VIEW, ctx)),
        GeneratedFile(paths["detail"], render_template(DETAIL_VIEW, ctx)),
        GeneratedFile(paths["api"], render_template(ACTION_MODULE, {**ctx, "header": api_header})),
        GeneratedFile(paths["router"], render_template(ROUTER_MODULE, ctx)),
        *runtime_files(),
    ]


def template_errors() -> list[dict]:
    """Syntax errors across every bundled template (empty when all compile)."""
    errors, _ = validate_templates(
        [
            ("list_view", LIST_VIEW),
            ("detail_view", DETAIL_VIEW),
            ("action_module", ACTION_MODULE),
            ("router_module", ROUTER_MODULE),
            ("runtime_resource", RUNTIME_RESOURCE),
            ("runtime_script_shim", RUNTIME_SCRIPT_SHIM),
            ("runtime_realtime", RUNTIME_REALTIME),
        ]
    )
    return errors

