"""Markdown documentation for a DocType, rendered from its UI contract."""

from __future__ import annotations

from app.template_render import render_template
from contract_build import UiContract, humanize

DOCTYPE_DOCS_TEMPLATE = """\
# {{ doctype }}

Contract `{{ contract_hash }}` (preset `{{ preset }}`).

{% if is_child_table %}
Child table: rows of this DocType live inside a parent document.

{% endif %}
- List route: `{{ routes.list }}`
- Detail route: `{{ routes.detail }}`
- Title field: `{{ title_field }}`
- Submittable: {{ "yes" if is_submittable else "no" }}

## Fields

{% for section in sections %}
### {{ section.title }}

{% if section.rows %}
| Field | Type | Label | Flags |
|-------|------|-------|-------|
{% for row in section.rows %}
| `{{ row.fieldname }}` | {{ row.fieldtype }} | {{ row.label }} | {{ row.flags | join(", ") }} |
{% endfor %}
{% else %}
_No fields._
{% endif %}

{% endfor %}
{% if child_tables %}
## Child tables

{% for table in child_tables %}
- `{{ table.fieldname }}` ({{ table.doctype or "unknown" }}): {{ table.columns | join(", ") }}
{% endfor %}

{% endif %}
## Permissions

{% for perm in permissions %}
- {{ perm.name }}: {{ "yes" if perm.granted else "no" }}
{% endfor %}

{% if workflow %}
## Workflow: {{ workflow.name }}

States:
{% for state in workflow.states %}
- {{ state }}
{% endfor %}

{% if workflow.transitions %}
| From | Action | To | Allowed |
|------|--------|----|---------|
{% for t in workflow.transitions %}
| {{ t.state }} | {{ t.action }} | {{ t.next_state }} | {{ t.allowed }} |
{% endfor %}
{% endif %}

{% endif %}
{% if methods %}
## Methods

{% for m in methods %}
- `{{ m.method }}`
{% endfor %}

{% endif %}
{% if scripts %}
## Client script fragments

{% for s in scripts %}
- {{ s.kind }} `{{ s.name }}`
{% endfor %}
{% endif %}
"""


def _flags(fieldname: str, form: dict) -> list[str]:
    flags = []
    if fieldname in form["required"]:
        flags.append("required")
    if fieldname in form["hidden"]:
        flags.append("hidden")
    if fieldname in form["read_only"]:
        flags.append("read only")
    if fieldname in form["depends_on"]:
        flags.append(f"depends on {form['depends_on'][fieldname]}")
    if fieldname in form["links"]:
        flags.append(f"link to {form['links'][fieldname]}")
    return flags or ["-"]


def docs_context(contract: UiContract) -> dict:
    data = contract.to_dict()
    form = data["form"]
    actions = data["actions"]
    scripts = data["scripts"]
    sections = []
    for section in form["sections"]:
        rows = [
            {
                "fieldname": name,
                "fieldtype": form["field_types"].get(name, "Data"),
                "label": form["labels"].get(name) or humanize(name),
                "flags": _flags(name, form),
            }
            for name in section["fields"]
        ]
        sections.append({"title": section["title"], "rows": rows})
    fragments = (
        [{"kind": "event", "name": e["event"]} for e in scripts["events"]]
        + [{"kind": "query", "name": q["fieldname"]} for q in scripts["queries"]]
        + [{"kind": "button", "name": b["label"]} for b in scripts["buttons"]]
    )
    return {
        "doctype": contract.doctype,
        "contract_hash": contract.contract_hash,
        "preset": contract.preset,
        "is_child_table": data["is_child_table"],
        "is_submittable": data["is_submittable"],
        "title_field": data.get("title_field") or "name",
        "routes": data["routes"],
        "sections": sections,
        "child_tables": form["child_tables"],
        "permissions": [
            {"name": key[len("can_"):], "granted": value} for key, value in sorted(data["permissions"].items())
        ],
        "workflow": {
            "name": actions["workflow_name"],
            "states": actions["states"],
            "transitions": actions["transitions"],
        }
        if actions["workflow"]
        else None,
        "methods": actions["methods"],
        "scripts": fragments,
    }


def generate_doctype_docs(contract: UiContract) -> str:
    """Markdown summary of a contract: fields, permissions, workflow and methods."""
    return render_template(DOCTYPE_DOCS_TEMPLATE, docs_context(contract))
