"""Fold Property Setter override records onto a DocType descriptor."""

from __future__ import annotations

import copy
import json
import logging
import math
from typing import Any, Iterable

logger = logging.getLogger("forge.merge")

FIELD_SCOPE = "DocField"
DOCTYPE_SCOPE = "DocType"


def coerce_value(raw: Any) -> Any:
    """Coerce a stored override value to the type the descriptor uses.

    "0"/"1" become 0/1, "true"/"false" become booleans, anything else is
    decoded as JSON when possible and otherwise kept as the raw string.
    """
    if not isinstance(raw, str):
        return raw
    if raw in ("0", "1"):
        return int(raw)
    lowered = raw.strip().lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    try:
        decoded = json.loads(raw)
    except ValueError:
        return raw
    # NaN/Infinity literals cannot be carried into a canonical contract
    if isinstance(decoded, float) and not math.isfinite(decoded):
        return raw
    return decoded


def _target_field(record: dict) -> str | None:
    field_name = record.get("field_name") or record.get("fieldname")
    if isinstance(field_name, str) and field_name.strip():
        return field_name.strip()
    return None


def _find_field(fields: list, fieldname: str) -> dict | None:
    for fdef in fields:
        if isinstance(fdef, dict) and fdef.get("fieldname") == fieldname:
            return fdef
    return None


def apply_override(descriptor: dict, record: dict) -> bool:
    """Apply one record in place. Returns False when the record was dropped."""
    if not isinstance(record, dict):
        return False
    prop = record.get("property")
    if not isinstance(prop, str) or not prop:
        return False
    value = coerce_value(record.get("value"))
    fieldname = _target_field(record)
    if fieldname is None or record.get("doctype_or_field") == DOCTYPE_SCOPE:
        descriptor[prop] = value
        return True
    target = _find_field(descriptor.get("fields") or [], fieldname)
    if target is None:
        logger.info("override_dropped doctype=%s field=%s property=%s", descriptor.get("name"), fieldname, prop)
        return False
    target[prop] = value
    return True


def merge_overrides(descriptor: dict, records: Iterable[dict]) -> dict:
    """Return a normalized copy of ``descriptor`` with ``records`` applied in order.

    The input descriptor is never mutated. Later records win over earlier ones
    for the same (target, property).
    """
    merged = copy.deepcopy(descriptor) if isinstance(descriptor, dict) else {}
    fields = merged.get("fields")
    merged["fields"] = [f for f in fields if isinstance(f, dict)] if isinstance(fields, list) else []
    for record in records or []:
        apply_override(merged, record)
    return merged
