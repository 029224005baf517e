from __future__ import annotations

import html
import json
import re
from typing import Any, Iterable, Tuple

from jinja2 import StrictUndefined, TemplateSyntaxError, Undefined, UndefinedError
from jinja2.runtime import LoopContext
from jinja2.sandbox import ImmutableSandboxedEnvironment

from forge.canonical_json import canonical_dumps

_ALLOWED_FILTERS = {
    "default",
    "lower",
    "upper",
    "title",
    "trim",
    "replace",
    "length",
    "join",
    "indent",
    "dictsort",
    "first",
    "last",
    "int",
}

_ALLOWED_TESTS = {
    "defined",
    "undefined",
    "none",
    "equalto",
    "in",
}

_TS_TYPES = {
    "Int": "number",
    "Float": "number",
    "Currency": "number",
    "Percent": "number",
    "Rating": "number",
    "Duration": "number",
    "Check": "0 | 1",
    "Table": "Record<string, unknown>[]",
    "Table MultiSelect": "Record<string, unknown>[]",
    "JSON": "unknown",
}


def _pascal(value: Any) -> str:
    parts = [p for p in re.split(r"[^0-9A-Za-z]+", str(value or "")) if p]
    text = "".join(p[:1].upper() + p[1:] for p in parts)
    if text and text[0].isdigit():
        text = f"_{text}"
    return text


def _camel(value: Any) -> str:
    text = _pascal(value)
    return text[:1].lower() + text[1:]


def _ts_type(fieldtype: Any) -> str:
    return _TS_TYPES.get(str(fieldtype), "string")


def _js_string(value: Any) -> str:
    return json.dumps("" if value is None else str(value), ensure_ascii=False)


def _html(value: Any) -> str:
    return html.escape("" if value is None else str(value), quote=True)


def _tojson(value: Any, indent: int | None = 2) -> str:
    return canonical_dumps(value, indent=indent)


_CODEGEN_FILTERS = {
    "pascal": _pascal,
    "camel": _camel,
    "ts_type": _ts_type,
    "js_string": _js_string,
    "tojson": _tojson,
    "html": _html,
}


class _LockedSandbox(ImmutableSandboxedEnvironment):
    # dict keys stay reachable through the item fallback; object attributes do not
    def is_safe_attribute(self, obj, attr, value) -> bool:
        return isinstance(obj, LoopContext) and not attr.startswith("_")


def _env(strict: bool) -> _LockedSandbox:
    undefined_cls = StrictUndefined if strict else Undefined
    env = _LockedSandbox(autoescape=False, undefined=undefined_cls, keep_trailing_newline=True, trim_blocks=True, lstrip_blocks=True)
    env.globals = {}
    env.filters = {key: val for key, val in env.filters.items() if key in _ALLOWED_FILTERS}
    env.filters.update(_CODEGEN_FILTERS)
    env.tests = {key: val for key, val in env.tests.items() if key in _ALLOWED_TESTS}
    return env


def _sanitize_value(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, dict):
        return {str(key): _sanitize_value(val) for key, val in value.items()}
    if isinstance(value, (list, tuple)):
        return [_sanitize_value(val) for val in value]
    return str(value)


def _sanitize_context(context: dict[str, Any] | None) -> dict[str, Any]:
    return _sanitize_value(context or {}) or {}


def _extract_undefined_var(message: str) -> str | None:
    if not isinstance(message, str):
        return None
    if "'" in message:
        parts = message.split("'")
        if len(parts) >= 2:
            return parts[1]
    return None


def validate_templates(
    templates: Iterable[Tuple[str, str | None]],
    context: dict[str, Any] | None = None,
) -> tuple[list[dict], set[str]]:
    """Compile every template and, with a context, render it strictly.

    Returns syntax errors and the names of variables that were undefined at
    render time.
    """
    errors: list[dict] = []
    actual_undefined: set[str] = set()
    env = _env(strict=False)
    for label, text in templates:
        if not text:
            continue
        try:
            env.parse(text)
        except TemplateSyntaxError as exc:
            errors.append(
                {
                    "message": f"{label}: {exc.message}",
                    "line": exc.lineno or 1,
                    "col": getattr(exc, "offset", None) or 1,
                }
            )
            continue
        if context is not None:
            try:
                render_template(text, context, strict=True)
            except UndefinedError as exc:
                var_name = _extract_undefined_var(str(exc))
                if var_name:
                    actual_undefined.add(var_name)
    return errors, actual_undefined


def render_template(text: str | None, context: dict[str, Any], strict: bool = True) -> str:
    env = _env(strict=strict)
    tmpl = env.from_string(text or "")
    return tmpl.render(_sanitize_context(context))
