"""Extract form event handlers, query callbacks and custom buttons from Client Scripts.

Client Scripts are free text. Only a few call-site shapes are recognized:

- ``frappe.ui.form.on("DocType", { name(frm) {...}, other: function(frm) {...} })``
  (also ``name: (frm) => {...}``, and the older
  ``frappe.ui.form.on("DocType", "event", function(frm) {...})``)
- ``frm.set_query("fieldname", ... { ... })``
- ``frm.add_custom_button(__("Label"), ... { ... })``

Blocks are bounded by counting braces. The scanner does not understand string
literals, template strings or comments, so a brace inside one of those shifts
the block boundary. Text that does not match a known shape yields no fragment;
it is never reported as an error.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterable, Iterator, List

logger = logging.getLogger("forge.extract")

EVENT = "event"
QUERY = "query"
BUTTON = "button"

WILDCARD_TARGET = "*"

_JS_KEYWORDS = {"if", "for", "while", "switch", "catch", "function", "with", "return", "else"}


@dataclass(frozen=True)
class ExtractedFragment:
    """One extracted unit of Client Script code."""
    kind: str  # event | query | button
    name: str  # event name, query fieldname or button label
    body: str  # verbatim text between the opening brace and its balancing brace
    source: str = ""  # Client Script name


# ---------------------------------------------------------------------------
# Call-site patterns
# ---------------------------------------------------------------------------

# frappe.ui.form.on("Sales Order", {        or   frappe.ui.form.on('Sales Order', 'refresh', function(frm) {
_RE_FORM_ON = re.compile(
    r"""frappe\.ui\.form\.on\(\s*(["'`])(?P<target>[^"'`]+)\1\s*,"""
    r"""\s*(?:(["'`])(?P<event>[^"'`]+)\3\s*,)?"""
)

# frm.set_query("customer", function() {
_RE_SET_QUERY = re.compile(
    r"""\.set_query\(\s*(["'`])(?P<field>[^"'`]+)\1"""
)

# frm.add_custom_button(__("Make Invoice"), () => {
_RE_CUSTOM_BUTTON = re.compile(
    r"""\.add_custom_button\(\s*(?P<tr>__\(\s*)?(["'`])(?P<label>[^"'`]+)\2"""
)

_NAME = r"""(?P<name>[A-Za-z_$][\w$]*|"[^"]+"|'[^']+')"""

# customer: function(frm) {
_RE_HANDLER_FUNCTION = re.compile(
    r"^\s*" + _NAME + r"\s*:\s*(?:async\s+)?function\s*[\w$]*\s*\([^)]*\)\s*\{"
)
# refresh(frm) {
_RE_HANDLER_SHORTHAND = re.compile(
    r"^\s*(?:async\s+)?" + _NAME + r"\s*\([^)]*\)\s*\{"
)
# validate: (frm) => {
_RE_HANDLER_ARROW = re.compile(
    r"^\s*" + _NAME + r"\s*:\s*(?:async\s*)?\([^)]*\)\s*=>\s*\{"
)

_HANDLER_SHAPES = (_RE_HANDLER_FUNCTION, _RE_HANDLER_ARROW, _RE_HANDLER_SHORTHAND)


# ---------------------------------------------------------------------------
# Brace scanning
# ---------------------------------------------------------------------------

def scan_block(text: str, open_idx: int) -> int | None:
    """Return the index of the ``}`` balancing the ``{`` at ``open_idx``.

    Returns None when ``open_idx`` is not a ``{`` or the text ends first.
    """
    if open_idx < 0 or open_idx >= len(text) or text[open_idx] != "{":
        return None
    depth = 0
    for idx in range(open_idx, len(text)):
        ch = text[idx]
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return idx
    return None


def block_body(text: str, open_idx: int) -> str | None:
    close_idx = scan_block(text, open_idx)
    if close_idx is None:
        return None
    return text[open_idx + 1 : close_idx]


def first_brace_in_call(text: str, start: int, paren_depth: int = 1) -> int | None:
    """Find the first ``{`` before the call that is open at ``start`` closes."""
    depth = paren_depth
    for idx in range(start, len(text)):
        ch = text[idx]
        if ch == "{":
            return idx
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth <= 0:
                return None
    return None


def _unquote(name: str) -> str:
    if len(name) >= 2 and name[0] == name[-1] and name[0] in "\"'":
        return name[1:-1]
    return name


def _match_handler_header(line: str) -> re.Match | None:
    for pattern in _HANDLER_SHAPES:
        m = pattern.match(line)
        if m is None:
            continue
        if _unquote(m.group("name")) in _JS_KEYWORDS:
            return None
        return m
    return None


def iter_handlers(block: str) -> Iterator[tuple[str, str]]:
    """Yield (name, body) for each top-level handler entry of an object literal body.

    Lines are walked with a running brace depth so only entries that sit
    directly in the object are considered; nested objects and handler bodies
    are skipped.
    """
    lines = block.splitlines(keepends=True)
    offsets = []
    pos = 0
    for line in lines:
        offsets.append(pos)
        pos += len(line)

    depth = 0
    i = 0
    while i < len(lines):
        line = lines[i]
        m = _match_handler_header(line) if depth == 0 else None
        if m is None:
            depth = max(0, depth + line.count("{") - line.count("}"))
            i += 1
            continue
        open_idx = offsets[i] + m.end() - 1
        close_idx = scan_block(block, open_idx)
        if close_idx is None:
            # unbalanced handler: nothing after it can be delimited reliably
            return
        yield _unquote(m.group("name")), block[open_idx + 1 : close_idx]
        j = i
        while j + 1 < len(lines) and offsets[j + 1] <= close_idx:
            j += 1
        tail = block[close_idx + 1 : offsets[j] + len(lines[j])]
        depth = max(0, tail.count("{") - tail.count("}"))
        i = j + 1


# ---------------------------------------------------------------------------
# Fragment extraction
# ---------------------------------------------------------------------------

def _is_enabled(source: dict) -> bool:
    flag = source.get("enabled", 1)
    if isinstance(flag, str):
        return flag.strip().lower() not in ("", "0", "false", "no")
    return bool(flag)


def _keep(fragments: List[ExtractedFragment], kind: str, name: str, body: str | None, source: str) -> None:
    if body is None or not body.strip():
        return
    fragments.append(ExtractedFragment(kind=kind, name=name, body=body, source=source))


def _extract_events(text: str, doctype: str, source: str) -> List[ExtractedFragment]:
    fragments: List[ExtractedFragment] = []
    for m in _RE_FORM_ON.finditer(text):
        target = m.group("target").strip()
        if target != doctype and target != WILDCARD_TARGET:
            continue
        open_idx = first_brace_in_call(text, m.end())
        if open_idx is None:
            continue
        body = block_body(text, open_idx)
        if body is None:
            continue
        if m.group("event"):
            _keep(fragments, EVENT, m.group("event").strip(), body, source)
            continue
        for name, handler_body in iter_handlers(body):
            _keep(fragments, EVENT, name, handler_body, source)
    return fragments


def _extract_calls(text: str, pattern: re.Pattern, key: str, kind: str, source: str) -> List[ExtractedFragment]:
    fragments: List[ExtractedFragment] = []
    for m in pattern.finditer(text):
        paren_depth = 2 if m.groupdict().get("tr") else 1
        open_idx = first_brace_in_call(text, m.end(), paren_depth)
        if open_idx is None:
            continue
        _keep(fragments, kind, m.group(key).strip(), block_body(text, open_idx), source)
    return fragments


def extract_from_text(text: str, doctype: str, source: str = "") -> List[ExtractedFragment]:
    """Extract all fragments from one script body, in event/query/button order."""
    if not isinstance(text, str) or not text.strip():
        return []
    return (
        _extract_events(text, doctype, source)
        + _extract_calls(text, _RE_SET_QUERY, "field", QUERY, source)
        + _extract_calls(text, _RE_CUSTOM_BUTTON, "label", BUTTON, source)
    )


def extract_fragments(sources: Iterable[dict], doctype: str) -> List[ExtractedFragment]:
    """Extract fragments from every enabled Client Script, in source order.

    Disabled, empty or malformed sources contribute nothing.
    """
    fragments: List[ExtractedFragment] = []
    for idx, source in enumerate(sources or []):
        if not isinstance(source, dict) or not _is_enabled(source):
            continue
        name = source.get("name") if isinstance(source.get("name"), str) else f"script_{idx}"
        try:
            found = extract_from_text(source.get("script") or "", doctype, name)
        except Exception as exc:
            logger.warning("script_extract_failed doctype=%s script=%s error=%s", doctype, name, exc)
            continue
        logger.debug("script_extracted doctype=%s script=%s fragments=%s", doctype, name, len(found))
        fragments.extend(found)
    return fragments


def group_fragments(fragments: Iterable[ExtractedFragment]) -> dict:
    """Group fragments into the contract's ``scripts`` section."""
    grouped: dict = {"events": [], "queries": [], "buttons": []}
    for frag in fragments:
        if frag.kind == EVENT:
            grouped["events"].append({"event": frag.name, "body": frag.body, "source": frag.source})
        elif frag.kind == QUERY:
            grouped["queries"].append({"fieldname": frag.name, "body": frag.body, "source": frag.source})
        elif frag.kind == BUTTON:
            grouped["buttons"].append({"label": frag.name, "body": frag.body, "source": frag.source})
    return grouped


# ---------------------------------------------------------------------------
# Lint
# ---------------------------------------------------------------------------

def brace_issues(text: str) -> list[dict]:
    """Report unmatched braces with 1-based line numbers."""
    issues: list[dict] = []
    stack: list[int] = []
    for lineno, line in enumerate((text or "").splitlines(), start=1):
        for ch in line:
            if ch == "{":
                stack.append(lineno)
            elif ch == "}":
                if stack:
                    stack.pop()
                else:
                    issues.append({"code": "BRACE_UNEXPECTED_CLOSE", "message": "Unmatched '}'", "line": lineno})
    for lineno in stack:
        issues.append({"code": "BRACE_UNCLOSED", "message": "Unclosed '{'", "line": lineno})
    return issues


def lint_script(text: str, doctype: str) -> dict:
    """Brace-balance report plus the fragments the extractor would pull out."""
    issues = brace_issues(text)
    fragments = extract_from_text(text or "", doctype, "lint")
    return {
        "ok": not issues,
        "issues": issues,
        "fragments": [{"kind": f.kind, "name": f.name} for f in fragments],
    }
