"""Write generated files to disk, keeping hand edits outside generated regions."""

from __future__ import annotations

import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Iterable, List

from codegen import GeneratedFile
from pipeline_errors import SYNC_PATH_INVALID, SYNC_WRITE_FAILED, PipelineError

logger = logging.getLogger("forge.sync")

SYNC_ROOT = os.getenv("FORGE_SYNC_ROOT", "").strip() or None

_RE_REGION = re.compile(
    r"^[ \t]*// <forge:generated (?P<name>[\w.-]+)>[ \t]*\n.*?^[ \t]*// </forge:generated (?P=name)>[ \t]*$",
    re.MULTILINE | re.DOTALL,
)
_HEADER_MARK = "Generated by forge"


def regions(text: str) -> dict[str, str]:
    """Map region name to its full marked block (markers included)."""
    return {m.group("name"): m.group(0) for m in _RE_REGION.finditer(text or "")}


def merge_regions(existing: str, generated: str) -> str:
    """Replace the generated regions inside ``existing`` with those from ``generated``.

    Text outside the markers is kept. When ``existing`` has no markers the
    generated text wins outright. Regions new to ``generated`` are appended.
    """
    fresh = regions(generated)
    if not fresh or not regions(existing):
        return generated

    seen: set[str] = set()

    def _swap(match: re.Match) -> str:
        name = match.group("name")
        if name not in fresh:
            return match.group(0)
        seen.add(name)
        return fresh[name]

    merged = _RE_REGION.sub(_swap, existing)
    missing = [block for name, block in fresh.items() if name not in seen]
    if missing:
        if not merged.endswith("\n"):
            merged += "\n"
        merged += "\n" + "\n\n".join(missing) + "\n"

    old_first, _, old_rest = merged.partition("\n")
    new_first = generated.partition("\n")[0]
    if _HEADER_MARK in old_first and _HEADER_MARK in new_first:
        merged = new_first + "\n" + old_rest
    return merged


def resolve_target(root: Path, relative: str) -> Path:
    rel = Path(relative)
    if not relative or rel.is_absolute():
        raise PipelineError(SYNC_PATH_INVALID, f"Path must be relative: {relative!r}", "sync_files")
    target = (root / rel).resolve()
    if target != root and root not in target.parents:
        raise PipelineError(SYNC_PATH_INVALID, f"Path escapes destination: {relative!r}", "sync_files")
    return target


def resolve_destination(destination: str) -> Path:
    if not destination or not str(destination).strip():
        raise PipelineError(SYNC_PATH_INVALID, "Destination is required", "sync_files")
    base = Path(destination)
    if SYNC_ROOT:
        sync_root = Path(SYNC_ROOT).resolve()
        base = (sync_root / base).resolve() if not base.is_absolute() else base.resolve()
        if base != sync_root and sync_root not in base.parents:
            raise PipelineError(SYNC_PATH_INVALID, f"Destination outside sync root: {destination!r}", "sync_files")
        return base
    return base.resolve()


def _atomic_write(target: Path, contents: str) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=str(target.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as handle:
            handle.write(contents)
        os.replace(tmp_name, target)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


def write_file(root: Path, generated: GeneratedFile) -> str:
    """Write one file under ``root``; returns "created", "updated", "merged" or "unchanged"."""
    target = resolve_target(root, generated.path)
    contents = generated.contents
    status = "created"
    try:
        if target.exists():
            existing = target.read_text(encoding="utf-8")
            merged = merge_regions(existing, contents)
            status = "merged" if merged != contents else "updated"
            contents = merged
            if existing == contents:
                return "unchanged"
        _atomic_write(target, contents)
    except (OSError, UnicodeDecodeError) as exc:
        logger.error("sync_write_failed path=%s error=%s", target, exc)
        raise PipelineError(SYNC_WRITE_FAILED, f"Could not write {generated.path}", "sync_files", exc) from exc
    return status


def sync_files(files: Iterable[GeneratedFile], destination: str | None = None) -> dict:
    """Return ``files`` unchanged, or write them one by one under ``destination``."""
    file_list: List[GeneratedFile] = list(files)
    if destination is None:
        return {
            "message": f"Generated {len(file_list)} files",
            "files": [f.to_dict() for f in file_list],
        }
    root = resolve_destination(destination)
    written = []
    for generated in file_list:
        status = write_file(root, generated)
        logger.info("sync_write path=%s status=%s", generated.path, status)
        written.append({"path": generated.path, "status": status})
    return {
        "message": f"Wrote {len(written)} files to {root}",
        "destination": str(root),
        "files": written,
    }
