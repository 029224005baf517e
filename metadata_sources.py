"""Metadata source boundary: fetch interface, in-memory source, isolated bundle fetch."""

from __future__ import annotations

import asyncio
import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Dict, List

logger = logging.getLogger("forge.sources")

TABLE_FIELD_TYPES = {"Table", "Table MultiSelect"}


class DescriptorNotFound(LookupError):
    """Raised when the primary descriptor for a doctype does not exist."""

    def __init__(self, doctype: str) -> None:
        super().__init__(f"DocType not found: {doctype}")
        self.doctype = doctype


@dataclass
class MetadataFetchError(Exception):
    resource: str
    doctype: str | None
    message: str

    def __str__(self) -> str:
        return f"Failed to get {self.resource} for {self.doctype}: {self.message}"


class MetadataSource:
    """Abstract metadata collaborator.

    Implementations talk to the remote application; the pipeline only ever
    reads what they return and never mutates it.
    """

    async def fetch_descriptor(self, doctype: str) -> dict:
        raise NotImplementedError

    async def fetch_overrides(self, doctype: str) -> list[dict]:
        raise NotImplementedError

    async def fetch_scripts(self, doctype: str) -> list[dict]:
        raise NotImplementedError

    async def fetch_workflow(self, doctype: str) -> dict | None:
        raise NotImplementedError

    async def fetch_callable_methods(self, doctype: str | None = None) -> list[str]:
        raise NotImplementedError

    async def fetch_child_descriptor(self, doctype: str) -> dict:
        return await self.fetch_descriptor(doctype)


class InMemoryMetadataSource(MetadataSource):
    def __init__(
        self,
        descriptors: Dict[str, dict] | None = None,
        overrides: Dict[str, List[dict]] | None = None,
        scripts: Dict[str, List[dict]] | None = None,
        workflows: Dict[str, dict] | None = None,
        methods: List[str] | None = None,
    ) -> None:
        self._descriptors: Dict[str, dict] = copy.deepcopy(descriptors or {})
        self._overrides: Dict[str, List[dict]] = copy.deepcopy(overrides or {})
        self._scripts: Dict[str, List[dict]] = copy.deepcopy(scripts or {})
        self._workflows: Dict[str, dict] = copy.deepcopy(workflows or {})
        self._methods: List[str] = list(methods or [])
        self.calls: Dict[str, int] = {}

    def _count(self, resource: str) -> None:
        self.calls[resource] = self.calls.get(resource, 0) + 1

    def add_descriptor(self, descriptor: dict) -> None:
        self._descriptors[descriptor["name"]] = copy.deepcopy(descriptor)

    def add_override(self, doctype: str, record: dict) -> None:
        self._overrides.setdefault(doctype, []).append(copy.deepcopy(record))

    def add_script(self, doctype: str, script: dict) -> None:
        self._scripts.setdefault(doctype, []).append(copy.deepcopy(script))

    def set_workflow(self, doctype: str, workflow: dict | None) -> None:
        if workflow is None:
            self._workflows.pop(doctype, None)
        else:
            self._workflows[doctype] = copy.deepcopy(workflow)

    def add_method(self, method: str) -> None:
        self._methods.append(method)

    async def fetch_descriptor(self, doctype: str) -> dict:
        self._count("descriptor")
        descriptor = self._descriptors.get(doctype)
        if descriptor is None:
            raise DescriptorNotFound(doctype)
        return copy.deepcopy(descriptor)

    async def fetch_overrides(self, doctype: str) -> list[dict]:
        self._count("overrides")
        return copy.deepcopy(self._overrides.get(doctype, []))

    async def fetch_scripts(self, doctype: str) -> list[dict]:
        self._count("scripts")
        return copy.deepcopy(self._scripts.get(doctype, []))

    async def fetch_workflow(self, doctype: str) -> dict | None:
        self._count("workflow")
        workflow = self._workflows.get(doctype)
        return copy.deepcopy(workflow) if workflow else None

    async def fetch_callable_methods(self, doctype: str | None = None) -> list[str]:
        self._count("methods")
        return list(self._methods)

    async def fetch_child_descriptor(self, doctype: str) -> dict:
        self._count("child_descriptor")
        descriptor = self._descriptors.get(doctype)
        if descriptor is None:
            raise DescriptorNotFound(doctype)
        return copy.deepcopy(descriptor)


@dataclass
class MetadataBundle:
    descriptor: dict
    overrides: List[dict] = field(default_factory=list)
    scripts: List[dict] = field(default_factory=list)
    workflow: dict | None = None
    methods: List[str] = field(default_factory=list)


async def soft_fetch(resource: str, doctype: str | None, pending: Awaitable[Any], default: Any) -> Any:
    """Await a fetch, replacing any failure (or a None result) with ``default``."""
    try:
        result = await pending
    except Exception as exc:
        logger.warning("metadata_fetch_failed resource=%s doctype=%s error=%s", resource, doctype, exc)
        return copy.deepcopy(default)
    if result is None:
        return copy.deepcopy(default)
    return result


def _as_list(value: Any, resource: str, doctype: str) -> list:
    if isinstance(value, list):
        return value
    logger.warning("metadata_fetch_malformed resource=%s doctype=%s type=%s", resource, doctype, type(value).__name__)
    return []


async def fetch_bundle(source: MetadataSource, doctype: str) -> MetadataBundle:
    """Fetch every metadata resource for ``doctype`` concurrently.

    Only the descriptor is required; its failure is re-raised after the sibling
    fetches have settled. Every other resource degrades to an empty default.
    """
    results = await asyncio.gather(
        source.fetch_descriptor(doctype),
        soft_fetch("overrides", doctype, source.fetch_overrides(doctype), []),
        soft_fetch("scripts", doctype, source.fetch_scripts(doctype), []),
        soft_fetch("workflow", doctype, source.fetch_workflow(doctype), None),
        soft_fetch("methods", doctype, source.fetch_callable_methods(doctype), []),
        return_exceptions=True,
    )
    descriptor, overrides, scripts, workflow, methods = results
    if isinstance(descriptor, BaseException):
        raise descriptor
    if not isinstance(descriptor, dict):
        raise MetadataFetchError("descriptor", doctype, "descriptor must be an object")
    if workflow is not None and not isinstance(workflow, dict):
        logger.warning("metadata_fetch_malformed resource=workflow doctype=%s", doctype)
        workflow = None
    return MetadataBundle(
        descriptor=descriptor,
        overrides=_as_list(overrides, "overrides", doctype),
        scripts=_as_list(scripts, "scripts", doctype),
        workflow=workflow,
        methods=[m for m in _as_list(methods, "methods", doctype) if isinstance(m, str) and m],
    )


def child_doctypes(descriptor: dict) -> list[str]:
    """Return the distinct child doctypes referenced by table fields, in field order."""
    seen: list[str] = []
    for fdef in descriptor.get("fields") or []:
        if not isinstance(fdef, dict) or fdef.get("fieldtype") not in TABLE_FIELD_TYPES:
            continue
        target = fdef.get("options")
        if isinstance(target, str) and target and target not in seen:
            seen.append(target)
    return seen


async def fetch_children(source: MetadataSource, descriptor: dict) -> Dict[str, dict | None]:
    """Fetch child-table descriptors concurrently; a failed child maps to None."""
    names = child_doctypes(descriptor)
    if not names:
        return {}
    found = await asyncio.gather(
        *(soft_fetch("child_descriptor", name, source.fetch_child_descriptor(name), None) for name in names)
    )
    return {name: (child if isinstance(child, dict) else None) for name, child in zip(names, found)}
