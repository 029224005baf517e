"""Metadata source backed by a Frappe/ERPNext site's REST API."""

from __future__ import annotations

import json
import logging
import os
from typing import Any
from urllib.parse import quote

import httpx

from metadata_sources import DescriptorNotFound, MetadataFetchError, MetadataSource

logger = logging.getLogger("forge.frappe")

HTTP_TIMEOUT = float(os.getenv("FORGE_HTTP_TIMEOUT", "30"))
LIST_PAGE_LENGTH = 500


def _erpnext_url() -> str:
    return (os.getenv("ERPNEXT_URL") or "").strip().rstrip("/")


def _auth_headers() -> dict:
    api_key = (os.getenv("ERPNEXT_API_KEY") or "").strip()
    api_secret = (os.getenv("ERPNEXT_API_SECRET") or "").strip()
    headers = {"Accept": "application/json", "Content-Type": "application/json"}
    if api_key and api_secret:
        headers["Authorization"] = f"token {api_key}:{api_secret}"
    return headers


def _error_text(res: httpx.Response) -> str:
    try:
        body = res.json()
    except ValueError:
        return res.text[:200] or res.reason_phrase
    if isinstance(body, dict):
        for key in ("message", "exception", "exc_type"):
            if body.get(key):
                return str(body[key])
    return res.reason_phrase


class FrappeMetadataSource(MetadataSource):
    """Metadata source backed by a Frappe/ERPNext site's REST API."""

    def __init__(
        self,
        base_url: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ) -> None:
        self.base_url = (base_url or _erpnext_url()).rstrip("/")
        if not self.base_url and client is None:
            raise ValueError("ERPNEXT_URL is not set")
        self._client = client or httpx.AsyncClient(
            base_url=self.base_url,
            headers=_auth_headers(),
            timeout=timeout if timeout is not None else HTTP_TIMEOUT,
        )

    @property
    def authenticated(self) -> bool:
        return "Authorization" in self._client.headers

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get(self, path: str, resource: str, doctype: str | None, params: dict | None = None) -> Any:
        try:
            res = await self._client.get(path, params=params)
        except httpx.HTTPError as exc:
            logger.warning("frappe_request_failed resource=%s doctype=%s error=%s", resource, doctype, exc)
            raise MetadataFetchError(resource, doctype, str(exc) or type(exc).__name__) from exc
        if res.status_code >= 400:
            raise MetadataFetchError(resource, doctype, f"{res.status_code} {_error_text(res)}")
        try:
            body = res.json()
        except ValueError as exc:
            raise MetadataFetchError(resource, doctype, "response is not JSON") from exc
        return body.get("data") if isinstance(body, dict) else None

    async def _list(self, target: str, resource: str, doctype: str | None, filters: dict, fields: list[str], order_by: str | None = None) -> list[dict]:
        params = {
            "filters": json.dumps(filters),
            "fields": json.dumps(fields),
            "limit_page_length": LIST_PAGE_LENGTH,
        }
        if order_by:
            params["order_by"] = order_by
        rows = await self._get(f"/api/resource/{quote(target)}", resource, doctype, params)
        return [row for row in rows or [] if isinstance(row, dict)]

    async def fetch_descriptor(self, doctype: str) -> dict:
        path = f"/api/resource/DocType/{quote(doctype)}"
        try:
            res = await self._client.get(path)
        except httpx.HTTPError as exc:
            raise MetadataFetchError("descriptor", doctype, str(exc) or type(exc).__name__) from exc
        if res.status_code == 404:
            raise DescriptorNotFound(doctype)
        if res.status_code >= 400:
            raise MetadataFetchError("descriptor", doctype, f"{res.status_code} {_error_text(res)}")
        try:
            data = res.json().get("data")
        except (ValueError, AttributeError) as exc:
            raise MetadataFetchError("descriptor", doctype, "response is not a JSON object") from exc
        if not isinstance(data, dict):
            raise MetadataFetchError("descriptor", doctype, "missing data")
        logger.info("frappe_descriptor_fetched doctype=%s fields=%s", doctype, len(data.get("fields") or []))
        return data

    async def fetch_overrides(self, doctype: str) -> list[dict]:
        return await self._list(
            "Property Setter",
            "overrides",
            doctype,
            {"doc_type": doctype},
            ["doctype_or_field", "field_name", "property", "value", "property_type"],
            order_by="creation asc",
        )

    async def fetch_scripts(self, doctype: str) -> list[dict]:
        return await self._list(
            "Client Script",
            "scripts",
            doctype,
            {"dt": doctype},
            ["name", "dt", "script", "enabled"],
            order_by="creation asc",
        )

    async def fetch_workflow(self, doctype: str) -> dict | None:
        rows = await self._list("Workflow", "workflow", doctype, {"document_type": doctype, "is_active": 1}, ["name"])
        if not rows:
            return None
        name = rows[0].get("name")
        if not name:
            return None
        return await self._get(f"/api/resource/Workflow/{quote(name)}", "workflow", doctype)

    async def fetch_callable_methods(self, doctype: str | None = None) -> list[str]:
        filters: dict = {"script_type": "API", "disabled": 0}
        if doctype:
            filters["reference_doctype"] = ["in", [doctype, ""]]
        rows = await self._list("Server Script", "methods", doctype, filters, ["api_method_name"])
        return [row["api_method_name"] for row in rows if row.get("api_method_name")]
