"""Contract pipeline: fetch, merge, extract, build, cache, generate, sync."""

from __future__ import annotations

import logging
import time
from typing import List

import file_sync
from codegen import GeneratedFile, generate_files
from contract_build import ContractLimits, Preset, UiContract, build_ui_contract, parse_preset
from contract_cache import ContractCache
from metadata_sources import DescriptorNotFound, MetadataSource, fetch_bundle, fetch_children
from override_merge import merge_overrides
from pipeline_errors import (
    DESCRIPTOR_FETCH_FAILED,
    DESCRIPTOR_NOT_FOUND,
    PipelineError,
    describe_error,
)
from script_extract import extract_fragments

logger = logging.getLogger("forge.pipeline")

__all__ = ["PipelineError", "UiPipeline", "describe_error"]


class UiPipeline:
    """Entry point tying a metadata source to an injected contract cache."""

    def __init__(
        self,
        source: MetadataSource,
        cache: ContractCache | None = None,
        limits: ContractLimits | None = None,
    ) -> None:
        self.source = source
        self.cache = cache if cache is not None else ContractCache()
        self.limits = limits or ContractLimits()

    async def _build(self, doctype: str, preset: Preset) -> UiContract:
        started = time.perf_counter()
        try:
            bundle = await fetch_bundle(self.source, doctype)
        except DescriptorNotFound as exc:
            raise PipelineError(DESCRIPTOR_NOT_FOUND, f"DocType not found: {doctype}", "build_contract", exc) from exc
        except Exception as exc:
            logger.error("descriptor_fetch_failed doctype=%s error=%s", doctype, exc)
            raise PipelineError(
                DESCRIPTOR_FETCH_FAILED, f"Could not fetch DocType {doctype}", "build_contract", exc
            ) from exc

        descriptor = merge_overrides(bundle.descriptor, bundle.overrides)
        children = await fetch_children(self.source, descriptor)
        fragments = extract_fragments(bundle.scripts, doctype)
        contract = build_ui_contract(
            doctype,
            preset,
            descriptor,
            fragments=fragments,
            workflow=bundle.workflow,
            methods=bundle.methods,
            children=children,
            limits=self.limits,
        )
        logger.info(
            "contract_built doctype=%s preset=%s hash=%s fragments=%s ms=%d",
            doctype,
            preset.value,
            contract.contract_hash,
            len(fragments),
            int((time.perf_counter() - started) * 1000),
        )
        return contract

    async def build_contract(self, doctype: str, preset: Preset | str | None = None) -> UiContract:
        chosen = parse_preset(preset)
        return await self.cache.get_or_build(doctype, chosen, lambda: self._build(doctype, chosen))

    async def generate_files(self, doctype: str, preset: Preset | str | None = None) -> List[GeneratedFile]:
        contract = await self.build_contract(doctype, preset)
        return generate_files(contract)

    async def sync_files(
        self,
        doctype: str,
        preset: Preset | str | None = None,
        destination: str | None = None,
    ) -> dict:
        files = await self.generate_files(doctype, preset)
        result = file_sync.sync_files(files, destination)
        if destination is not None:
            logger.info("files_synced doctype=%s destination=%s count=%s", doctype, result.get("destination"), len(files))
        return result

    def invalidate(self, doctype: str, preset: Preset | str | None = None) -> int:
        return self.cache.invalidate(doctype, preset)
