"""Contract hashing utilities."""

from __future__ import annotations

import hashlib
from typing import Any

from .canonical_json import canonical_dumps


def contract_hash(contract_obj: Any) -> str:
    """Return the canonical SHA-256 hash for a contract payload.

    Strings are hashed as-is so an already serialized payload hashes the same
    as the object it was produced from.
    """
    text = contract_obj if isinstance(contract_obj, str) else canonical_dumps(contract_obj)
    digest = hashlib.sha256(text.encode("utf-8")).hexdigest()
    return f"sha256:{digest}"
