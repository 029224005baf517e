"""Forge kernel utilities."""

from .canonical_json import CanonicalJsonTypeError, canonical_dumps, canonical_loads
from .contract_hash import contract_hash

__all__ = [
    "CanonicalJsonTypeError",
    "canonical_dumps",
    "canonical_loads",
    "contract_hash",
]
