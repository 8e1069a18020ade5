"""nodesmith kernel utilities."""

from .canonical_json import CanonicalJsonTypeError, canonical_dumps, canonical_pretty
from .identifiers import to_function_name, to_identifier
from .manifest_hash import manifest_hash

__all__ = [
    "CanonicalJsonTypeError",
    "canonical_dumps",
    "canonical_pretty",
    "manifest_hash",
    "to_function_name",
    "to_identifier",
]
