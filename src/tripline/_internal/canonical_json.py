"""Centralized canonical JSON serialization.

Every stored record goes through canonical_bytes, so two records with the
same content are byte-identical on disk. The fileset signature is computed
over those bytes, which makes this the contract between the record store
and the signature engine.
"""

import json
from typing import Any


def canonical_dumps(obj: Any, ensure_ascii: bool = False) -> str:
    """
    Canonical JSON serialization for byte-stable records.

    Rules:
    - Sorted keys
    - Stable separators (",", ":")
    - Lists keep their order (callers sort where order is meaningless)
    - Non-ASCII characters kept as is, or \\u escaped with `ensure_ascii`

    Args:
        obj: Python object to serialize
        ensure_ascii: Escape every non-ASCII character

    Returns:
        Canonical JSON string
    """
    return json.dumps(
        obj,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=ensure_ascii
    )


def canonical_bytes(obj: Any) -> bytes:
    """Canonical JSON as pure ASCII bytes.

    Paths decoded from undecodable filesystem bytes contain lone surrogates.
    They have no UTF-8 form, but survive as \\u escapes and come back
    unchanged from json.loads.
    """
    return canonical_dumps(obj, ensure_ascii=True).encode("ascii")
