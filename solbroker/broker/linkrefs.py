"""Link-reference maps: discovery in legacy bytecode and canonical reshaping.

Canonical shape::

    {source_path: {library_name: [{"start": int, "length": int}, ...]}}

Libraries declared without an owning source file live under the ``""``
source key. Legacy compilers emit those as flat ``{library: [...]}``
entries next to the nested ones; ``reshape_link_references`` moves them
into the ``""`` group. Offsets are never modified.
"""

import re
from typing import Any

LinkReferenceMap = dict[str, dict[str, list[dict[str, int]]]]

# Placeholder: "__" + 36 name characters (right-padded with "_") + "__".
_PLACEHOLDER_RE = re.compile(r"__(.{36})__")
_PLACEHOLDER_BYTES = 20


def find_link_references(bytecode: str | None) -> dict[str, list[dict[str, int]]]:
    """Locate unlinked-library placeholders in hex bytecode.

    Returns a flat ``{library_name: [{start, length}]}`` map with offsets in
    bytes of the binary form. Trailing padding underscores are trimmed from
    names, so a name that itself ends in ``_`` cannot be told apart.
    """
    references: dict[str, list[dict[str, int]]] = {}
    if not bytecode:
        return references

    offset = 0
    remaining = bytecode
    while True:
        found = _PLACEHOLDER_RE.search(remaining)
        if found is None:
            break
        start = found.start()
        name = found.group(1).rstrip("_")
        references.setdefault(name, []).append({
            "start": (offset + start) // 2,
            "length": _PLACEHOLDER_BYTES,
        })
        # advance by one placeholder's worth of hex characters
        offset += start + _PLACEHOLDER_BYTES
        remaining = remaining[start + _PLACEHOLDER_BYTES:]
    return references


def reshape_link_references(link_references: dict[str, Any] | None) -> dict[str, Any] | None:
    """Group path-less (list-valued) libraries under the ``""`` key.

    Mapping-valued entries keep their source-path key. Input without any
    list-valued entry comes back unchanged, so the transform is idempotent
    on canonical maps. ``None`` passes through.
    """
    if link_references is None:
        return None

    grouped: dict[str, Any] = {}
    top_level: dict[str, Any] = {}
    for key, value in link_references.items():
        if isinstance(value, list):
            top_level[key] = value
        else:
            grouped[key] = value

    if not top_level:
        return link_references

    existing = grouped.get("")
    grouped[""] = {**existing, **top_level} if isinstance(existing, dict) else top_level
    return grouped
