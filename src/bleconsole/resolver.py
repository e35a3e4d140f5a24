"""
Name/index resolution for devices, services and characteristics.

A token is either ``#N`` (index into the listed order, as shown by ``#00``
style listings) or an exact, case-sensitive name. Partial names never match.
When several items share a name, the first one in listing order wins.
"""

import re
from typing import Any, Optional, Sequence

_INDEX_TOKEN = re.compile(r"#(\d+)")


def item_name(item: Any) -> str:
    """Return the display name of a string or named item."""
    if isinstance(item, str):
        return item
    return item.name


def resolve(items: Sequence[Any], token: str) -> Optional[str]:
    """Resolve a user token against an ordered collection.

    Args:
        items: Ordered strings or objects with a ``name`` attribute
        token: ``#N`` index or exact name

    Returns:
        Matching name, or None if nothing matches
    """
    token = token.strip()
    if not token:
        return None

    names = [item_name(item) for item in items]

    match = _INDEX_TOKEN.fullmatch(token)
    if match:
        index = int(match.group(1))
        if index < len(names):
            return names[index]

    if token in names:
        return token
    return None


def find(items: Sequence[Any], token: str) -> Optional[Any]:
    """Resolve a token and return the first item carrying that name."""
    name = resolve(items, token)
    if name is None:
        return None
    return next(item for item in items if item_name(item) == name)
