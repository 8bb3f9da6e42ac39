"""
Cache key derivation.

A full key is the base key plus the identifying parameters, sorted by name
and rendered as ``name:value`` pairs joined with ``|``. Sorting makes the key
independent of dict insertion order.
"""

from __future__ import annotations

from collections.abc import Mapping

from fitcache.types import Scalar

PARAM_DELIMITER = "|"


def _render(value: Scalar) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def build_cache_key(base_key: str, params: Mapping[str, Scalar] | None = None) -> str:
    """Build the full cache key for a base key and optional parameters.

    Args:
        base_key: Fixed key naming a class of cached data (e.g. "user_profile").
        params: Identifying parameters. None or empty yields the bare base key.

    Returns:
        The full key, e.g. "workout_session:dayId:d1|programId:p1".
    """
    if not params:
        return base_key

    rendered = PARAM_DELIMITER.join(
        f"{name}:{_render(params[name])}" for name in sorted(params)
    )
    return f"{base_key}:{rendered}"
