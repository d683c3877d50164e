"""Conflict resolution for ignores sharing an asset key.

When several legacy ignores collapse onto one policy, exactly one of them
supplies the policy's type, reason and expiry.
"""

from collections.abc import Sequence

from cci_migration.migration.models import Ignore

WONT_FIX = "wont-fix"
NOT_VULNERABLE = "not-vulnerable"
TEMPORARY = "temporary"

# Highest priority first; anything else is treated as temporary
IGNORE_TYPE_PRIORITY = (WONT_FIX, NOT_VULNERABLE, TEMPORARY)


def priority_bucket(ignore_type: str) -> str:
    """Map an ignore type onto its priority bucket."""
    return ignore_type if ignore_type in IGNORE_TYPE_PRIORITY else TEMPORARY


def resolve_conflict(ignores: Sequence[Ignore]) -> Ignore:
    """Select the ignore that wins for a group.

    The first non-empty bucket in IGNORE_TYPE_PRIORITY wins. Within it the
    earliest created ignore is chosen; ties keep input order.

    Args:
        ignores: Non-empty group of ignores sharing one asset key

    Returns:
        The selected ignore

    Raises:
        ValueError: If the group is empty
    """
    if not ignores:
        raise ValueError("Cannot resolve an empty ignore group")
    if len(ignores) == 1:
        return ignores[0]

    buckets: dict[str, list[Ignore]] = {bucket: [] for bucket in IGNORE_TYPE_PRIORITY}
    for ignore in ignores:
        buckets[priority_bucket(ignore.ignore_type)].append(ignore)

    for bucket in IGNORE_TYPE_PRIORITY:
        candidates = buckets[bucket]
        if candidates:
            return min(candidates, key=lambda ignore: ignore.created_at)

    raise ValueError("Cannot resolve an empty ignore group")  # pragma: no cover
