"""Content-addressed names for materialized views.

The name embeds a hash of the all-time materialized query, so changing the aggregation logic
yields a new view instead of silently reusing one built from the old query.
"""

import hashlib

from hybridview.models import validate_identifier

HASH_LENGTH = 16

# PostgreSQL truncates longer identifiers (NAMEDATALEN - 1), which would cut off the hash
MAX_IDENTIFIER_LENGTH = 63


def version_hash(all_time_query: str) -> str:
    return hashlib.sha256(all_time_query.encode("utf-8")).hexdigest()[:HASH_LENGTH]


def derive_name(identifier: str, all_time_query: str, prefix: str = "hv") -> str:
    """Return `{prefix}_{identifier}_{hash}` for the given all-time query text.

    Raises ValueError if the identifier (or prefix) contains anything other than letters, digits
    and underscores, or if the resulting name doesn't fit in a PostgreSQL identifier.
    """
    validate_identifier(identifier)
    validate_identifier(prefix)
    name = f"{prefix}_{identifier}_{version_hash(all_time_query)}"
    if len(name) > MAX_IDENTIFIER_LENGTH:
        raise ValueError(
            f"Materialized view name {name!r} is longer than {MAX_IDENTIFIER_LENGTH} characters, "
            f"use a shorter identifier than {identifier!r}"
        )
    return name


def index_name(view_name: str, suffix: str) -> str:
    """Return `{view_name}_{suffix}`, shortened to fit a PostgreSQL identifier.

    Long view names are cut and followed by a digest of the full name, so two suffixes on the
    same view never truncate to the same index name.
    """
    validate_identifier(suffix)
    name = f"{view_name}_{suffix}"
    if len(name) <= MAX_IDENTIFIER_LENGTH:
        return name
    digest = hashlib.sha256(name.encode("utf-8")).hexdigest()[:8]
    keep = MAX_IDENTIFIER_LENGTH - len(suffix) - len(digest) - 2
    if keep < 1:
        raise ValueError(f"Index suffix {suffix!r} is too long")
    return f"{view_name[:keep]}_{digest}_{suffix}"


def stale_name_pattern(identifier: str, prefix: str = "hv") -> str:
    """Regular expression matching every version of the view, current one included"""
    validate_identifier(identifier)
    validate_identifier(prefix)
    return f"^{prefix}_{identifier}_[0-9a-f]{{{HASH_LENGTH}}}$"
