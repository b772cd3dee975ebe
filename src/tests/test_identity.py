import re

import pytest

from hybridview.identity import (
    HASH_LENGTH,
    MAX_IDENTIFIER_LENGTH,
    derive_name,
    index_name,
    stale_name_pattern,
    version_hash,
)


def test_same_query_gives_same_name() -> None:
    assert derive_name("post_views", "SELECT 1") == derive_name("post_views", "SELECT 1")


def test_different_query_gives_different_name() -> None:
    names = {derive_name("post_views", f"SELECT {i}") for i in range(1000)}
    assert len(names) == 1000


def test_name_format() -> None:
    name = derive_name("post_views", "SELECT 1")

    prefix, hash_ = name.rsplit("_", 1)
    assert prefix == "hv_post_views"
    assert len(hash_) == HASH_LENGTH
    assert hash_ == version_hash("SELECT 1")
    assert int(hash_, 16) >= 0


def test_custom_prefix() -> None:
    assert derive_name("post_views", "SELECT 1", prefix="mv").startswith("mv_post_views_")


def test_whitespace_is_significant() -> None:
    # The hash is over the exact query text
    assert derive_name("v", "SELECT 1") != derive_name("v", "SELECT  1")


@pytest.mark.parametrize("identifier", ["", "post-views", 'post"views', "post views", "views;drop"])
def test_invalid_identifier(identifier: str) -> None:
    with pytest.raises(ValueError):
        derive_name(identifier, "SELECT 1")


def test_name_too_long() -> None:
    with pytest.raises(ValueError, match="longer than"):
        derive_name("x" * 50, "SELECT 1")


def test_stale_name_pattern_matches_only_same_identifier() -> None:
    pattern = re.compile(stale_name_pattern("post"))
    assert pattern.match(derive_name("post", "SELECT 1"))
    assert pattern.match(derive_name("post", "SELECT 2"))
    assert not pattern.match(derive_name("post_views", "SELECT 1"))
    assert not pattern.match("hv_post_notahash")


def test_index_name_short_view_name() -> None:
    view_name = "hv_daily_0123456789abcdef"
    assert index_name(view_name, "window_end") == f"{view_name}_window_end"


def test_index_names_stay_distinct_for_long_view_names() -> None:
    view_name = derive_name("x" * 43, "SELECT 1")
    assert len(view_name) == MAX_IDENTIFIER_LENGTH

    unique = index_name(view_name, "post_id_window_end")
    plain = index_name(view_name, "window_end")

    assert unique != plain
    assert len(unique) <= MAX_IDENTIFIER_LENGTH
    assert len(plain) <= MAX_IDENTIFIER_LENGTH
    assert unique.endswith("_post_id_window_end")
    assert plain.endswith("_window_end")
    # Stable across calls, so "IF NOT EXISTS" finds the index again
    assert index_name(view_name, "window_end") == plain


def test_index_name_rejects_bad_suffix() -> None:
    with pytest.raises(ValueError):
        index_name("hv_daily_0123456789abcdef", 'x" ON other')
    with pytest.raises(ValueError):
        index_name("x" * 63, "s" * 60)
