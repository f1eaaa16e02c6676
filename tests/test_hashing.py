"""Tests for item content hashing."""

from datetime import timedelta

from conftest import make_item
from tributary.integrations.hashing import content_hash


def test_hash_is_stable_and_hex():
    h = content_hash(make_item("a"))
    assert h == content_hash(make_item("a"))
    assert len(h) == 64


def test_tag_order_does_not_matter():
    assert content_hash(make_item("a", tags=["x", "y"])) == content_hash(make_item("a", tags=["y", "x"]))


def test_metadata_churn_is_ignored():
    first = make_item("a")
    second = make_item("a", minutes=90)
    second.metadata.updated_at = second.metadata.updated_at + timedelta(days=1)
    second.metadata.author = "someone"
    assert content_hash(first) == content_hash(second)


def test_visible_changes_alter_the_hash():
    base = content_hash(make_item("a"))
    assert content_hash(make_item("a", content="Other")) != base
    assert content_hash(make_item("a", title="Other")) != base
    assert content_hash(make_item("a", tags=["new"])) != base

    summarized = make_item("a")
    summarized.summary = "tl;dr"
    assert content_hash(summarized) != base
