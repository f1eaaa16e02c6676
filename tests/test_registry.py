"""Tests for the provider registry and catalog."""

import pytest

from conftest import FakeAdapter
from tributary.errors.exceptions import NotFoundError
from tributary.integrations.catalog import build_catalog
from tributary.integrations.registry import ProviderRegistry
from tributary.models.enums import IntegrationProvider


def test_register_and_lookup(settings):
    registry = ProviderRegistry()
    adapter = FakeAdapter(settings)
    registry.register(adapter)

    assert registry.get(IntegrationProvider.NOTION) is adapter
    assert registry.get("notion") is adapter
    assert registry.require("notion") is adapter
    assert IntegrationProvider.NOTION in registry
    assert len(registry) == 1


def test_duplicate_registration_rejected(settings):
    registry = ProviderRegistry()
    registry.register(FakeAdapter(settings))
    with pytest.raises(ValueError):
        registry.register(FakeAdapter(settings))


def test_frozen_registry_rejects_registration(settings):
    registry = ProviderRegistry().freeze()
    assert registry.frozen
    with pytest.raises(RuntimeError):
        registry.register(FakeAdapter(settings))


def test_unknown_provider():
    registry = ProviderRegistry()
    assert registry.get("not-a-provider") is None
    assert registry.get("slack") is None
    with pytest.raises(NotFoundError):
        registry.require("slack")


def test_definitions_include_unavailable_catalog_entries(registry):
    definitions = registry.list_definitions()
    by_id = {d.id: d for d in definitions}

    assert by_id[IntegrationProvider.NOTION].is_available
    assert by_id[IntegrationProvider.GRANOLA].is_available
    assert not by_id[IntegrationProvider.SLACK].is_available
    # Available providers sort first.
    available = [d.is_available for d in definitions]
    assert available == sorted(available, reverse=True)

    only_available = registry.list_definitions(include_unavailable=False)
    assert {d.id for d in only_available} == {IntegrationProvider.NOTION, IntegrationProvider.GRANOLA}


def test_get_definition_falls_back_to_catalog(registry):
    assert registry.get_definition("slack").is_coming_soon
    assert registry.get_definition("granola").is_available
    assert registry.get_definition("unknown") is None


def test_catalog_entries_are_unavailable():
    assert all(not d.is_available for d in build_catalog().values())


def test_from_slug_accepts_hyphens():
    assert IntegrationProvider.from_slug("Google-Calendar") == IntegrationProvider.GOOGLE_CALENDAR
    with pytest.raises(ValueError):
        IntegrationProvider.from_slug("myspace")


def test_build_registry_registers_builtin_adapters(settings):
    from tributary.integrations.bootstrap import build_registry

    registry = build_registry(settings)
    assert registry.frozen
    assert set(registry.providers()) == {
        IntegrationProvider.READWISE,
        IntegrationProvider.GRANOLA,
        IntegrationProvider.GITHUB,
        IntegrationProvider.STRIPE,
    }
    with pytest.raises(RuntimeError):
        registry.register(FakeAdapter(settings))
