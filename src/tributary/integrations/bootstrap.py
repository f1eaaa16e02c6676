"""Explicit startup wiring of the provider registry."""

import logging

import httpx

from tributary.integrations.adapters import BUILTIN_ADAPTERS
from tributary.integrations.catalog import build_catalog
from tributary.integrations.registry import ProviderRegistry

logger = logging.getLogger(__name__)


def build_registry(settings, transport: httpx.AsyncBaseTransport | None = None) -> ProviderRegistry:
    """Create, populate and freeze the registry with every built-in adapter."""
    registry = ProviderRegistry(catalog=build_catalog())
    for adapter_cls in BUILTIN_ADAPTERS:
        registry.register(adapter_cls(settings, transport=transport))
    registry.freeze()
    logger.info(
        "Provider registry ready (%d adapters: %s)",
        len(registry),
        ", ".join(p.value for p in registry.providers()),
    )
    return registry
