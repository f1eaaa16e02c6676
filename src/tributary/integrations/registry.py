"""Process-wide lookup from provider id to adapter and capability metadata."""

from __future__ import annotations

from tributary.errors.exceptions import NotFoundError
from tributary.integrations.adapters.base import ProviderAdapter
from tributary.integrations.config import IntegrationDefinition
from tributary.models.enums import IntegrationProvider


class ProviderRegistry:
    """Adapters keyed by provider id.

    Populated once at startup and then frozen; lookups after ``freeze()``
    never mutate, so the registry is safe to share across tasks.
    """

    def __init__(self, catalog: dict[IntegrationProvider, IntegrationDefinition] | None = None):
        self._adapters: dict[IntegrationProvider, ProviderAdapter] = {}
        self._catalog = dict(catalog or {})
        self._frozen = False

    def register(self, adapter: ProviderAdapter) -> None:
        if self._frozen:
            raise RuntimeError("Provider registry is frozen")
        provider = adapter.provider
        if provider in self._adapters:
            raise ValueError(f"Adapter for '{provider}' already registered")
        self._adapters[provider] = adapter

    def freeze(self) -> ProviderRegistry:
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def get(self, provider: IntegrationProvider | str) -> ProviderAdapter | None:
        try:
            return self._adapters.get(IntegrationProvider(provider))
        except ValueError:
            return None

    def require(self, provider: IntegrationProvider | str) -> ProviderAdapter:
        adapter = self.get(provider)
        if adapter is None:
            raise NotFoundError("Provider", str(provider))
        return adapter

    def providers(self) -> list[IntegrationProvider]:
        return list(self._adapters)

    def get_definition(self, provider: IntegrationProvider | str) -> IntegrationDefinition | None:
        """Definition of a registered adapter, or the catalog entry for unimplemented providers."""
        adapter = self.get(provider)
        if adapter is not None:
            return adapter.definition
        try:
            return self._catalog.get(IntegrationProvider(provider))
        except ValueError:
            return None

    def list_definitions(self, include_unavailable: bool = True) -> list[IntegrationDefinition]:
        definitions = [a.definition for a in self._adapters.values()]
        if include_unavailable:
            definitions.extend(
                d for p, d in self._catalog.items() if p not in self._adapters
            )
        return sorted(definitions, key=lambda d: (not d.is_available, d.name.lower()))

    def __contains__(self, provider: object) -> bool:
        return self.get(provider) is not None  # type: ignore[arg-type]

    def __len__(self) -> int:
        return len(self._adapters)
