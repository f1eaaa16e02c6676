"""Built-in provider adapters, in registration order."""

from tributary.integrations.adapters.base import (
    ApiKeyAdapter,
    OAuth2Adapter,
    ProviderAdapter,
    SyncContext,
)
from tributary.integrations.adapters.github import GitHubAdapter
from tributary.integrations.adapters.granola import GranolaAdapter
from tributary.integrations.adapters.readwise import ReadwiseAdapter
from tributary.integrations.adapters.stripe import StripeAdapter

BUILTIN_ADAPTERS: tuple[type[ProviderAdapter], ...] = (
    ReadwiseAdapter,
    GranolaAdapter,
    GitHubAdapter,
    StripeAdapter,
)

__all__ = [
    "ApiKeyAdapter",
    "BUILTIN_ADAPTERS",
    "GitHubAdapter",
    "GranolaAdapter",
    "OAuth2Adapter",
    "ProviderAdapter",
    "ReadwiseAdapter",
    "StripeAdapter",
    "SyncContext",
]
