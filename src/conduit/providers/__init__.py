"""Provider adapters and the selector registry."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from conduit.credentials import resolve_credential
from conduit.errors import ConfigurationError
from conduit.providers.base import ProviderAdapter, ProviderCapabilities
from conduit.providers.gemini import GeminiAdapter
from conduit.providers.groq import GroqAdapter

if TYPE_CHECKING:
    from collections.abc import Callable

_ADAPTERS: dict[str, Callable[..., ProviderAdapter]] = {
    "groq": GroqAdapter,
    "gemini": GeminiAdapter,
}


def available_providers() -> tuple[str, ...]:
    return tuple(sorted(_ADAPTERS))


def create_adapter(
    provider: str,
    *,
    api_key: str | None = None,
    base_url: str | None = None,
    **options: Any,
) -> ProviderAdapter:
    """Construct the adapter for a selector name.

    The credential is resolved here, once; reuse the returned adapter across
    calls to share it.

    Raises:
        ConfigurationError: Unknown selector or no API key available.
    """
    name = provider.strip().lower() if isinstance(provider, str) else provider
    factory = _ADAPTERS.get(name)
    if factory is None:
        supported = ", ".join(repr(p) for p in available_providers())
        raise ConfigurationError(
            f"Unknown provider: {provider!r}",
            hint=f"Supported providers: {supported}",
        )
    credential = resolve_credential(name, api_key)
    return factory(credential, base_url=base_url, **options)


__all__ = [
    "GeminiAdapter",
    "GroqAdapter",
    "ProviderAdapter",
    "ProviderCapabilities",
    "available_providers",
    "create_adapter",
]
