"""Provider credentials.

A credential is resolved once, when an adapter is constructed, and shared
read-only by every request that adapter serves.
"""

from __future__ import annotations

from dataclasses import dataclass
import os
from typing import Final

from dotenv import load_dotenv
from pydantic import SecretStr

from conduit.errors import ConfigurationError

load_dotenv()

#: Environment variables consulted per provider, in order.
API_KEY_ENV_VARS: Final[dict[str, tuple[str, ...]]] = {
    "groq": ("GROQ_API_KEY",),
    "gemini": ("GEMINI_API_KEY", "GOOGLE_API_KEY"),
}


@dataclass(frozen=True)
class ProviderCredential:
    """An opaque secret bound to one provider."""

    provider: str
    secret: SecretStr

    def reveal(self) -> str:
        """Return the raw secret for attaching to an outgoing request."""
        return self.secret.get_secret_value()

    def for_provider(self, provider: str) -> ProviderCredential:
        """Return self, or raise if the credential belongs to another provider."""
        if self.provider != provider:
            raise ConfigurationError(
                f"{self.provider} credential cannot be used with {provider}",
                hint=f"Pass a {provider} key or use resolve_credential({provider!r}).",
            )
        return self

    def redact(self, text: str) -> str:
        """Replace any occurrence of the secret in *text*."""
        raw = self.reveal()
        return text.replace(raw, "[REDACTED]") if raw else text

    def __repr__(self) -> str:
        return f"ProviderCredential(provider={self.provider!r}, secret='**********')"

    __str__ = __repr__


def resolve_credential(provider: str, api_key: str | None = None) -> ProviderCredential:
    """Build a credential from an explicit key or the provider's environment variable.

    Raises:
        ConfigurationError: If no non-empty key can be found.
    """
    env_vars = API_KEY_ENV_VARS.get(provider, (f"{provider.upper()}_API_KEY",))
    key = api_key.strip() if isinstance(api_key, str) else None
    if not key:
        for env_var in env_vars:
            value = os.environ.get(env_var, "").strip()
            if value:
                key = value
                break
    if not key:
        raise ConfigurationError(
            f"API key required for {provider}",
            hint=f"Set {env_vars[0]} or pass api_key=...",
        )
    return ProviderCredential(provider=provider, secret=SecretStr(key))
