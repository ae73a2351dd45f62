"""Configuration: frozen per-call Config."""

from __future__ import annotations

from dataclasses import dataclass, field

from conduit.errors import ConfigurationError
from conduit.retry import RetryPolicy
from conduit.transport import DEFAULT_TIMEOUT_S


@dataclass(frozen=True)
class Config:
    """Immutable settings for one call (or many calls sharing them).

    The model is required; Conduit does not pick one for you. ``api_key`` and
    ``base_url`` only apply when the provider is selected by name.

    Example:
        config = Config(model="llama-3.3-70b-versatile")
        response = await chat(request, "groq", config)
    """

    model: str
    timeout_s: float = DEFAULT_TIMEOUT_S
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    #: Overrides GROQ_API_KEY / GEMINI_API_KEY for name-selected adapters.
    api_key: str | None = None
    base_url: str | None = None
    #: Strip code fences and ``<think>`` blocks from the final text.
    clean_content: bool = False

    def __post_init__(self) -> None:
        """Normalize and validate fields."""
        if not isinstance(self.model, str) or not self.model.strip():
            raise ConfigurationError(
                "model must be a non-empty string",
                hint="Pass the provider's model id, e.g. Config(model='gemini-2.0-flash').",
            )
        object.__setattr__(self, "model", self.model.strip())

        if isinstance(self.timeout_s, bool) or not isinstance(self.timeout_s, (int, float)):
            raise ConfigurationError(
                f"timeout_s must be a number, got {type(self.timeout_s).__name__}"
            )
        if self.timeout_s <= 0:
            raise ConfigurationError(
                f"timeout_s must be > 0, got {self.timeout_s}",
                hint="This bounds each network round trip in seconds.",
            )
        if not isinstance(self.retry, RetryPolicy):
            raise ConfigurationError(
                f"retry must be a RetryPolicy, got {type(self.retry).__name__}"
            )

    def __str__(self) -> str:
        """Return a redacted, developer-friendly representation."""
        return (
            f"Config(model={self.model!r}, timeout_s={self.timeout_s}, "
            f"api_key={'[REDACTED]' if self.api_key else None}, "
            f"base_url={self.base_url!r}, clean_content={self.clean_content})"
        )

    __repr__ = __str__
