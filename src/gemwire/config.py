"""Configuration: frozen Config plus the default credential lookup."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
import os

from dotenv import load_dotenv

from gemwire._http import DEFAULT_BASE_URL, DEFAULT_UPLOAD_URL
from gemwire.errors import ConfigurationError
from gemwire.retry import RetryPolicy

DEFAULT_MODEL = "gemini-2.5-flash"
DEFAULT_EMBEDDING_MODEL = "text-embedding-004"
DEFAULT_IMAGE_MODEL = "imagen-3.0-generate-002"
DEFAULT_API_KEY_ENV = "GEMINI_API_KEY"


@dataclass(frozen=True)
class Config:
    """Immutable client configuration.

    ``api_key`` is the *user-supplied* key and is never auto-filled: a stored
    key (``api_key_env``) is only consulted on calls that require an API key,
    so OAuth stays usable when no key is passed explicitly.

    Example:
        config = Config(model="gemini-2.5-flash", api_key="...")
    """

    model: str = DEFAULT_MODEL
    api_key: str | None = None
    #: Environment variable read by the default credential lookup.
    api_key_env: str = DEFAULT_API_KEY_ENV
    base_url: str = DEFAULT_BASE_URL
    upload_url: str = DEFAULT_UPLOAD_URL
    embedding_model: str = DEFAULT_EMBEDDING_MODEL
    image_model: str = DEFAULT_IMAGE_MODEL
    timeout_s: float = 120.0
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    def __post_init__(self) -> None:
        """Validate configuration."""
        for name in ("model", "embedding_model", "image_model"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value.strip():
                raise ConfigurationError(
                    f"{name} must be a non-empty string",
                    hint="Pass a model id such as 'gemini-2.5-flash'.",
                )
        for name in ("base_url", "upload_url"):
            value = getattr(self, name)
            if not value.startswith(("https://", "http://")):
                raise ConfigurationError(
                    f"{name} must be an http(s) URL, got {value!r}",
                )
        if self.timeout_s <= 0:
            raise ConfigurationError(
                f"timeout_s must be > 0, got {self.timeout_s}",
                hint="This bounds each HTTP exchange, not the whole retry budget.",
            )
        if self.api_key is not None and not self.api_key.strip():
            raise ConfigurationError(
                "api_key must not be blank",
                hint="Pass None to fall back to OAuth or the stored key.",
            )
        object.__setattr__(self, "base_url", self.base_url.rstrip("/"))

    def model_url(self, model: str, method: str) -> str:
        """URL for ``models/{model}:{method}``."""
        name = model if model.startswith("models/") else f"models/{model}"
        return f"{self.base_url}/{name}:{method}"

    def __str__(self) -> str:
        """Return a redacted, developer-friendly representation."""
        return (
            f"Config(model={self.model!r}, "
            f"api_key={'[REDACTED]' if self.api_key else None}, "
            f"base_url={self.base_url!r}, retry={self.retry!r})"
        )

    __repr__ = __str__


def env_key_lookup(env_var: str = DEFAULT_API_KEY_ENV) -> Callable[[], str | None]:
    """Return a credential lookup reading *env_var* (after loading ``.env``)."""

    def lookup() -> str | None:
        load_dotenv()
        value = (os.environ.get(env_var) or "").strip()
        return value or None

    return lookup
