"""Environment-based API key resolution.

Keys are looked up once per process by environment variable name and cached
for the lifetime of the process; the cache is never invalidated. A missing
key is a configuration error raised before any provider call is attempted.
"""

from __future__ import annotations

import os

from pi.inline.errors import ConfigurationError

PROVIDER_KEY_ENV: dict[str, str] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "palm": "PALM_API_KEY",
}

_key_cache: dict[str, str] = {}


def get_api_key(env_name: str) -> str:
    """Return the value of ``env_name``, reading the environment only once."""
    cached = _key_cache.get(env_name)
    if cached is not None:
        return cached

    value = os.environ.get(env_name)
    if not value:
        raise ConfigurationError(f"Missing environment variable: {env_name}")

    _key_cache[env_name] = value
    return value


def get_provider_api_key(provider: str, override: str | None = None) -> str:
    """Resolve the key for a provider name, preferring an explicit override."""
    if override:
        return override
    env_name = PROVIDER_KEY_ENV.get(provider)
    if env_name is None:
        raise ConfigurationError(f"No API key variable known for provider: {provider}")
    return get_api_key(env_name)


def clear_key_cache() -> None:
    """Forget cached keys. Only meant for tests."""
    _key_cache.clear()
