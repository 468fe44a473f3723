"""ETAPI connection settings.

Each field is taken from the first source that provides it:

    command line > environment (.env included) > YAML ``etapi`` section > default

Environment variables:
    TRILIUM_URL        server URL, e.g. ``http://localhost:8080`` (required)
    TRILIUM_TOKEN      ETAPI token from Options > ETAPI (required)
    TRILIUM_INSECURE   ``true`` to skip TLS certificate checks
    TRILIUM_DEBUG      ``true`` for debug logging
    TRILIUM_CACHE_TTL  seconds a cached note stays valid (default 30)
"""

import logging
import os
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

_TRUTHY = frozenset({"true", "1", "yes", "on"})


@dataclass
class Config:
    etapi_url: str
    token: str
    insecure: bool = False
    debug: bool = False
    request_timeout: int = 60
    cache_ttl: float = 30.0
    cache_size: int = 256


def validate_config(config: Config) -> None:
    """Normalise ``config.etapi_url`` in place and check every field.

    Raises:
        ValueError: Bad URL scheme or host, blank token, negative TTL.
    """
    url = config.etapi_url.strip()
    if not url.startswith(("http://", "https://")):
        raise ValueError(
            f"Invalid Trilium URL '{url}': must start with http:// or https://"
        )
    if not urlparse(url).hostname:
        raise ValueError(f"Invalid Trilium URL '{url}': URL must include a hostname")
    config.etapi_url = url.removesuffix("/")

    if not config.token.strip():
        raise ValueError(
            "ETAPI token cannot be empty. Set TRILIUM_TOKEN environment variable."
        )
    if config.cache_ttl < 0:
        raise ValueError(f"Invalid cache TTL {config.cache_ttl}: must not be negative")

    if config.insecure:
        logger.warning(
            "SSL verification disabled for %s; use only for development",
            config.etapi_url,
        )


def _required(cli: str | None, env_key: str, fallback: Any, what: str, yaml_key: str) -> str:
    value = cli or os.getenv(env_key) or fallback
    if not value:
        raise ValueError(
            f"{what} not found. Set {env_key} environment variable, "
            f"pass --{yaml_key} CLI argument, or add '{yaml_key}' to config.yml."
        )
    return str(value).strip()


def _flag(cli: bool, env_key: str, fallback: Any) -> bool:
    """A CLI ``True`` wins; otherwise a set env var decides, then YAML."""
    if cli:
        return True
    raw = os.getenv(env_key)
    if raw is not None:
        return raw.lower() in _TRUTHY
    return bool(fallback)


def _seconds(env_key: str, fallback: Any) -> float:
    raw = os.getenv(env_key)
    if raw is None:
        return float(fallback)
    try:
        return float(raw)
    except ValueError:
        raise ValueError(
            f"Invalid {env_key} '{raw}': must be a number of seconds"
        ) from None


def load_config(
    url: str | None = None,
    token: str | None = None,
    insecure: bool = False,
    debug: bool = False,
    yaml_fallbacks: dict | None = None,
) -> Config:
    """Build and validate a ``Config``.

    ``load_dotenv()`` must already have run so ``.env`` values are visible
    through ``os.getenv()``.

    Args:
        url: ``--url`` value.
        token: ``--token`` value.
        insecure: ``--insecure`` flag.
        debug: ``--debug`` flag.
        yaml_fallbacks: Non-empty values of the YAML ``etapi`` section.

    Raises:
        ValueError: URL or token missing from every source, or invalid.
    """
    yaml_values = yaml_fallbacks or {}

    config = Config(
        etapi_url=_required(url, "TRILIUM_URL", yaml_values.get("url"), "Trilium URL", "url"),
        token=_required(token, "TRILIUM_TOKEN", yaml_values.get("token"), "ETAPI token", "token"),
        insecure=_flag(insecure, "TRILIUM_INSECURE", yaml_values.get("insecure", False)),
        debug=_flag(debug, "TRILIUM_DEBUG", yaml_values.get("debug", False)),
        request_timeout=int(yaml_values.get("request_timeout", 60)),
        cache_ttl=_seconds("TRILIUM_CACHE_TTL", yaml_values.get("cache_ttl", 30.0)),
        cache_size=int(yaml_values.get("cache_size", 256)),
    )
    validate_config(config)
    return config
