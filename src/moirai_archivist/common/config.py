"""Client configuration.

A ``ClientConfig`` is built once per process (from the environment or a YAML
file) and handed to ``FragmentClient``. It is frozen after construction.
"""
from __future__ import annotations
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import httpx
import yaml

from moirai_archivist.common.errors import ConfigurationError

DEFAULT_TIMEOUT_S = 30.0
DEFAULT_MAX_ATTEMPTS = 3
SUPPORTED_SCHEMES = ("http", "https")


def _number(name: str, raw: Any, kind: type) -> Any:
    try:
        return kind(raw)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{name} must be a {kind.__name__}, got {raw!r}") from e


@dataclass(frozen=True)
class ClientConfig:
    """Endpoint, credential and retry limits for the fragment client."""
    endpoint: str | None
    api_key: str | None
    timeout_s: float = DEFAULT_TIMEOUT_S
    max_attempts: int = DEFAULT_MAX_ATTEMPTS

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ConfigurationError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.timeout_s <= 0:
            raise ConfigurationError(f"timeout_s must be positive, got {self.timeout_s}")

    @classmethod
    def from_env(cls) -> "ClientConfig":
        """
        Build a config from ``ARCHIVIST_*`` environment variables.

        A missing credential is not an error here; it surfaces from
        :meth:`require` when a fragment is requested.
        """
        return cls(
            endpoint=os.getenv("ARCHIVIST_ENDPOINT") or None,
            api_key=os.getenv("ARCHIVIST_API_KEY") or None,
            timeout_s=_number(
                "ARCHIVIST_TIMEOUT_S", os.getenv("ARCHIVIST_TIMEOUT_S", DEFAULT_TIMEOUT_S), float
            ),
            max_attempts=_number(
                "ARCHIVIST_MAX_ATTEMPTS", os.getenv("ARCHIVIST_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS), int
            ),
        )

    @classmethod
    def from_yaml(cls, path: str | Path) -> "ClientConfig":
        """
        Build a config from a YAML file.

        Recognised keys: ``endpoint``, ``api_key``, ``timeout_s``,
        ``max_attempts``. Keys left out fall back to the environment.

        Args:
            path: YAML file path.
        """
        with open(path, "r", encoding="utf-8") as f:
            cfg: dict[str, Any] = yaml.safe_load(f) or {}
        env = cls.from_env()
        return cls(
            endpoint=cfg.get("endpoint") or env.endpoint,
            api_key=cfg.get("api_key") or env.api_key,
            timeout_s=_number("timeout_s", cfg.get("timeout_s", env.timeout_s), float),
            max_attempts=_number("max_attempts", cfg.get("max_attempts", env.max_attempts), int),
        )

    def require(self) -> None:
        """Raise ConfigurationError unless the credential is set and the endpoint is an http(s) URL."""
        if not self.api_key:
            raise ConfigurationError(
                "Fragment service credential is missing. Set ARCHIVIST_API_KEY "
                "or provide api_key in the config file."
            )
        if not self.endpoint:
            raise ConfigurationError(
                "Fragment service endpoint is missing. Set ARCHIVIST_ENDPOINT "
                "or provide endpoint in the config file."
            )
        try:
            url = httpx.URL(self.endpoint)
        except httpx.InvalidURL as e:
            raise ConfigurationError(f"Fragment service endpoint is not a valid URL: {e}") from e
        if url.scheme not in SUPPORTED_SCHEMES or not url.host:
            raise ConfigurationError(
                f"Fragment service endpoint must be an http(s) URL with a host, "
                f"got {self.endpoint!r}"
            )
