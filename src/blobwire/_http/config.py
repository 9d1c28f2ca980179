"""HTTP configuration for blob storage clients."""

from __future__ import annotations

from dataclasses import dataclass, field

VERSION = "0.1.0"
DEFAULT_TIMEOUT = 60.0
DEFAULT_API_VERSION = "2024-08-04"
USER_AGENT = f"blobwire-python/{VERSION}"


@dataclass
class HTTPConfig:
    """Headers and timeouts applied to every request sent to the service."""

    timeout: float = DEFAULT_TIMEOUT
    api_version: str = DEFAULT_API_VERSION
    user_agent: str | None = None
    default_headers: dict[str, str] = field(default_factory=dict)

    def get_headers(self) -> dict[str, str]:
        agent = f"{USER_AGENT} {self.user_agent}" if self.user_agent else USER_AGENT
        return {
            "x-ms-version": self.api_version,
            "user-agent": agent,
            **self.default_headers,
        }


__all__ = ["HTTPConfig", "DEFAULT_API_VERSION", "DEFAULT_TIMEOUT", "USER_AGENT", "VERSION"]
