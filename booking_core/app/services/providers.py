"""
Provider profile lookup.

The engine only needs three facts about a provider: where to send
notifications, which timezone its weekdays are evaluated in, and whether
new bookings wait for manual approval.
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional, Protocol

import httpx

logger = logging.getLogger(__name__)

RETRY_STATUSES = (429, 503)


@dataclass(frozen=True)
class ProviderProfile:
    provider_id: str
    email: Optional[str] = None
    timezone: str = "UTC"
    booking_approval_mode: str = "auto"  # "manual" → new bookings start pending

    @property
    def requires_approval(self) -> bool:
        return self.booking_approval_mode == "manual"


class ProviderDirectory(Protocol):
    def find_by_id(self, provider_id: str) -> Optional[ProviderProfile]: ...


class HttpProviderDirectory:
    """
    Reads provider profiles from the users service.

    GET {base_url}/providers/{id} →
        {"email": ..., "preferences": {"timezone": ..., "bookingApprovalMode": ...}}

    Rate-limit / busy responses are retried a bounded number of times with
    exponential backoff; any other failure yields None.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        retries: int = 3,
        backoff: float = 0.5,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retries = retries
        self.backoff = backoff
        self.transport = transport

    def find_by_id(self, provider_id: str) -> Optional[ProviderProfile]:
        data = self._request("GET", f"/providers/{provider_id}")
        if data is None:
            return None
        return self._parse(provider_id, data)

    def _request(self, method: str, path: str) -> Optional[dict]:
        url = f"{self.base_url}{path}"

        with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
            for attempt in range(self.retries + 1):
                try:
                    resp = client.request(method, url)
                except httpx.HTTPError as e:
                    logger.error(f"Provider lookup failed: {method} {path} -> {e}")
                    return None

                if resp.status_code in RETRY_STATUSES and attempt < self.retries:
                    delay = self.backoff * (2 ** attempt)
                    logger.warning(
                        f"Provider lookup {path} -> {resp.status_code}, "
                        f"retry {attempt + 1}/{self.retries} in {delay:.2f}s"
                    )
                    time.sleep(delay)
                    continue

                if resp.status_code == 404:
                    return None

                if resp.status_code >= 400:
                    logger.error(f"Provider lookup error: {method} {path} -> {resp.status_code}")
                    return None

                return resp.json()

        return None

    @staticmethod
    def _parse(provider_id: str, data: dict) -> ProviderProfile:
        prefs = data.get("preferences") or {}
        return ProviderProfile(
            provider_id=provider_id,
            email=data.get("email"),
            timezone=prefs.get("timezone") or "UTC",
            booking_approval_mode=(
                prefs.get("bookingApprovalMode")
                or prefs.get("booking_approval_mode")
                or "auto"
            ),
        )


def resolve_provider(directory: ProviderDirectory, provider_id: str) -> ProviderProfile:
    """Look up a provider, falling back to a UTC / auto-approval profile."""
    try:
        profile = directory.find_by_id(provider_id)
    except Exception as e:
        logger.error(f"Provider directory unavailable for {provider_id}: {e}")
        profile = None

    if profile is None:
        logger.warning(f"Provider {provider_id} not found, using default profile")
        return ProviderProfile(provider_id=provider_id)
    return profile
