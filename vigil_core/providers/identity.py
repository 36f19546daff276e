"""HTTP identity provider client.

Fetches user records for authenticated subjects:

    GET /v1/users/{subject_id}
    {
        "id": "user_2abc",
        "username": "alice",
        "primary_email_address_id": "idn_1",
        "email_addresses": [{"id": "idn_1", "email_address": "alice@example.com"}]
    }
"""

import logging
from typing import Optional

import httpx

from vigil_core.domain.errors import IdentityProviderError, IdentitySubjectNotFound
from vigil_core.providers.base import ExternalEmailAddress, ExternalProfile, IdentityProvider

logger = logging.getLogger(__name__)


class HttpIdentityProvider(IdentityProvider):
    """Identity provider reached over its backend REST API."""

    def __init__(
        self,
        base_url: str,
        secret_key: Optional[str] = None,
        timeout: float = 5.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        headers = {"Accept": "application/json"}
        if secret_key:
            headers["Authorization"] = f"Bearer {secret_key}"
        self._client = httpx.Client(
            base_url=base_url,
            timeout=timeout,
            headers=headers,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def fetch_profile(self, subject_id: str) -> ExternalProfile:
        try:
            response = self._client.get(f"/v1/users/{subject_id}")
        except httpx.TimeoutException as e:
            raise IdentityProviderError(f"Timeout fetching {subject_id}: {e}") from e
        except httpx.HTTPError as e:
            raise IdentityProviderError(f"Error fetching {subject_id}: {e}") from e

        if response.status_code == 404:
            raise IdentitySubjectNotFound(subject_id)
        if response.status_code >= 400:
            raise IdentityProviderError(
                f"Identity provider returned HTTP {response.status_code} for {subject_id}"
            )

        try:
            data = response.json()
            return ExternalProfile(
                subject_id=str(data.get("id") or subject_id),
                username=data.get("username") or None,
                primary_email_id=data.get("primary_email_address_id"),
                email_addresses=[
                    ExternalEmailAddress(id=str(e["id"]), address=e["email_address"])
                    for e in data.get("email_addresses") or []
                ],
            )
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise IdentityProviderError(f"Malformed profile for {subject_id}: {e}") from e


def get_identity_provider() -> HttpIdentityProvider:
    """Create an HttpIdentityProvider from settings."""
    from vigil_core.config import get_settings

    settings = get_settings()
    return HttpIdentityProvider(
        base_url=settings.identity_provider_url,
        secret_key=settings.identity_provider_secret,
        timeout=settings.identity_provider_timeout,
    )


__all__ = ["HttpIdentityProvider", "get_identity_provider"]
