from __future__ import annotations

import os
from typing import Any

import httpx

from iam_service.domain.models import ExternalProfile

LIFEAI_ENDPOINT = os.getenv("LIFEAI_ENDPOINT", "http://lifeai:8000")
IDENTITY_PROVIDER_TIMEOUT_SECONDS = float(os.getenv("IDENTITY_PROVIDER_TIMEOUT_SECONDS", "10"))
PROFILE_PATH = "/api/v1/user-profile/"
VERSION_MANAGEMENT_HEADER = "1.0.20|web"

_NULL_MARKERS = {"NIL", "<NIL>", "NULL", "<NULL>", "NONE"}


class IdentityProviderError(Exception):
    pass


def _clean(value: Any) -> str:
    if value is None:
        return ""
    text = str(value).strip()
    if text.upper() in _NULL_MARKERS:
        return ""
    return text


class IdentityProviderClient:
    """Resolves an opaque bearer token to the caller's external profile."""

    def __init__(
        self,
        endpoint: str = LIFEAI_ENDPOINT,
        *,
        http_client: httpx.Client | None = None,
        timeout: float = IDENTITY_PROVIDER_TIMEOUT_SECONDS,
    ) -> None:
        self.endpoint = endpoint.rstrip("/")
        self._http = http_client or httpx.Client(timeout=timeout)

    def get_profile(self, authorization_header: str) -> ExternalProfile:
        try:
            response = self._http.get(
                f"{self.endpoint}{PROFILE_PATH}",
                headers={
                    "Authorization": authorization_header,
                    "Accept": "application/json",
                    "Version-Management": VERSION_MANAGEMENT_HEADER,
                },
            )
        except httpx.HTTPError as exc:
            raise IdentityProviderError(f"identity provider request failed: {exc}") from exc

        if response.status_code != httpx.codes.OK:
            raise IdentityProviderError(
                f"unexpected status code: {response.status_code}, error: {response.text[:200]}"
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise IdentityProviderError("failed to parse identity provider response") from exc
        if not isinstance(payload, dict):
            raise IdentityProviderError("identity provider response is not an object")

        return ExternalProfile(
            id=_clean(payload.get("id")),
            email=_clean(payload.get("email")),
            phone=_clean(payload.get("phone")),
        )

    def close(self) -> None:
        self._http.close()
