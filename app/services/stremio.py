"""Client for the Stremio account API (addon collection and login)."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from ..exceptions import AuthError, NetworkError
from ..models import AddonDescriptor

logger = logging.getLogger(__name__)

STREAM_RESOURCE = "stream"


@dataclass(slots=True)
class LoginResult:
    """Outcome of a Stremio credential login."""

    success: bool
    auth_key: str | None = None
    email: str | None = None
    addon_names: list[str] = field(default_factory=list)
    error: str | None = None


@dataclass(slots=True)
class AuthKeyStatus:
    """Whether a stored auth key still lists addons."""

    valid: bool
    addon_names: list[str] = field(default_factory=list)
    error: str | None = None

    @property
    def addon_count(self) -> int:
        return len(self.addon_names)


def declares_stream_resource(manifest: Any) -> bool:
    """Return whether an addon manifest declares the ``stream`` resource.

    Resources are either bare capability names or objects carrying a
    ``name`` member; both shapes are valid in the addon protocol.
    """

    if not isinstance(manifest, dict):
        return False
    resources = manifest.get("resources") or []
    if not isinstance(resources, list):
        return False
    for resource in resources:
        if resource == STREAM_RESOURCE:
            return True
        if isinstance(resource, dict) and resource.get("name") == STREAM_RESOURCE:
            return True
    return False


class StremioClient:
    """Wrapper around the Stremio API endpoints used by the service."""

    def __init__(self, http_client: httpx.AsyncClient):
        self._client = http_client

    async def list_stream_capable_addons(
        self, auth_key: str | None
    ) -> list[AddonDescriptor]:
        """Return the user's installed addons that can serve streams."""

        if not auth_key or not auth_key.strip():
            raise AuthError("No Stremio auth key provided")

        payload = await self._call(
            "addonCollectionGet",
            {"type": "AddonCollectionGet", "authKey": auth_key.strip()},
        )
        result = payload.get("result")
        addons: Any = None
        if isinstance(result, dict):
            addons = result.get("addons")
        if addons is None:
            addons = payload.get("addons")
        if not isinstance(addons, list) or not addons:
            logger.info("Stremio returned no addons for the account")
            return []

        descriptors = [
            self._to_descriptor(addon)
            for addon in addons
            if isinstance(addon, dict) and declares_stream_resource(addon.get("manifest"))
        ]
        logger.info(
            "Found %d stream-capable addons out of %d installed",
            len(descriptors),
            len(addons),
        )
        return [descriptor for descriptor in descriptors if descriptor.transport_url]

    async def login(self, email: str, password: str) -> LoginResult:
        """Exchange Stremio account credentials for an auth key."""

        try:
            payload = await self._call(
                "login",
                {
                    "type": "Login",
                    "email": email,
                    "password": password,
                    "facebook": False,
                },
            )
        except (AuthError, NetworkError) as exc:
            logger.warning("Stremio login failed for %s: %s", email, exc)
            return LoginResult(success=False, error=str(exc))

        result = payload.get("result") if isinstance(payload.get("result"), dict) else {}
        auth_key = result.get("authKey") or payload.get("authKey")
        if not auth_key:
            return LoginResult(success=False, error="No authKey in response")

        user = result.get("user") if isinstance(result.get("user"), dict) else {}
        status = await self.test_auth_key(auth_key)
        logger.info("Stremio login successful for %s", email)
        return LoginResult(
            success=True,
            auth_key=auth_key,
            email=user.get("email") or payload.get("email") or email,
            addon_names=status.addon_names,
        )

    async def test_auth_key(self, auth_key: str | None) -> AuthKeyStatus:
        """Return whether ``auth_key`` can list addons, never raising."""

        try:
            addons = await self.list_stream_capable_addons(auth_key)
        except (AuthError, NetworkError) as exc:
            return AuthKeyStatus(valid=False, error=str(exc))
        return AuthKeyStatus(valid=True, addon_names=[addon.name for addon in addons])

    async def _call(self, method: str, body: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self._client.post(f"/{method}", json=body)
        except httpx.HTTPError as exc:
            raise NetworkError(f"Stremio API request failed: {exc}") from exc

        if response.status_code >= 400:
            raise NetworkError(f"Stremio API error: {response.status_code}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise NetworkError("Stremio API returned invalid JSON") from exc
        if not isinstance(payload, dict):
            raise NetworkError("Stremio API returned an unexpected payload")

        error = payload.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else error
            raise AuthError(f"Stremio API rejected the request: {message}")
        return payload

    @staticmethod
    def _to_descriptor(addon: dict[str, Any]) -> AddonDescriptor:
        manifest = addon.get("manifest") or {}
        types = manifest.get("types") or []
        return AddonDescriptor(
            id=str(manifest.get("id") or "unknown"),
            name=str(manifest.get("name") or "Unknown Addon"),
            version=str(manifest.get("version") or "0.0.0"),
            transport_url=str(addon.get("transportUrl") or ""),
            types=[str(entry) for entry in types if isinstance(entry, str)],
            resources=list(manifest.get("resources") or []),
        )
