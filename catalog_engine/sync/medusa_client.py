"""Medusa admin API client used by sync jobs."""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import httpx

from catalog_engine.config import settings
from catalog_engine.db.encryption import DecryptionError, decrypt_value
from catalog_engine.db.models import EntityType, TokenProvider
from catalog_engine.services.settings_cache import SETTING_KEYS, SettingsCache
from catalog_engine.services.tokens import TokenService

logger = logging.getLogger(__name__)

# Entity type -> (list endpoint, response key)
ENDPOINTS: dict[EntityType, tuple[str, str]] = {
    EntityType.PRODUCT: ("/admin/products", "products"),
    EntityType.CATEGORY: ("/admin/product-categories", "product_categories"),
    EntityType.COLLECTION: ("/admin/collections", "collections"),
    EntityType.TYPE: ("/admin/product-types", "product_types"),
    EntityType.TAG: ("/admin/product-tags", "product_tags"),
    EntityType.SALES_CHANNEL: ("/admin/sales-channels", "sales_channels"),
}


class PlatformConfigError(RuntimeError):
    """Raised when the Medusa URL or admin token is not configured."""


class PlatformRequestError(RuntimeError):
    """Raised when Medusa answers with an error or an unexpected body."""


class PlatformClient(Protocol):
    """Anything that can list external entities page by page."""

    async def fetch_entities(
        self, entity_type: EntityType, limit: int, offset: int
    ) -> list[dict[str, Any]]: ...

    async def close(self) -> None: ...


def auth_header(token: str) -> str:
    """JWT-shaped tokens go as Bearer, API keys as Basic `token:`."""
    if token.count(".") == 2:
        return f"Bearer {token}"
    encoded = base64.b64encode(f"{token}:".encode()).decode()
    return f"Basic {encoded}"


class MedusaClient:
    """Thin async client for Medusa admin list endpoints."""

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._headers = {
            "Authorization": auth_header(token),
            "Content-Type": "application/json",
        }
        self.timeout = timeout or settings.medusa_request_timeout
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def fetch_entities(
        self,
        entity_type: EntityType,
        limit: int = 100,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """
        Fetch one page of entities.

        Args:
            entity_type: Which Medusa entity list to read
            limit: Page size
            offset: Pagination offset

        Returns:
            Raw entity dicts as returned by Medusa

        Raises:
            PlatformRequestError: On transport errors, non-2xx status or a malformed body
        """
        path, response_key = ENDPOINTS[EntityType(entity_type)]
        client = await self._get_client()

        try:
            response = await client.get(
                f"{self.base_url}{path}",
                params={"limit": limit, "offset": offset},
                headers=self._headers,
            )
        except httpx.HTTPError as e:
            raise PlatformRequestError(
                f"Failed to fetch {entity_type.value}: {type(e).__name__}: {e}"
            ) from e

        if response.status_code >= 400:
            raise PlatformRequestError(
                f"Failed to fetch {entity_type.value}: HTTP {response.status_code} "
                f"{response.reason_phrase} - {response.text[:500]}"
            )

        try:
            data = response.json()
        except ValueError as e:
            raise PlatformRequestError(f"Failed to fetch {entity_type.value}: body is not JSON") from e

        entities = data.get(response_key, []) if isinstance(data, dict) else None
        if not isinstance(entities, list):
            raise PlatformRequestError(
                f"Failed to fetch {entity_type.value}: '{response_key}' is not a list"
            )
        return entities


@dataclass
class PlatformCredentials:
    base_url: str
    token: str
    token_id: Optional[int] = None  # Set when the token came from the token table


async def resolve_credentials(
    settings_cache: SettingsCache,
    tokens: Optional[TokenService] = None,
) -> PlatformCredentials:
    """
    Resolve Medusa URL and token.

    URL: `medusa_admin_url` setting, then MEDUSA_BASE_URL.
    Token: active medusa API token, then the encrypted `medusa_admin_token`
    setting, then MEDUSA_ADMIN_API_TOKEN.

    Raises:
        PlatformConfigError: When either value is missing or unreadable
    """
    base_url = await settings_cache.get(SETTING_KEYS.MEDUSA_ADMIN_URL) or settings.medusa_base_url
    if not base_url:
        raise PlatformConfigError("MEDUSA_ADMIN_URL not configured")

    if tokens is not None:
        token = await tokens.get_active_token(TokenProvider.MEDUSA.value)
        if token:
            token_id = await tokens.get_active_token_id(TokenProvider.MEDUSA.value)
            return PlatformCredentials(base_url=str(base_url), token=token, token_id=token_id)

    encrypted = await settings_cache.get(SETTING_KEYS.MEDUSA_ADMIN_TOKEN)
    if encrypted:
        try:
            return PlatformCredentials(base_url=str(base_url), token=decrypt_value(str(encrypted)))
        except DecryptionError as e:
            raise PlatformConfigError("Failed to decrypt Medusa token") from e

    if not settings.medusa_admin_api_token:
        raise PlatformConfigError("MEDUSA_ADMIN_TOKEN not configured")
    return PlatformCredentials(base_url=str(base_url), token=settings.medusa_admin_api_token)
