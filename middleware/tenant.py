"""
Tenant Resolution

Decides which single tenant a request belongs to.

Priority (first match wins):
1. Tenant claim of the authenticated user (verified access token)
2. X-Tenant-ID header (administrative and service-to-service calls)
3. Configured default tenant, only on OAuth callback paths
4. Otherwise MissingTenantError; the request is rejected with 401
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

from services.errors import MissingTenantError

logger = logging.getLogger(__name__)

SOURCE_CLAIM = "claim"
SOURCE_HEADER = "header"
SOURCE_OAUTH_DEFAULT = "oauth_default"


@dataclass(frozen=True)
class TenantResolution:
    tenant_id: str
    source: str


def _present(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


class TenantResolver:
    """Deterministic tenant arbitration; holds configuration only."""

    def __init__(
        self,
        default_tenant_id: Optional[str],
        oauth_callback_prefixes: Iterable[str] = (),
    ):
        self.default_tenant_id = _present(default_tenant_id)
        self.oauth_callback_prefixes: Tuple[str, ...] = tuple(
            prefix for prefix in oauth_callback_prefixes if prefix
        )

    def is_oauth_callback(self, path: str) -> bool:
        return any(path.startswith(prefix) for prefix in self.oauth_callback_prefixes)

    def resolve(
        self,
        claims_tenant: Optional[str],
        header_tenant: Optional[str],
        path: str,
    ) -> TenantResolution:
        """
        Resolve the tenant for a request.

        Args:
            claims_tenant: Tenant claim from the verified user context
            header_tenant: Raw X-Tenant-ID header value
            path: Request path, used for the OAuth callback fallback

        Returns:
            TenantResolution with the tenant and the rule that produced it

        Raises:
            MissingTenantError: If no rule yields a tenant
        """
        tenant_id = _present(claims_tenant)
        if tenant_id:
            return TenantResolution(tenant_id=tenant_id, source=SOURCE_CLAIM)

        tenant_id = _present(header_tenant)
        if tenant_id:
            return TenantResolution(tenant_id=tenant_id, source=SOURCE_HEADER)

        if self.default_tenant_id and self.is_oauth_callback(path):
            logger.info(f"Using default tenant for OAuth callback: path={path}")
            return TenantResolution(
                tenant_id=self.default_tenant_id,
                source=SOURCE_OAUTH_DEFAULT,
            )

        logger.warning(f"Tenant context not found: path={path}")
        raise MissingTenantError("Tenant context not found")
