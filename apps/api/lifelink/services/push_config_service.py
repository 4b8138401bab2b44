"""
Push config service - tenant push credentials CRUD.

Secrets are encrypted before they touch the database and never leave
this module in plaintext except through load_tenant_credentials, which
only the push gateway calls.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy.orm import Session

from lifelink.core.config import settings
from lifelink.core.encryption import decrypt_credential, encrypt_credential, mask_secret
from lifelink.core.errors import CredentialError, NotFoundError
from lifelink.core.structured_logging import build_log_context
from lifelink.db.models import TenantPushConfig
from lifelink.schemas.push_config import PushConfigRead, PushConfigUpdate
from lifelink.utils.datetime_utils import utc_now

if TYPE_CHECKING:
    from lifelink.services.push_gateway import TenantPushGateway

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TenantCredentials:
    """Decrypted provider credentials (in memory only)."""

    tenant_id: UUID
    config_id: UUID
    project_id: str
    client_email: str
    private_key: str

    def __repr__(self) -> str:
        return (
            f"TenantCredentials(tenant_id={self.tenant_id}, project_id={self.project_id!r}, "
            f"private_key={mask_secret(self.private_key)!r})"
        )


def _gateway(gateway: "TenantPushGateway | None") -> "TenantPushGateway":
    if gateway is not None:
        return gateway
    from lifelink.services.push_gateway import get_push_gateway

    return get_push_gateway()


def get_config(db: Session, org_id: UUID) -> TenantPushConfig | None:
    return (
        db.query(TenantPushConfig)
        .filter(TenantPushConfig.organization_id == org_id)
        .first()
    )


def _require_config(db: Session, org_id: UUID) -> TenantPushConfig:
    config = get_config(db, org_id)
    if not config:
        raise NotFoundError("Push configuration not found")
    return config


def load_tenant_credentials(config: TenantPushConfig) -> TenantCredentials:
    """
    Decrypt a tenant's credentials.

    Raises CredentialError when anything is missing or undecryptable.
    """
    if not config.project_id or not config.client_email:
        raise CredentialError("Push configuration is incomplete")
    private_key = decrypt_credential(config.private_key_encrypted)
    if not private_key:
        raise CredentialError("Push configuration has no private key")
    return TenantCredentials(
        tenant_id=config.organization_id,
        config_id=config.id,
        project_id=config.project_id,
        client_email=config.client_email,
        private_key=private_key,
    )


def to_read_model(config: TenantPushConfig) -> PushConfigRead:
    return PushConfigRead(
        id=config.id,
        organization_id=config.organization_id,
        project_id=config.project_id,
        client_email=config.client_email,
        private_key=mask_secret(config.private_key_encrypted),
        default_icon=config.default_icon,
        default_badge=config.default_badge,
        default_sound=config.default_sound,
        daily_limit=config.daily_limit,
        monthly_limit=config.monthly_limit,
        daily_sent=config.daily_sent,
        monthly_sent=config.monthly_sent,
        is_active=config.is_active,
        is_configured=config.is_configured,
        last_tested_at=config.last_tested_at,
        updated_at=config.updated_at,
    )


def save_push_config(
    db: Session,
    org_id: UUID,
    data: PushConfigUpdate,
    user_id: UUID | None = None,
    *,
    gateway: "TenantPushGateway | None" = None,
) -> PushConfigRead:
    """
    Create or update a tenant's push config.

    New configs start inactive; activate after a successful test. Any
    cached client for the tenant is dropped.
    """
    config = get_config(db, org_id)
    if config is None:
        config = TenantPushConfig(
            organization_id=org_id,
            daily_limit=settings.PUSH_DEFAULT_DAILY_LIMIT,
            monthly_limit=settings.PUSH_DEFAULT_MONTHLY_LIMIT,
            is_active=False,
            created_by_user_id=user_id,
        )
        db.add(config)

    config.project_id = data.project_id
    config.client_email = data.client_email
    if data.private_key is not None:
        config.private_key_encrypted = encrypt_credential(data.private_key)
    config.default_icon = data.default_icon
    config.default_badge = data.default_badge
    config.default_sound = data.default_sound
    if data.daily_limit is not None:
        config.daily_limit = data.daily_limit
    if data.monthly_limit is not None:
        config.monthly_limit = data.monthly_limit
    config.is_configured = bool(
        config.project_id and config.client_email and config.private_key_encrypted
    )
    config.updated_by_user_id = user_id

    db.commit()
    db.refresh(config)
    _gateway(gateway).invalidate(org_id)
    logger.info("Push config saved", extra=build_log_context(tenant_id=org_id, user_id=user_id))
    return to_read_model(config)


def get_push_config(db: Session, org_id: UUID) -> PushConfigRead | None:
    """Masked read; never includes the private key."""
    config = get_config(db, org_id)
    return to_read_model(config) if config else None


def set_push_config_active(
    db: Session,
    org_id: UUID,
    is_active: bool,
    user_id: UUID | None = None,
    *,
    gateway: "TenantPushGateway | None" = None,
) -> PushConfigRead:
    config = _require_config(db, org_id)
    if is_active and not config.is_configured:
        raise CredentialError("Push configuration is incomplete")
    config.is_active = is_active
    config.updated_by_user_id = user_id
    db.commit()
    db.refresh(config)
    _gateway(gateway).invalidate(org_id)
    return to_read_model(config)


async def test_push_config(
    db: Session,
    org_id: UUID,
    *,
    gateway: "TenantPushGateway | None" = None,
) -> bool:
    """
    Verify stored credentials by obtaining a provider access token.

    Activates the config on success, deactivates it on failure.
    """
    gw = _gateway(gateway)
    config = _require_config(db, org_id)

    try:
        provider = await gw.build_provider(load_tenant_credentials(config))
        ok = await provider.verify()
    except CredentialError as e:
        logger.warning(
            "Push config test failed: %s", e, extra=build_log_context(tenant_id=org_id)
        )
        ok = False

    config.last_tested_at = utc_now()
    config.is_active = ok
    db.commit()
    gw.invalidate(org_id)
    logger.info(
        "Push config test %s", "passed" if ok else "failed", extra=build_log_context(tenant_id=org_id)
    )
    return ok


def delete_push_config(
    db: Session,
    org_id: UUID,
    *,
    gateway: "TenantPushGateway | None" = None,
) -> None:
    config = _require_config(db, org_id)
    db.delete(config)
    db.commit()
    _gateway(gateway).invalidate(org_id)
    logger.info("Push config deleted", extra=build_log_context(tenant_id=org_id))
