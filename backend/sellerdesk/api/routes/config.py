"""
Account configuration API routes.

GET returns the caller's profile and the account's listing template; admins
additionally see masked previews of the owner's manual eBay keys and the
OAuth connection status.

PUT accepts partial updates. Manual key fields are admin-only and are
checked before anything is written, as is the listing template, which
operators may not change. A blank key value clears the stored secret.
"""

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from sellerdesk.accounts.roles import Capability, has_capability
from sellerdesk.accounts.service import RequestIdentity
from sellerdesk.api.dependencies.auth import (
    get_app_token_provider,
    get_credentials,
    get_identity,
    get_vault,
)
from sellerdesk.api.schemas.config import (
    ConfigResponse,
    ConfigUpdate,
    MaskedSecret,
    OAuthStatus,
    SuccessResponse,
)
from sellerdesk.credentials.app_tokens import ApplicationTokenProvider
from sellerdesk.credentials.redaction import mask_secret
from sellerdesk.credentials.resolver import CredentialBundle
from sellerdesk.credentials.vault import SecretVault
from sellerdesk.database.session import get_db_session
from sellerdesk.models.user import MANUAL_CREDENTIAL_FIELDS, User
from sellerdesk.platform.errors import (
    AuthenticationError,
    ConflictError,
    PermissionDeniedError,
    ValidationError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/config", tags=["config"])

PROFILE_FIELDS = ("first_name", "last_name", "company_name", "email")
APP_KEY_FIELDS = ("ebay_client_id", "ebay_client_secret")


@router.get("", response_model=ConfigResponse, response_model_exclude_unset=True)
async def read_config(
    identity: RequestIdentity = Depends(get_identity),
    bundle: CredentialBundle = Depends(get_credentials),
    db_session=Depends(get_db_session),
):
    """
    Role-aware configuration view.

    SECURITY: only admins receive credential previews; previews are built
    from the decrypted bundle and never contain more than 10 characters of
    any secret.
    """
    user = db_session.get(User, identity.user_id)
    if user is None:
        raise AuthenticationError("User not found")

    owner = user if user.id == identity.account_id else db_session.get(User, identity.account_id)
    response = ConfigResponse(
        **user.to_profile_dict(),
        example_template=(owner.example_template if owner else None) or "",
    )
    if not identity.is_admin:
        return response

    response.ebay_token = MaskedSecret(**mask_secret(bundle.manual_token))
    response.ebay_client_id = MaskedSecret(**mask_secret(bundle.manual_client_id))
    response.ebay_client_secret = MaskedSecret(**mask_secret(bundle.manual_client_secret))
    response.ebay_oauth = OAuthStatus(
        connected=bundle.oauth_connected,
        username=bundle.oauth_username,
    )
    return response


@router.put("", response_model=SuccessResponse)
async def update_config(
    request: Request,
    payload: ConfigUpdate,
    identity: RequestIdentity = Depends(get_identity),
    db_session=Depends(get_db_session),
):
    submitted = payload.model_fields_set
    key_fields = [f for f in MANUAL_CREDENTIAL_FIELDS if f in submitted]

    if key_fields and not identity.is_admin:
        logger.warning(
            "Non-admin attempted to update eBay credentials",
            extra={"user_id": identity.user_id, "role": identity.role.value},
        )
        raise PermissionDeniedError()

    edits_template = "example_template" in submitted
    if edits_template and not has_capability(identity.role, Capability.EDIT_TEMPLATE):
        logger.warning(
            "Operator attempted to update the listing template",
            extra={"user_id": identity.user_id, "role": identity.role.value},
        )
        raise PermissionDeniedError()

    user = db_session.get(User, identity.user_id)
    if user is None:
        raise AuthenticationError("User not found")

    for field in PROFILE_FIELDS:
        if field not in submitted:
            continue
        value = (getattr(payload, field) or "").strip()
        if field == "email":
            if not value:
                raise ValidationError("Email cannot be empty", details={"field": "email"})
            value = value.lower()
        if field == "company_name":
            value = value or None
        setattr(user, field, value)

    owner = user if user.id == identity.account_id else db_session.get(User, identity.account_id)

    if edits_template:
        owner.example_template = payload.example_template or None

    if key_fields:
        vault: SecretVault = get_vault(request)
        for field in key_fields:
            value = (getattr(payload, field) or "").strip()
            setattr(owner, field, vault.encrypt(value) if value else None)

    try:
        db_session.commit()
    except IntegrityError:
        db_session.rollback()
        raise ConflictError("Email is already in use", details={"field": "email"})
    except SQLAlchemyError:
        db_session.rollback()
        raise

    if any(f in submitted for f in APP_KEY_FIELDS):
        provider: ApplicationTokenProvider = get_app_token_provider(request)
        provider.cache.invalidate(identity.account_id)

    logger.info(
        "Configuration updated",
        extra={
            "user_id": identity.user_id,
            "account_id": identity.account_id,
            "fields": sorted(submitted),
        },
    )
    return SuccessResponse(success=True)
