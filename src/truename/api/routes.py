"""FastAPI routes for authorization, token resolution, consents and names."""

import logging
from typing import Annotated, Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status

from truename import __version__
from truename.api.auth import BearerToken, Db, OptionalProfileId, ProfileId
from truename.exceptions import (
    AuthenticationRequiredError,
    ConflictError,
    DependencyError,
    InvalidTokenError,
    NoContextAssignedError,
    NotFoundError,
    TrueNameError,
    ValidationError,
)
from truename.manager.audit_log import AuditLog
from truename.manager.consent_manager import ConsentManager
from truename.manager.context_registry import ContextRegistry
from truename.manager.resolution_engine import ResolutionEngine
from truename.manager.session_issuer import SessionIssuer
from truename.models.consent import ConsentActionRequest
from truename.models.oauth import (
    AuthorizeRequest,
    AuthorizeResponse,
    OIDCClaims,
    RevokeSessionsRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter()

_STATUS_BY_ERROR: list[tuple[type[TrueNameError], int]] = [
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (DependencyError, status.HTTP_500_INTERNAL_SERVER_ERROR),
    (AuthenticationRequiredError, status.HTTP_401_UNAUTHORIZED),
    (InvalidTokenError, status.HTTP_401_UNAUTHORIZED),
    (NoContextAssignedError, status.HTTP_400_BAD_REQUEST),
]


def to_http_error(error: TrueNameError) -> HTTPException:
    """Map a domain error to an HTTPException carrying its stable code."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            status_code = code
            break
    if status_code >= 500:
        logger.error(f"{error.code}: {error.message}")
    return HTTPException(
        status_code=status_code,
        detail={"error": error.code, "message": error.message},
    )


# Dependency injection


def get_audit_log(db: Db) -> AuditLog:
    return AuditLog(db)


def get_resolution_engine(
    db: Db, audit: Annotated[AuditLog, Depends(get_audit_log)]
) -> ResolutionEngine:
    return ResolutionEngine(db, audit)


def get_consent_manager(
    db: Db, audit: Annotated[AuditLog, Depends(get_audit_log)]
) -> ConsentManager:
    return ConsentManager(db, audit)


def get_session_issuer(
    db: Db,
    resolver: Annotated[ResolutionEngine, Depends(get_resolution_engine)],
) -> SessionIssuer:
    return SessionIssuer(db, ContextRegistry(db), resolver)


Issuer = Annotated[SessionIssuer, Depends(get_session_issuer)]
Consents = Annotated[ConsentManager, Depends(get_consent_manager)]
Resolver = Annotated[ResolutionEngine, Depends(get_resolution_engine)]


# -----------------------------------------------------------------------------
# Health
# -----------------------------------------------------------------------------


@router.get("/health")
async def health(db: Db) -> dict[str, Any]:
    """Service version and store connectivity."""
    store = await db.health_check()
    return {
        "status": "ok" if store["healthy"] else "degraded",
        "version": __version__,
        "store": store,
    }


# -----------------------------------------------------------------------------
# OAuth
# -----------------------------------------------------------------------------


@router.post("/oauth/authorize", response_model=AuthorizeResponse)
async def authorize(
    request: AuthorizeRequest,
    profile_id: ProfileId,
    issuer: Issuer,
) -> AuthorizeResponse:
    """Bind a client to one of the caller's contexts and issue a token."""
    try:
        return await issuer.authorize(profile_id, request)
    except TrueNameError as e:
        raise to_http_error(e) from e


@router.post("/oauth/resolve", response_model=OIDCClaims, response_model_exclude_none=True)
async def resolve_token(token: BearerToken, issuer: Issuer) -> OIDCClaims:
    """Exchange a bearer token for OIDC claims."""
    try:
        return await issuer.resolve_token(token)
    except TrueNameError as e:
        raise to_http_error(e) from e


@router.post("/oauth/revoke")
async def revoke_sessions(
    request: RevokeSessionsRequest,
    profile_id: ProfileId,
    issuer: Issuer,
) -> dict[str, int]:
    """Revoke all of the caller's live sessions for a client."""
    try:
        revoked = await issuer.revoke(
            profile_id, request.client_id, remove_assignment=request.remove_assignment
        )
    except TrueNameError as e:
        raise to_http_error(e) from e
    return {"revoked_count": revoked}


# -----------------------------------------------------------------------------
# Consents
# -----------------------------------------------------------------------------


@router.post("/consents")
async def consent_action(
    request: ConsentActionRequest,
    profile_id: ProfileId,
    consents: Consents,
) -> dict[str, Any]:
    """Request, grant or revoke a consent."""
    try:
        if request.action == "request":
            if request.context_id is None:
                raise ValidationError("context_id is required to request consent")
            consent_id = await consents.request_consent(
                granter_id=request.target_user_id,
                requester_id=profile_id,
                context_id=request.context_id,
                expires_at=request.expires_at,
            )
            return {"consent_id": str(consent_id)}

        if request.action == "grant":
            granted = await consents.grant_consent(profile_id, request.target_user_id)
            return {"granted": granted}

        revoked = await consents.revoke_consent(profile_id, request.target_user_id)
        return {"revoked": revoked}
    except TrueNameError as e:
        raise to_http_error(e) from e


# -----------------------------------------------------------------------------
# Names
# -----------------------------------------------------------------------------


@router.get("/names/resolve")
async def resolve_name(
    target_user_id: UUID,
    requester_id: OptionalProfileId,
    resolver: Resolver,
    context: Annotated[str | None, Query(max_length=100)] = None,
) -> dict[str, Any]:
    """Resolve the name the caller should see for ``target_user_id``."""
    result = await resolver.resolve(
        target_id=target_user_id,
        requester_id=requester_id,
        context_hint=context,
    )
    return {
        "name": result.name_text,
        "source": result.tier.value,
        "context_id": str(result.context_id) if result.context_id else None,
        "context_name": result.context_name,
        "fallback_reason": (
            result.fallback_reason.value if result.fallback_reason else None
        ),
    }
