"""Bearer sessions for third-party client applications.

Authorize binds (profile, client) to a context and mints an opaque token;
resolving the token later runs name resolution against the bound context
and returns OIDC-shaped claims. Tokens stay valid until ``expires_at``;
``used_at`` only records the first successful resolve.
"""

import logging
import secrets
from datetime import datetime, timedelta, UTC
from typing import Callable, TYPE_CHECKING
from urllib.parse import urlencode, urlsplit, urlunsplit
from uuid import UUID, uuid4

from truename.config import get_settings
from truename.exceptions import (
    AuthenticationRequiredError,
    ConflictError,
    InvalidTokenError,
    NoContextAssignedError,
    NotFoundError,
    UniqueViolationError,
)
from truename.models.name import NameKind
from truename.models.oauth import (
    TOKEN_PREFIX,
    AuthorizeRequest,
    AuthorizeResponse,
    ClientSummary,
    ContextSummary,
    OIDCClaims,
    Session,
    is_valid_session_token,
)
from truename.models.resolution import ResolutionResult

if TYPE_CHECKING:
    from truename.db.repository import Repository
    from truename.manager.context_registry import ContextRegistry
    from truename.manager.resolution_engine import ResolutionEngine

logger = logging.getLogger(__name__)


def generate_session_token() -> str:
    """``tnp_`` followed by 128 random bits as lowercase hex."""
    return f"{TOKEN_PREFIX}{secrets.token_hex(16)}"


def build_redirect_url(return_url: str, token: str, state: str | None = None) -> str:
    """Append ``token`` (and ``state``) to the return URL's query string."""
    parts = urlsplit(return_url)
    params = {"token": token}
    if state is not None:
        params["state"] = state
    extra = urlencode(params)
    query = f"{parts.query}&{extra}" if parts.query else extra
    return urlunsplit(parts._replace(query=query))


class SessionIssuer:
    """Issues, resolves and revokes bearer sessions."""

    def __init__(
        self,
        db: "Repository",
        contexts: "ContextRegistry",
        resolver: "ResolutionEngine",
        token_factory: Callable[[], str] = generate_session_token,
    ) -> None:
        self.db = db
        self.contexts = contexts
        self.resolver = resolver
        self.token_factory = token_factory

    # -------------------------------------------------------------------------
    # Authorize
    # -------------------------------------------------------------------------

    async def authorize(
        self, profile_id: UUID, request: AuthorizeRequest
    ) -> AuthorizeResponse:
        """Bind the client to a context and issue a session token.

        The context binding and the session row are written as one unit:
        if minting the session fails, the binding is rolled back.

        Args:
            profile_id: The signed-in profile authorizing the client
            request: Client, context, return URL and optional state

        Returns:
            AuthorizeResponse with the token and redirect URL

        Raises:
            NotFoundError: Unknown/inactive client, or context not owned
            ConflictError: If no unique token could be generated
        """
        client = await self.db.get_client(request.client_id)
        if client is None or not client.active:
            raise NotFoundError("Client application")

        context = await self.db.get_context(request.context_id, profile_id)
        if context is None:
            raise NotFoundError("Context")

        async with self.db.transaction():
            await self.contexts.assign_context(
                profile_id, request.client_id, request.context_id
            )
            session = await self._mint_session(profile_id, request)

        logger.info(
            f"Issued session {session.token[:8]}... for client {client.client_id} "
            f"(context '{context.name}', expires {session.expires_at.isoformat()})"
        )
        return AuthorizeResponse(
            session_token=session.token,
            expires_at=session.expires_at,
            redirect_url=build_redirect_url(
                request.return_url, session.token, request.state
            ),
            client=ClientSummary(
                client_id=client.client_id,
                display_name=client.display_name,
                publisher_domain=client.publisher_domain,
            ),
            context=ContextSummary(id=context.id, context_name=context.name),
        )

    async def _mint_session(
        self, profile_id: UUID, request: AuthorizeRequest
    ) -> Session:
        settings = get_settings()
        for attempt in range(1, settings.token_max_retries + 1):
            issued_at = datetime.now(UTC)
            session = Session(
                profile_id=profile_id,
                client_id=request.client_id,
                token=self.token_factory(),
                issued_at=issued_at,
                expires_at=issued_at + timedelta(seconds=settings.session_ttl_seconds),
                return_url=request.return_url,
                state=request.state,
            )
            try:
                return await self.db.insert_session(session)
            except UniqueViolationError:
                logger.warning(f"Session token collision (attempt {attempt})")
        raise ConflictError("Could not generate a unique session token")

    # -------------------------------------------------------------------------
    # Resolve
    # -------------------------------------------------------------------------

    async def resolve_token(self, token: str | None) -> OIDCClaims:
        """Exchange a bearer token for OIDC claims.

        Args:
            token: The bearer token, without the ``Bearer`` prefix

        Returns:
            OIDCClaims for the session's profile, as seen through the
            context bound to the session's client

        Raises:
            AuthenticationRequiredError: Token missing or malformed
            InvalidTokenError: Token unknown, expired, or client gone
            NoContextAssignedError: The (profile, client) pair has no binding
        """
        if not token or not is_valid_session_token(token):
            raise AuthenticationRequiredError("Missing or malformed bearer token")

        now = datetime.now(UTC)
        session = await self.db.get_session_by_token(token)
        if session is None or session.is_expired(now):
            logger.warning(f"Invalid token attempted: {token[:8]}...")
            raise InvalidTokenError("Token not found or expired")

        client = await self.db.get_client(session.client_id)
        if client is None or not client.active:
            logger.warning(f"Token presented for inactive client {session.client_id}")
            raise InvalidTokenError("Token not found or expired")

        assignment = await self.contexts.get_assigned_context(
            session.profile_id, session.client_id
        )
        if assignment is None:
            raise NoContextAssignedError(
                f"No context assigned for client {session.client_id}"
            )

        context = await self.db.get_context(assignment.context_id, session.profile_id)
        result = await self.resolver.resolve(
            target_id=session.profile_id,
            context_hint=assignment.context_id,
        )

        if session.used_at is None:
            await self.db.mark_session_used(session.id, now)

        iat = int(now.timestamp())
        claims = OIDCClaims(
            sub=str(session.profile_id),
            iss=get_settings().oidc_issuer,
            aud=client.app_name,
            iat=iat,
            exp=iat + get_settings().claims_ttl_seconds,
            nbf=iat,
            jti=str(uuid4()),
            context_name=context.name if context else result.context_name or "",
            app_name=client.app_name,
            client_id=client.client_id,
            **self._name_claims(result),
        )
        logger.debug(f"Resolved token {token[:8]}... via {result.tier.value}")
        return claims

    @staticmethod
    def _name_claims(result: ResolutionResult) -> dict[str, str]:
        claims = {"name": result.name_text}
        name = result.name
        if name is None:
            return claims
        if name.kind in (NameKind.NICKNAME, NameKind.ALIAS):
            claims["nickname"] = name.text
        if name.is_preferred or name.kind == NameKind.PREFERRED:
            claims["preferred_username"] = name.text
        return claims

    # -------------------------------------------------------------------------
    # Revoke and maintenance
    # -------------------------------------------------------------------------

    async def revoke(
        self,
        profile_id: UUID,
        client_id: str,
        remove_assignment: bool = False,
    ) -> int:
        """Delete every live session for (profile, client).

        Args:
            profile_id: The profile
            client_id: The client application
            remove_assignment: Also drop the context binding

        Returns:
            Number of sessions revoked
        """
        async with self.db.transaction():
            revoked = await self.db.delete_live_sessions(
                profile_id, client_id, datetime.now(UTC)
            )
            if remove_assignment:
                await self.contexts.remove_assignment(profile_id, client_id)

        logger.info(f"Revoked {revoked} session(s) for client {client_id}")
        return revoked

    async def cleanup_expired_sessions(self) -> int:
        """Delete session rows past their expiry. Returns the count."""
        removed = await self.db.delete_expired_sessions(datetime.now(UTC))
        if removed:
            logger.info(f"Cleaned up {removed} expired session(s)")
        return removed

    async def list_sessions(self, profile_id: UUID) -> list[Session]:
        return await self.db.list_sessions(profile_id)
