"""SAML single sign-on endpoints."""

from __future__ import annotations

import logging

from .authn import AuthnIdentity, AuthnState
from .clock import SystemTimeProvider, TimeProvider
from .exceptions import (
    AuthenticationRejected,
    HTTPError,
    PreconditionViolation,
    ProtocolFailure,
    SsoError,
    TransportFailure,
)
from .http import Status
from .metadata import SamlMetadata
from .requests import Request
from .responses import EmptyResponse, RedirectResponse, Response
from .saml import SamlClient
from .sessions import SessionManager
from .transport import HttpTransport

logger = logging.getLogger(__name__)

ARTIFACT_PARAMETER = "SAMLart"
MAX_ARTIFACT_LENGTH = 1024


def _usable_artifact(artifact: str | None) -> bool:
    if artifact is None or not artifact.strip():
        return False
    if len(artifact) > MAX_ARTIFACT_LENGTH:
        return False
    return artifact.isascii() and artifact.isprintable()


class SamlAssertionConsumerHandler:
    """Complete an outstanding SSO attempt from the artifact the IdP sent back.

    The exchange runs under the session's lock so that a duplicate delivery
    of the same artifact observes the first one's outcome instead of racing
    it. Nothing about the session changes unless the assertion verifies.
    """

    def __init__(
        self,
        session_manager: SessionManager,
        *,
        max_lifetime_millis: int | None = None,
    ) -> None:
        self.session_manager = session_manager
        self.max_lifetime_millis = max_lifetime_millis

    async def handle(self, request: Request) -> Response:
        try:
            target = await self._consume(request)
        except PreconditionViolation as exc:
            logger.debug("assertion consumer precondition failed: %s", exc.reason)
            return EmptyResponse(exc.status)
        except AuthenticationRejected as exc:
            logger.info("SAML authentication rejected: %s", exc.reason)
            return EmptyResponse(Status.FORBIDDEN)
        except (TransportFailure, ProtocolFailure) as exc:
            logger.warning("artifact resolution failed: %s", exc.reason, exc_info=exc)
            return EmptyResponse(Status.FORBIDDEN)
        return RedirectResponse(target)

    async def _consume(self, request: Request) -> str:
        if request.method.upper() != "GET":
            raise PreconditionViolation("method_not_allowed", Status.METHOD_NOT_ALLOWED)
        session = self.session_manager.get_session(request, create=False)
        if session is None:
            raise PreconditionViolation("no_session")
        async with session.lock:
            state = session.get_attribute(AuthnState)
            if state is None:
                raise PreconditionViolation("no_authn_state")
            if state.is_authenticated():
                raise PreconditionViolation("already_authenticated")
            request_id = state.outstanding_request_id
            client = state.client
            if request_id is None or client is None:
                raise PreconditionViolation("no_outstanding_request")
            try:
                artifact = request.query_param(ARTIFACT_PARAMETER)
            except HTTPError as exc:
                raise PreconditionViolation("missing_artifact", Status.INTERNAL_SERVER_ERROR) from exc
            if not _usable_artifact(artifact):
                raise PreconditionViolation("missing_artifact", Status.INTERNAL_SERVER_ERROR)
            resolved = await client.resolve_artifact(
                artifact,
                in_response_to=request_id,
                max_lifetime_millis=self.max_lifetime_millis,
            )
            state.authenticated(resolved.identity, resolved.expiration_time_millis)
            target = state.original_resource
        logger.info("session %r authenticated as %s", session, resolved.identity.username)
        return target or "/"


class SamlServiceProvider:
    """Service-provider side of the artifact SSO flow for one adaptor."""

    def __init__(
        self,
        session_manager: SessionManager,
        metadata: SamlMetadata,
        transport: HttpTransport,
        *,
        time_provider: TimeProvider | None = None,
        max_lifetime_millis: int | None = None,
        clock_skew_millis: int = 0,
        provider_name: str | None = "adaptorkit",
    ) -> None:
        self.session_manager = session_manager
        self.metadata = metadata
        self.transport = transport
        self.time_provider = time_provider or SystemTimeProvider()
        self.clock_skew_millis = clock_skew_millis
        self.provider_name = provider_name
        self.consumer = SamlAssertionConsumerHandler(session_manager, max_lifetime_millis=max_lifetime_millis)

    def create_client(self) -> SamlClient:
        return SamlClient(
            self.metadata,
            self.transport,
            time_provider=self.time_provider,
            provider_name=self.provider_name,
            clock_skew_millis=self.clock_skew_millis,
        )

    def identity_for(self, request: Request) -> AuthnIdentity | None:
        """Return the identity of the request's session while it is valid."""

        session = self.session_manager.get_session(request, create=False)
        if session is None:
            return None
        state = session.get_attribute(AuthnState)
        if state is None or not state.is_authenticated():
            return None
        return state.identity

    async def begin_authentication(self, request: Request, original_resource: str | None = None) -> Response:
        """Start an attempt for the request's session and redirect to the IdP."""

        session = self.session_manager.get_session(request, create=True)
        if session is None:
            raise RuntimeError("session manager returned no session for create=True")
        resource = original_resource or request.url
        async with session.lock:
            state = session.get_attribute(AuthnState)
            if state is None:
                state = AuthnState(self.time_provider)
                session.set_attribute(state)
            client = self.create_client()
            try:
                location = client.authn_request_redirect()
                state.start_attempt(client, resource)
            except SsoError as exc:
                logger.debug("unable to start SSO attempt: %s", exc.reason)
                status = exc.status if isinstance(exc, PreconditionViolation) else Status.INTERNAL_SERVER_ERROR
                return EmptyResponse(status)
        logger.debug("session %r redirected to identity provider", session)
        return RedirectResponse(location)


__all__ = [
    "ARTIFACT_PARAMETER",
    "SamlAssertionConsumerHandler",
    "SamlServiceProvider",
]
