"""SAML artifact single sign-on for connector adaptors."""

from .application import AdaptorApp
from .authn import NEVER_EXPIRES, AuthnIdentity, AuthnPhase, AuthnState
from .clock import MockTimeProvider, SystemTimeProvider, TimeProvider
from .config import AdaptorConfig, load_config, parse_overrides
from .exceptions import (
    AdaptorError,
    AuthenticationRejected,
    ConfigError,
    HTTPError,
    PreconditionViolation,
    ProtocolFailure,
    SsoError,
    TransportFailure,
)
from .execution import ExecutionConfig, TaskExecutor
from .http import Status
from .metadata import LocalEntity, PeerEntity, SamlMetadata
from .requests import Request
from .responses import EmptyResponse, PlainTextResponse, RedirectResponse, Response
from .saml import ResolvedAssertion, SamlClient
from .sessions import ClientStore, CookieClientStore, PeerAddressClientStore, Session, SessionManager
from .sso import SamlAssertionConsumerHandler, SamlServiceProvider
from .transport import HttpTransport, TransportResponse, UrllibTransport

__all__ = [
    "AdaptorApp",
    "AdaptorConfig",
    "AdaptorError",
    "AuthenticationRejected",
    "AuthnIdentity",
    "AuthnPhase",
    "AuthnState",
    "ClientStore",
    "ConfigError",
    "CookieClientStore",
    "EmptyResponse",
    "ExecutionConfig",
    "HTTPError",
    "HttpTransport",
    "LocalEntity",
    "MockTimeProvider",
    "NEVER_EXPIRES",
    "PeerAddressClientStore",
    "PeerEntity",
    "PlainTextResponse",
    "PreconditionViolation",
    "ProtocolFailure",
    "RedirectResponse",
    "Request",
    "ResolvedAssertion",
    "Response",
    "SamlAssertionConsumerHandler",
    "SamlClient",
    "SamlMetadata",
    "SamlServiceProvider",
    "Session",
    "SessionManager",
    "SsoError",
    "Status",
    "SystemTimeProvider",
    "TaskExecutor",
    "TimeProvider",
    "TransportFailure",
    "TransportResponse",
    "UrllibTransport",
    "load_config",
    "parse_overrides",
]
