"""Test support utilities for the SSO handler and SAML client tests."""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from typing import Callable, Mapping

from adaptorkit.authn import AuthnState
from adaptorkit.clock import MockTimeProvider, datetime_to_millis
from adaptorkit.exceptions import TransportFailure
from adaptorkit.metadata import SamlMetadata
from adaptorkit.requests import Request
from adaptorkit.saml import SamlClient
from adaptorkit.sessions import PeerAddressClientStore, SessionManager
from adaptorkit.transport import TransportResponse

NOW = datetime_to_millis(dt.datetime(2020, 6, 1, 12, 0, 0, tzinfo=dt.timezone.utc))
ARTIFACT = "1234someid5678"

METADATA = SamlMetadata.for_hosts("localhost", 80, "thegsa")
ISSUER = METADATA.peer.entity_id
RECIPIENT = METADATA.local.assertion_consumer_service_url
AUDIENCE = METADATA.local.entity_id

SUCCESS = "urn:oasis:names:tc:SAML:2.0:status:Success"

EXTENSION_STATE = (
    '{"version": 1, "timeStamp": 1330042321589,'
    ' "sessionState": {"instructions": [{"operation": "ADD_CREDENTIAL",'
    ' "authority": "http://google.com/enterprise/gsa/security-manager/Default",'
    ' "operand": {"name": "CN=Polly Hedra", "typeName": "AuthnPrincipal"}}]},'
    ' "pviCredentials": {"username": "CN=Polly Hedra", "password": "p0ck3t",'
    ' "groups": ["group1", "pollysGroup"]},'
    ' "basicCredentials": {"username": "CN=Polly Hedra", "password": "p0ck3t",'
    ' "groups": ["group1", "pollysGroup"]},'
    ' "verifiedCredentials": [{"username": "CN=Polly Hedra", "password": "p0ck3t",'
    ' "groups": ["group1", "pollysGroup"]}],'
    ' "connectorCredentials": [], "cookies": []}'
)


def envelope(inner: str) -> bytes:
    return (
        '<SOAP-ENV:Envelope xmlns:SOAP-ENV="http://schemas.xmlsoap.org/soap/envelope/">'
        f"<SOAP-ENV:Body>{inner}</SOAP-ENV:Body>"
        "</SOAP-ENV:Envelope>"
    ).encode("utf-8")


def artifact_response(
    request_id: str,
    *,
    outer_status: str = SUCCESS,
    inner_status: str | None = SUCCESS,
    include_response: bool = True,
    response_issuer: str | None = None,
    assertion_issuer: str = ISSUER,
    in_response_to: str | None = None,
    recipient: str = RECIPIENT,
    audience: str = AUDIENCE,
    not_on_or_after: str = "2030-01-01T01:01:01Z",
    not_before: str = "2010-01-01T01:01:01Z",
    conditions_not_on_or_after: str | None = None,
    name_id: str = "CN=Polly Hedra",
    extension: str | None = None,
    include_assertion: bool = True,
) -> bytes:
    """Build an ``ArtifactResponse`` shaped like the appliance's."""

    confirmed = request_id if in_response_to is None else in_response_to
    conditions_expiry = f' NotOnOrAfter="{conditions_not_on_or_after}"' if conditions_not_on_or_after else ""
    attributes = ""
    if extension is not None:
        attributes = (
            "<AttributeStatement>"
            '<Attribute Name="SecurityManagerState">'
            f"<AttributeValue>{extension}</AttributeValue>"
            "</Attribute>"
            "</AttributeStatement>"
        )
    assertion = ""
    if include_assertion and inner_status == SUCCESS:
        assertion = (
            '<Assertion Version="2.0" ID="someid3" IssueInstant="2010-01-01T01:01:01Z">'
            f"<Issuer>{assertion_issuer}</Issuer>"
            "<Subject>"
            f"<NameID>{name_id}</NameID>"
            '<SubjectConfirmation Method="urn:oasis:names:tc:SAML:2.0:cm:bearer">'
            f'<SubjectConfirmationData InResponseTo="{confirmed}" Recipient="{recipient}"'
            f' NotOnOrAfter="{not_on_or_after}"/>'
            "</SubjectConfirmation>"
            "</Subject>"
            f'<Conditions NotBefore="{not_before}"{conditions_expiry}>'
            f"<AudienceRestriction><Audience>{audience}</Audience></AudienceRestriction>"
            "</Conditions>"
            '<AuthnStatement AuthnInstant="2010-01-01T01:01:01Z"/>'
            f"{attributes}"
            "</Assertion>"
        )
    response = ""
    if include_response:
        issuer = f"<Issuer>{response_issuer}</Issuer>" if response_issuer else ""
        status = (
            f'<samlp:Status><samlp:StatusCode Value="{inner_status}"/></samlp:Status>' if inner_status else ""
        )
        response = (
            '<samlp:Response ID="someid2" Version="2.0" IssueInstant="2010-01-01T01:01:01Z">'
            f"{issuer}{status}{assertion}"
            "</samlp:Response>"
        )
    return envelope(
        '<samlp:ArtifactResponse xmlns:samlp="urn:oasis:names:tc:SAML:2.0:protocol"'
        ' xmlns="urn:oasis:names:tc:SAML:2.0:assertion"'
        f' ID="someid1" Version="2.0" InResponseTo="{request_id}" IssueInstant="2010-01-01T01:01:01Z">'
        f"<Issuer>{ISSUER}</Issuer>"
        f'<samlp:Status><samlp:StatusCode Value="{outer_status}"/></samlp:Status>'
        f"{response}"
        "</samlp:ArtifactResponse>"
    )


@dataclass
class StubTransport:
    """Answer every back-channel request from ``responder``."""

    responder: Callable[[bytes], bytes] | None = None
    status: int = 200
    calls: list[tuple[str, bytes, dict[str, str]]] = field(default_factory=list)

    def respond_with(self, payload: bytes) -> None:
        self.responder = lambda _body: payload

    async def send(self, url: str, body: bytes, headers: Mapping[str, str]) -> TransportResponse:
        self.calls.append((url, body, dict(headers)))
        if self.responder is None:
            raise AssertionError("no response configured")
        return TransportResponse(status=self.status, body=self.responder(body))


class FailingTransport:
    """Transport that must never be reached."""

    async def send(self, url: str, body: bytes, headers: Mapping[str, str]) -> TransportResponse:
        raise AssertionError(f"unexpected back-channel request to {url}")


class UnreachableTransport:
    async def send(self, url: str, body: bytes, headers: Mapping[str, str]) -> TransportResponse:
        raise TransportFailure("connection_failed")


def build_request(
    *,
    method: str = "GET",
    path: str = "/samlassertionconsumer",
    query_string: str = f"SAMLart={ARTIFACT}",
    client: tuple[str, int] | None = ("127.0.0.1", 40000),
    headers: Mapping[str, str] | None = None,
) -> Request:
    return Request(
        method=method,
        path=path,
        query_string=query_string,
        client=client,
        headers=headers or {"host": "localhost"},
    )


def session_manager(clock: MockTimeProvider | None = None) -> SessionManager:
    return SessionManager(clock or MockTimeProvider(NOW), PeerAddressClientStore(), 1000, 1000)


def prime_attempt(
    manager: SessionManager,
    transport: object,
    *,
    original_resource: str = "/doc/someid",
    request: Request | None = None,
) -> tuple[SamlClient, AuthnState]:
    """Record an outstanding AuthnRequest in the session of ``request``'s client."""

    clock = manager.time_provider
    client = SamlClient(METADATA, transport, time_provider=clock, provider_name="Testing")  # type: ignore[arg-type]
    session = manager.get_session(request or build_request())
    assert session is not None
    state = AuthnState(clock)
    client.authn_request_redirect()
    state.start_attempt(client, original_resource)
    session.set_attribute(state)
    return client, state
