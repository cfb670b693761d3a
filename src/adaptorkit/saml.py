"""SAML 2.0 HTTP-Artifact binding client."""

from __future__ import annotations

import base64
import datetime as dt
import secrets
import zlib
from dataclasses import dataclass
from typing import Any, Callable, Iterable
from urllib.parse import urlencode

from msgspec import DecodeError, Struct, ValidationError

import lxml.etree as LET

from .authn import AuthnIdentity
from .clock import SystemTimeProvider, TimeProvider, datetime_to_millis
from .exceptions import AuthenticationRejected, ProtocolFailure, TransportFailure
from .metadata import SamlMetadata
from .serialization import json_decode, json_encode
from .transport import SOAP_HEADERS, HttpTransport

SAML2_NS = "urn:oasis:names:tc:SAML:2.0:assertion"
SAML2P_NS = "urn:oasis:names:tc:SAML:2.0:protocol"
SOAP11_NS = "http://schemas.xmlsoap.org/soap/envelope/"

STATUS_SUCCESS = "urn:oasis:names:tc:SAML:2.0:status:Success"
BEARER_METHOD = "urn:oasis:names:tc:SAML:2.0:cm:bearer"
HTTP_ARTIFACT_BINDING = "urn:oasis:names:tc:SAML:2.0:bindings:HTTP-Artifact"
SECURITY_MANAGER_STATE_ATTRIBUTE = "SecurityManagerState"

_NS = {"saml2": SAML2_NS, "saml2p": SAML2P_NS, "soap11": SOAP11_NS}


def _q(namespace: str, tag: str) -> str:
    return f"{{{namespace}}}{tag}"


def generate_message_id() -> str:
    """Return a fresh identifier that is a valid xsd:ID."""

    return "_" + secrets.token_hex(16)


def format_instant(millis: int) -> str:
    moment = dt.datetime.fromtimestamp(millis // 1000, tz=dt.timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_instant(value: str) -> int:
    """Convert an xsd:dateTime into epoch milliseconds."""

    try:
        instant = dt.datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError as exc:
        raise ProtocolFailure("invalid_timestamp") from exc
    return datetime_to_millis(instant)


# --------------------------------------------------------------------- extension payload
class SecmgrCredentials(Struct, rename="camel", omit_defaults=True):
    username: str | None = None
    password: str | None = None
    domain: str | None = None
    groups: list[str] = []


class SecurityManagerState(Struct, rename="camel", omit_defaults=True):
    """Session state attribute attached by the appliance's security manager."""

    version: int = 1
    time_stamp: int | None = None
    session_state: dict[str, Any] | None = None
    pvi_credentials: SecmgrCredentials | None = None
    basic_credentials: SecmgrCredentials | None = None
    verified_credentials: list[SecmgrCredentials] = []
    connector_credentials: list[Any] = []
    cookies: list[Any] = []


def encode_security_manager_state(
    username: str,
    *,
    password: str | None = None,
    groups: Iterable[str] = (),
    time_stamp: int | None = None,
) -> str:
    credentials = SecmgrCredentials(username=username, password=password, groups=sorted(set(groups)))
    state = SecurityManagerState(
        time_stamp=time_stamp,
        pvi_credentials=credentials,
        basic_credentials=credentials,
        verified_credentials=[credentials],
    )
    return json_encode(state).decode()


def decode_security_manager_state(
    payload: str,
    *,
    subject: str | None = None,
) -> tuple[frozenset[str], str | None]:
    """Return the groups and password carried by ``payload``.

    The principal's own credentials are preferred; otherwise a verified
    credential for ``subject`` is used.
    """

    try:
        state = json_decode(payload.strip(), type=SecurityManagerState)
    except (DecodeError, ValidationError) as exc:
        raise ProtocolFailure("invalid_security_manager_state") from exc
    credentials = state.pvi_credentials
    if credentials is None:
        for candidate in state.verified_credentials:
            if subject is None or candidate.username == subject:
                credentials = candidate
                break
    if credentials is None:
        credentials = state.basic_credentials
    if credentials is None:
        return frozenset(), None
    return frozenset(credentials.groups), credentials.password


# --------------------------------------------------------------------- message building
def build_artifact_resolve(artifact: str, *, message_id: str, issue_instant: str, issuer: str) -> bytes:
    """Serialize an ``ArtifactResolve`` wrapped in a SOAP 1.1 envelope."""

    envelope = LET.Element(_q(SOAP11_NS, "Envelope"), nsmap={"soap11": SOAP11_NS})
    body = LET.SubElement(envelope, _q(SOAP11_NS, "Body"))
    resolve = LET.SubElement(body, _q(SAML2P_NS, "ArtifactResolve"), nsmap={"saml2p": SAML2P_NS})
    resolve.set("ID", message_id)
    resolve.set("IssueInstant", issue_instant)
    resolve.set("Version", "2.0")
    issuer_node = LET.SubElement(resolve, _q(SAML2_NS, "Issuer"), nsmap={"saml2": SAML2_NS})
    issuer_node.text = issuer
    artifact_node = LET.SubElement(resolve, _q(SAML2P_NS, "Artifact"))
    artifact_node.text = artifact
    return LET.tostring(envelope, xml_declaration=True, encoding="UTF-8")


def build_authn_request(
    *,
    message_id: str,
    issue_instant: str,
    issuer: str,
    destination: str,
    assertion_consumer_service_url: str,
    provider_name: str | None = None,
) -> bytes:
    request = LET.Element(_q(SAML2P_NS, "AuthnRequest"), nsmap={"saml2p": SAML2P_NS, "saml2": SAML2_NS})
    request.set("ID", message_id)
    request.set("IssueInstant", issue_instant)
    request.set("Version", "2.0")
    request.set("Destination", destination)
    request.set("AssertionConsumerServiceURL", assertion_consumer_service_url)
    request.set("ProtocolBinding", HTTP_ARTIFACT_BINDING)
    if provider_name:
        request.set("ProviderName", provider_name)
    issuer_node = LET.SubElement(request, _q(SAML2_NS, "Issuer"))
    issuer_node.text = issuer
    return LET.tostring(request, encoding="UTF-8")


def encode_redirect_message(message: bytes) -> str:
    """DEFLATE and base64 ``message`` for the HTTP-Redirect binding."""

    compressor = zlib.compressobj(zlib.Z_DEFAULT_COMPRESSION, zlib.DEFLATED, -15)
    deflated = compressor.compress(message) + compressor.flush()
    return base64.b64encode(deflated).decode("ascii")


def decode_redirect_message(encoded: str) -> bytes:
    return zlib.decompress(base64.b64decode(encoded), -15)


# --------------------------------------------------------------------- parsing helpers
def _parser() -> LET.XMLParser:
    return LET.XMLParser(
        resolve_entities=False,
        no_network=True,
        load_dtd=False,
        huge_tree=False,
        remove_comments=True,
    )


def _parse_document(payload: bytes) -> LET._Element:
    try:
        document = LET.fromstring(payload, parser=_parser())
    except (LET.XMLSyntaxError, ValueError) as exc:
        raise ProtocolFailure("malformed_xml") from exc
    tree = document.getroottree()
    if tree.docinfo.doctype:
        raise ProtocolFailure("doctype_not_allowed")
    return document


def _unwrap_soap(payload: bytes) -> LET._Element:
    envelope = _parse_document(payload)
    if envelope.tag != _q(SOAP11_NS, "Envelope"):
        raise ProtocolFailure("not_a_soap_envelope")
    body = envelope.find(_q(SOAP11_NS, "Body"))
    if body is None:
        raise ProtocolFailure("missing_soap_body")
    if body.find(_q(SOAP11_NS, "Fault")) is not None:
        raise ProtocolFailure("soap_fault")
    artifact_response = body.find(_q(SAML2P_NS, "ArtifactResponse"))
    if artifact_response is None:
        raise ProtocolFailure("missing_artifact_response")
    return artifact_response


def _status_code(message: LET._Element) -> str | None:
    code = message.find("saml2p:Status/saml2p:StatusCode", namespaces=_NS)
    if code is None:
        return None
    return code.get("Value")


def _short_status(value: str | None) -> str:
    if not value:
        return "missing"
    return value.rsplit(":", 1)[-1]


def _issuer(message: LET._Element) -> str | None:
    node = message.find("saml2:Issuer", namespaces=_NS)
    if node is None or node.text is None:
        return None
    return node.text.strip()


@dataclass(frozen=True, slots=True)
class ResolvedAssertion:
    identity: AuthnIdentity
    expiration_time_millis: int


# --------------------------------------------------------------------- client
class SamlClient:
    """Issue AuthnRequests and resolve artifacts against one identity provider.

    A client is created per SSO attempt; :attr:`request_id` is the id of the
    AuthnRequest it last issued and is what a returned assertion must answer.
    """

    def __init__(
        self,
        metadata: SamlMetadata,
        transport: HttpTransport,
        *,
        time_provider: TimeProvider | None = None,
        provider_name: str | None = "adaptorkit",
        clock_skew_millis: int = 0,
        id_factory: Callable[[], str] = generate_message_id,
    ) -> None:
        self.metadata = metadata
        self.transport = transport
        self.time_provider = time_provider or SystemTimeProvider()
        self.provider_name = provider_name
        self.clock_skew_millis = max(clock_skew_millis, 0)
        self._id_factory = id_factory
        self._request_id: str | None = None

    @property
    def request_id(self) -> str | None:
        return self._request_id

    # ----------------------------------------------------------------- AuthnRequest
    def authn_request_redirect(self, relay_state: str | None = None) -> str:
        """Issue a new AuthnRequest and return the IdP URL that carries it."""

        message_id = self._id_factory()
        message = build_authn_request(
            message_id=message_id,
            issue_instant=format_instant(self.time_provider.current_time_millis()),
            issuer=self.metadata.local.entity_id,
            destination=self.metadata.peer.single_sign_on_url,
            assertion_consumer_service_url=self.metadata.local.assertion_consumer_service_url,
            provider_name=self.provider_name,
        )
        self._request_id = message_id
        params = {"SAMLRequest": encode_redirect_message(message)}
        if relay_state:
            params["RelayState"] = relay_state
        target = self.metadata.peer.single_sign_on_url
        separator = "&" if "?" in target else "?"
        return f"{target}{separator}{urlencode(params)}"

    # ----------------------------------------------------------------- artifact resolution
    async def resolve_artifact(
        self,
        artifact: str,
        *,
        in_response_to: str | None,
        max_lifetime_millis: int | None = None,
    ) -> ResolvedAssertion:
        """Exchange ``artifact`` for a verified identity.

        Raises :class:`TransportFailure`, :class:`ProtocolFailure` or
        :class:`AuthenticationRejected`; nothing partial is returned.
        """

        if not in_response_to:
            raise AuthenticationRejected("no_outstanding_request")
        payload = build_artifact_resolve(
            artifact,
            message_id=self._id_factory(),
            issue_instant=format_instant(self.time_provider.current_time_millis()),
            issuer=self.metadata.local.entity_id,
        )
        response = await self.transport.send(self.metadata.peer.artifact_resolution_url, payload, SOAP_HEADERS)
        if response.status != 200:
            raise TransportFailure(f"http_status_{response.status}")
        artifact_response = _unwrap_soap(response.body)
        return self.validate_artifact_response(
            artifact_response,
            in_response_to=in_response_to,
            max_lifetime_millis=max_lifetime_millis,
        )

    def validate_artifact_response(
        self,
        artifact_response: LET._Element,
        *,
        in_response_to: str,
        max_lifetime_millis: int | None = None,
    ) -> ResolvedAssertion:
        now = self.time_provider.current_time_millis()
        outer_status = _status_code(artifact_response)
        if outer_status != STATUS_SUCCESS:
            raise ProtocolFailure(f"artifact_status_{_short_status(outer_status)}")
        responses = artifact_response.findall("saml2p:Response", namespaces=_NS)
        if len(responses) != 1:
            raise ProtocolFailure("missing_authn_response")
        authn_response = responses[0]
        inner_status = _status_code(authn_response)
        if inner_status is None:
            raise ProtocolFailure("missing_status")
        if inner_status != STATUS_SUCCESS:
            raise AuthenticationRejected(f"status_{_short_status(inner_status)}")
        if authn_response.find("saml2:EncryptedAssertion", namespaces=_NS) is not None:
            raise ProtocolFailure("encrypted_assertion_unsupported")
        assertions = authn_response.findall("saml2:Assertion", namespaces=_NS)
        if len(assertions) != 1:
            raise ProtocolFailure("assertion_count")
        assertion = assertions[0]

        subject = assertion.find("saml2:Subject", namespaces=_NS)
        if subject is None:
            raise AuthenticationRejected("missing_subject")
        confirmed_until = self._confirm_subject(subject, in_response_to, now)
        conditions_until = self._check_conditions(assertion, now)
        self._check_issuers(artifact_response, authn_response, assertion)

        name_id = subject.findtext("saml2:NameID", namespaces=_NS)
        username = (name_id or "").strip()
        if not username:
            raise AuthenticationRejected("missing_subject")
        groups, password = self._extension_credentials(assertion, username)
        identity = AuthnIdentity(username=username, groups=groups, password=password)

        expiration = confirmed_until
        if conditions_until is not None:
            expiration = min(expiration, conditions_until)
        if max_lifetime_millis is not None:
            expiration = min(expiration, now + max_lifetime_millis)
        return ResolvedAssertion(identity=identity, expiration_time_millis=expiration)

    def _confirm_subject(self, subject: LET._Element, in_response_to: str, now: int) -> int:
        reason = "missing_bearer_confirmation"
        for confirmation in subject.findall("saml2:SubjectConfirmation", namespaces=_NS):
            if confirmation.get("Method") != BEARER_METHOD:
                continue
            data = confirmation.find("saml2:SubjectConfirmationData", namespaces=_NS)
            if data is None:
                reason = "missing_confirmation_data"
                continue
            if data.get("InResponseTo") != in_response_to:
                reason = "in_response_to_mismatch"
                continue
            if data.get("Recipient") != self.metadata.local.assertion_consumer_service_url:
                reason = "recipient_mismatch"
                continue
            not_on_or_after = data.get("NotOnOrAfter")
            if not not_on_or_after:
                reason = "missing_not_on_or_after"
                continue
            expires = parse_instant(not_on_or_after)
            if now - self.clock_skew_millis >= expires:
                reason = "subject_confirmation_expired"
                continue
            not_before = data.get("NotBefore")
            if not_before and now + self.clock_skew_millis < parse_instant(not_before):
                reason = "subject_confirmation_not_yet_valid"
                continue
            return expires
        raise AuthenticationRejected(reason)

    def _check_conditions(self, assertion: LET._Element, now: int) -> int | None:
        conditions = assertion.find("saml2:Conditions", namespaces=_NS)
        if conditions is None:
            raise AuthenticationRejected("missing_conditions")
        not_before = conditions.get("NotBefore")
        if not_before and now + self.clock_skew_millis < parse_instant(not_before):
            raise AuthenticationRejected("assertion_not_yet_valid")
        expires: int | None = None
        not_on_or_after = conditions.get("NotOnOrAfter")
        if not_on_or_after:
            expires = parse_instant(not_on_or_after)
            if now - self.clock_skew_millis >= expires:
                raise AuthenticationRejected("assertion_expired")
        restrictions = conditions.findall("saml2:AudienceRestriction", namespaces=_NS)
        if not restrictions:
            raise AuthenticationRejected("missing_audience")
        expected = self.metadata.local.entity_id
        for restriction in restrictions:
            audiences = {
                (node.text or "").strip() for node in restriction.findall("saml2:Audience", namespaces=_NS)
            }
            if expected not in audiences:
                raise AuthenticationRejected("audience_mismatch")
        return expires

    def _check_issuers(
        self,
        artifact_response: LET._Element,
        authn_response: LET._Element,
        assertion: LET._Element,
    ) -> None:
        expected = self.metadata.peer.entity_id
        response_issuer = _issuer(authn_response)
        if response_issuer is None:
            response_issuer = _issuer(artifact_response)
        if response_issuer != expected:
            raise AuthenticationRejected("issuer_mismatch")
        assertion_issuer = _issuer(assertion)
        if assertion_issuer is not None and assertion_issuer != expected:
            raise AuthenticationRejected("issuer_mismatch")

    def _extension_credentials(
        self,
        assertion: LET._Element,
        username: str,
    ) -> tuple[frozenset[str] | None, str | None]:
        for attribute in assertion.iterfind("saml2:AttributeStatement/saml2:Attribute", namespaces=_NS):
            if attribute.get("Name") != SECURITY_MANAGER_STATE_ATTRIBUTE:
                continue
            value = attribute.findtext("saml2:AttributeValue", namespaces=_NS)
            if not value or not value.strip():
                raise ProtocolFailure("invalid_security_manager_state")
            return decode_security_manager_state(value, subject=username)
        return None, None


__all__ = [
    "BEARER_METHOD",
    "HTTP_ARTIFACT_BINDING",
    "SAML2P_NS",
    "SAML2_NS",
    "SECURITY_MANAGER_STATE_ATTRIBUTE",
    "SOAP11_NS",
    "STATUS_SUCCESS",
    "ResolvedAssertion",
    "SamlClient",
    "SecmgrCredentials",
    "SecurityManagerState",
    "build_artifact_resolve",
    "build_authn_request",
    "decode_redirect_message",
    "decode_security_manager_state",
    "encode_redirect_message",
    "encode_security_manager_state",
    "format_instant",
    "generate_message_id",
    "parse_instant",
]
