"""Static SAML entity descriptors for the adaptor and the appliance."""

from __future__ import annotations

from typing import TYPE_CHECKING

from msgspec import Struct

if TYPE_CHECKING:
    from .config import AdaptorConfig

DEFAULT_LOCAL_ENTITY_ID = "http://google.com/enterprise/gsa/adaptor"
DEFAULT_PEER_ENTITY_ID = "http://google.com/enterprise/gsa/security-manager"
DEFAULT_ASSERTION_CONSUMER_PATH = "/samlassertionconsumer"


class LocalEntity(Struct, frozen=True):
    """This service provider."""

    entity_id: str
    assertion_consumer_service_url: str


class PeerEntity(Struct, frozen=True):
    """The identity provider."""

    entity_id: str
    single_sign_on_url: str
    artifact_resolution_url: str


class SamlMetadata(Struct, frozen=True):
    local: LocalEntity
    peer: PeerEntity

    @classmethod
    def for_hosts(
        cls,
        hostname: str,
        port: int,
        gsa_hostname: str,
        *,
        secure: bool = True,
        assertion_consumer_path: str = DEFAULT_ASSERTION_CONSUMER_PATH,
        local_entity_id: str = DEFAULT_LOCAL_ENTITY_ID,
        peer_entity_id: str = DEFAULT_PEER_ENTITY_ID,
    ) -> "SamlMetadata":
        scheme = "https" if secure else "http"
        if not assertion_consumer_path.startswith("/"):
            assertion_consumer_path = "/" + assertion_consumer_path
        local = LocalEntity(
            entity_id=local_entity_id,
            assertion_consumer_service_url=f"{scheme}://{hostname}:{port}{assertion_consumer_path}",
        )
        peer = PeerEntity(
            entity_id=peer_entity_id,
            single_sign_on_url=f"https://{gsa_hostname}/security-manager/samlauthn",
            artifact_resolution_url=f"https://{gsa_hostname}/security-manager/samlartifact",
        )
        return cls(local=local, peer=peer)

    @classmethod
    def from_config(cls, config: "AdaptorConfig") -> "SamlMetadata":
        return cls.for_hosts(
            config.server_hostname,
            config.server_port,
            config.gsa_hostname,
            secure=config.server_secure,
            assertion_consumer_path=config.saml_assertion_consumer_path,
            local_entity_id=config.saml_local_entity_id,
            peer_entity_id=config.saml_peer_entity_id,
        )


__all__ = [
    "DEFAULT_ASSERTION_CONSUMER_PATH",
    "DEFAULT_LOCAL_ENTITY_ID",
    "DEFAULT_PEER_ENTITY_ID",
    "LocalEntity",
    "PeerEntity",
    "SamlMetadata",
]
