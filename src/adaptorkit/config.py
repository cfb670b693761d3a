"""Adaptor configuration objects and loaders."""

from __future__ import annotations

import logging
import os
import re
import socket
from pathlib import Path
from typing import Any, Callable, Mapping, Sequence

from msgspec import Struct, field

from .exceptions import ConfigError
from .metadata import DEFAULT_ASSERTION_CONSUMER_PATH, DEFAULT_LOCAL_ENTITY_ID, DEFAULT_PEER_ENTITY_ID

logger = logging.getLogger(__name__)

ENV_PREFIX = "ADAPTOR_"


class AdaptorConfig(Struct, frozen=True):
    """Typed configuration for an :class:`~adaptorkit.application.AdaptorApp`.

    ``server_doc_id_path``, ``server_full_access_hosts`` and
    ``gsa_character_encoding`` are not read by the SSO stack.  They are
    validated so that existing adaptor properties files load unchanged and
    so that the connector built on top can reach them.
    """

    gsa_hostname: str
    server_hostname: str = field(default_factory=socket.getfqdn)
    server_port: int = 5678
    server_secure: bool = False
    server_doc_id_path: str = "/doc/"
    server_full_access_hosts: tuple[str, ...] = ()
    gsa_character_encoding: str = "UTF-8"
    saml_assertion_consumer_path: str = DEFAULT_ASSERTION_CONSUMER_PATH
    saml_local_entity_id: str = DEFAULT_LOCAL_ENTITY_ID
    saml_peer_entity_id: str = DEFAULT_PEER_ENTITY_ID
    saml_max_session_lifetime_secs: int | None = None
    session_idle_timeout_secs: int = 1800
    session_cleanup_interval_secs: int = 300
    session_cookie_name: str = "sessid"
    transport_timeout_secs: float = 10.0
    extra: dict[str, str] = field(default_factory=dict)

    @property
    def server_base_uri(self) -> str:
        scheme = "https" if self.server_secure else "http"
        return f"{scheme}://{self.server_hostname}:{self.server_port}"

    def values_with_prefix(self, prefix: str) -> dict[str, str]:
        """Return unrecognised settings under ``prefix`` with the prefix removed."""

        return {key[len(prefix) :]: value for key, value in self.extra.items() if key.startswith(prefix)}


def _to_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in {"true", "yes", "on", "1"}:
        return True
    if lowered in {"false", "no", "off", "0"}:
        return False
    raise ValueError(f"not a boolean: {value!r}")


def _to_hosts(value: str) -> tuple[str, ...]:
    return tuple(part for part in re.split(r"[\s,]+", value) if part)


def _to_path(value: str) -> str:
    value = value.strip()
    if not value.startswith("/"):
        raise ValueError(f"path must start with '/': {value!r}")
    return value


def _to_optional_int(value: str) -> int | None:
    value = value.strip()
    return int(value) if value else None


def _to_positive_int(value: str) -> int:
    number = int(value.strip())
    if number <= 0:
        raise ValueError(f"must be positive: {number}")
    return number


def _to_positive_float(value: str) -> float:
    number = float(value.strip())
    if number <= 0:
        raise ValueError(f"must be positive: {number}")
    return number


def _to_port(value: str) -> int:
    port = int(value.strip())
    if not 0 < port < 65536:
        raise ValueError(f"port out of range: {port}")
    return port


def _strip(value: str) -> str:
    return value.strip()


# property key -> (struct field, converter)
SETTINGS: dict[str, tuple[str, Callable[[str], Any]]] = {
    "server.hostname": ("server_hostname", _strip),
    "server.port": ("server_port", _to_port),
    "server.secure": ("server_secure", _to_bool),
    "server.docIdPath": ("server_doc_id_path", _to_path),
    "server.fullAccessHosts": ("server_full_access_hosts", _to_hosts),
    "gsa.hostname": ("gsa_hostname", _strip),
    "gsa.characterEncoding": ("gsa_character_encoding", _strip),
    "saml.assertionConsumerPath": ("saml_assertion_consumer_path", _to_path),
    "saml.localEntityId": ("saml_local_entity_id", _strip),
    "saml.peerEntityId": ("saml_peer_entity_id", _strip),
    "saml.maxSessionLifetimeSecs": ("saml_max_session_lifetime_secs", _to_optional_int),
    "session.idleTimeoutSecs": ("session_idle_timeout_secs", _to_positive_int),
    "session.cleanupIntervalSecs": ("session_cleanup_interval_secs", _to_positive_int),
    "session.cookieName": ("session_cookie_name", _strip),
    "transport.timeoutSecs": ("transport_timeout_secs", _to_positive_float),
}

REQUIRED: tuple[str, ...] = ("gsa.hostname",)


def parse_properties(text: str) -> dict[str, str]:
    """Parse ``key=value`` lines in the Java properties dialect.

    Supports ``#`` and ``!`` comments, ``=``, ``:`` or whitespace as the
    separator, and logical lines continued with a trailing backslash.
    """

    values: dict[str, str] = {}
    pending = ""
    for raw in text.splitlines():
        line = raw.lstrip()
        if not pending and (not line or line[0] in "#!"):
            continue
        if _continues(line):
            pending += line[:-1]
            continue
        line = pending + line
        pending = ""
        key, value = _split_property(line)
        if key:
            values[key] = value
    if pending:
        key, value = _split_property(pending)
        if key:
            values[key] = value
    return values


def _continues(line: str) -> bool:
    trailing = len(line) - len(line.rstrip("\\"))
    return trailing % 2 == 1


def _split_property(line: str) -> tuple[str, str]:
    match = re.match(r"\s*((?:\\.|[^=:\s\\])+)\s*(?:[=:]\s*|\s+|$)(.*)$", line)
    if match is None:
        return "", ""
    key = match.group(1).replace("\\", "")
    return key, match.group(2).rstrip()


def _env_name(key: str) -> str:
    snake = re.sub(r"(?<=[a-z0-9])([A-Z])", r"_\1", key)
    return ENV_PREFIX + snake.replace(".", "_").upper()


def _read_env_blob(name: str, env: Mapping[str, str]) -> str | None:
    file_key = f"{name}_FILE"
    path = env.get(file_key)
    if path:
        try:
            return Path(path).read_text(encoding="utf-8").strip()
        except FileNotFoundError as exc:
            raise ConfigError(f"Configuration file at '{path}' referenced by {file_key} not found") from exc
    value = env.get(name)
    if value:
        return value
    return None


def _read_env(env: Mapping[str, str]) -> dict[str, str]:
    values: dict[str, str] = {}
    for key in SETTINGS:
        value = _read_env_blob(_env_name(key), env)
        if value is not None:
            values[key] = value
    return values


def parse_overrides(argv: Sequence[str]) -> tuple[dict[str, str], list[str]]:
    """Split ``-Dkey=value`` arguments from the rest of ``argv``."""

    overrides: dict[str, str] = {}
    remaining: list[str] = []
    for arg in argv:
        if arg.startswith("-D") and len(arg) > 2:
            key, sep, value = arg[2:].partition("=")
            if not sep:
                raise ConfigError(f"Override {arg!r} is missing '='")
            overrides[key] = value
        else:
            remaining.append(arg)
    return overrides, remaining


def build_config(values: Mapping[str, str]) -> AdaptorConfig:
    """Convert raw property values into an :class:`AdaptorConfig`."""

    missing = [key for key in REQUIRED if not values.get(key, "").strip()]
    if missing:
        raise ConfigError(f"Missing required configuration: {', '.join(missing)}")
    kwargs: dict[str, Any] = {}
    extra: dict[str, str] = {}
    for key, raw in values.items():
        setting = SETTINGS.get(key)
        if setting is None:
            extra[key] = raw
            continue
        name, convert = setting
        try:
            kwargs[name] = convert(raw)
        except ValueError as exc:
            raise ConfigError(f"Invalid value for {key}: {exc}") from exc
    if kwargs.get("server_hostname") == "":
        del kwargs["server_hostname"]
    return AdaptorConfig(extra=extra, **kwargs)


def load_config(
    path: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, str] | None = None,
) -> AdaptorConfig:
    """Load configuration from a properties file, the environment and overrides.

    Later sources win: ``overrides`` beat ``ADAPTOR_*`` environment
    variables, which beat the file.
    """

    values: dict[str, str] = {}
    if path is not None:
        try:
            text = Path(path).read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigError(f"Unable to read configuration file '{path}'") from exc
        values.update(parse_properties(text))
        logger.debug("loaded %d properties from %s", len(values), path)
    values.update(_read_env(os.environ if env is None else env))
    if overrides:
        values.update(overrides)
    return build_config(values)


__all__ = [
    "AdaptorConfig",
    "ENV_PREFIX",
    "build_config",
    "load_config",
    "parse_overrides",
    "parse_properties",
]
