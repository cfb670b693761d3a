from __future__ import annotations

import pytest

from adaptorkit.config import AdaptorConfig, build_config, load_config, parse_overrides, parse_properties
from adaptorkit.exceptions import ConfigError
from adaptorkit.metadata import SamlMetadata


def test_parse_properties_handles_java_dialect() -> None:
    text = "\n".join(
        [
            "# comment",
            "! another comment",
            "gsa.hostname = gsa.example.com",
            "server.port:6000",
            "server.fullAccessHosts host1, \\",
            "    host2",
            "adaptor.name\\:x  value with spaces  ",
            "empty.key",
        ]
    )

    values = parse_properties(text)

    assert values == {
        "gsa.hostname": "gsa.example.com",
        "server.port": "6000",
        "server.fullAccessHosts": "host1, host2",
        "adaptor.name:x": "value with spaces",
        "empty.key": "",
    }


def test_build_config_applies_defaults() -> None:
    config = build_config({"gsa.hostname": "gsa", "server.hostname": "adaptor.local"})

    assert config.server_port == 5678
    assert config.server_secure is False
    assert config.server_doc_id_path == "/doc/"
    assert config.gsa_character_encoding == "UTF-8"
    assert config.saml_assertion_consumer_path == "/samlassertionconsumer"
    assert config.session_idle_timeout_secs == 1800
    assert config.session_cookie_name == "sessid"
    assert config.saml_max_session_lifetime_secs is None
    assert config.server_base_uri == "http://adaptor.local:5678"


def test_missing_required_key_is_reported() -> None:
    with pytest.raises(ConfigError) as excinfo:
        build_config({"server.port": "80"})

    assert "gsa.hostname" in str(excinfo.value)


@pytest.mark.parametrize(
    ("key", "value"),
    [
        ("server.port", "eighty"),
        ("server.port", "70000"),
        ("server.secure", "maybe"),
        ("server.docIdPath", "doc/"),
        ("session.idleTimeoutSecs", "0"),
    ],
)
def test_invalid_values_name_the_key(key: str, value: str) -> None:
    with pytest.raises(ConfigError) as excinfo:
        build_config({"gsa.hostname": "gsa", key: value})

    assert key in str(excinfo.value)


def test_unknown_keys_are_kept_as_extra() -> None:
    config = build_config({"gsa.hostname": "gsa", "adaptor.fullListingSchedule": "0 3 * * *", "other": "x"})

    assert config.extra == {"adaptor.fullListingSchedule": "0 3 * * *", "other": "x"}
    assert config.values_with_prefix("adaptor.") == {"fullListingSchedule": "0 3 * * *"}


def test_load_config_layers_file_env_and_overrides(tmp_path) -> None:
    properties = tmp_path / "adaptor-config.properties"
    properties.write_text("gsa.hostname=file-gsa\nserver.port=7000\nserver.secure=true\n", encoding="utf-8")
    secret = tmp_path / "port"
    secret.write_text("7100\n", encoding="utf-8")
    env = {
        "ADAPTOR_GSA_HOSTNAME": "env-gsa",
        "ADAPTOR_SERVER_PORT_FILE": str(secret),
        "ADAPTOR_SESSION_COOKIE_NAME": "adaptor",
    }

    config = load_config(properties, env=env, overrides={"gsa.hostname": "cli-gsa"})

    assert config.gsa_hostname == "cli-gsa"
    assert config.server_port == 7100
    assert config.server_secure is True
    assert config.session_cookie_name == "adaptor"


def test_load_config_reports_unreadable_file(tmp_path) -> None:
    with pytest.raises(ConfigError):
        load_config(tmp_path / "missing.properties", env={})


def test_env_file_reference_must_exist(tmp_path) -> None:
    with pytest.raises(ConfigError):
        load_config(env={"ADAPTOR_GSA_HOSTNAME_FILE": str(tmp_path / "nope")})


def test_parse_overrides_splits_arguments() -> None:
    overrides, remaining = parse_overrides(["-Dgsa.hostname=gsa", "config.properties", "-Dserver.port=81", "-v"])

    assert overrides == {"gsa.hostname": "gsa", "server.port": "81"}
    assert remaining == ["config.properties", "-v"]
    with pytest.raises(ConfigError):
        parse_overrides(["-Dbroken"])


def test_metadata_from_config() -> None:
    config = AdaptorConfig(gsa_hostname="gsa", server_hostname="adaptor", server_port=5678, server_secure=True)

    metadata = SamlMetadata.from_config(config)

    assert metadata.local.assertion_consumer_service_url == "https://adaptor:5678/samlassertionconsumer"
    assert metadata.peer.artifact_resolution_url == "https://gsa/security-manager/samlartifact"
