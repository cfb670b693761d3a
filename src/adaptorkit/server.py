"""Granian integration helpers."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Any, Mapping, Sequence

import msgspec
from granian import Granian

from .application import AdaptorApp
from .config import AdaptorConfig, load_config, parse_overrides

logger = logging.getLogger(__name__)

_CURRENT_APP: AdaptorApp | None = None


def _register_current_app(app: AdaptorApp) -> None:
    global _CURRENT_APP
    _CURRENT_APP = app


def _clear_current_app() -> None:
    global _CURRENT_APP
    _CURRENT_APP = None


def _current_app_loader() -> AdaptorApp:
    """Return the application registered for the current process."""

    if _CURRENT_APP is None:
        raise RuntimeError("no adaptor application registered for Granian")
    return _CURRENT_APP


class ServerConfig(msgspec.Struct, frozen=True):
    host: str = "0.0.0.0"
    port: int = 5678
    interface: str = "asgi"
    loop: str = "auto"
    workers: int = 1
    certificate_path: str | Path | None = None
    private_key_path: str | Path | None = None

    @classmethod
    def from_adaptor_config(cls, config: AdaptorConfig) -> "ServerConfig":
        """Bind to ``server.port`` and pick TLS assets from ``server.tls.*`` settings."""

        tls = config.values_with_prefix("server.tls.")
        return cls(
            port=config.server_port,
            certificate_path=tls.get("certificate") or None,
            private_key_path=tls.get("privateKey") or None,
        )


def _granian_kwargs(cfg: ServerConfig, *, secure: bool) -> Mapping[str, Any]:
    kwargs: dict[str, Any] = {
        "address": cfg.host,
        "port": cfg.port,
        "interface": cfg.interface,
        "loop": cfg.loop,
        "workers": cfg.workers,
    }
    if cfg.certificate_path is None or cfg.private_key_path is None:
        if secure:
            raise RuntimeError("server.secure requires server.tls.certificate and server.tls.privateKey")
        return kwargs
    certificate = Path(cfg.certificate_path)
    key = Path(cfg.private_key_path)
    missing = [str(path) for path in (certificate, key) if not path.exists()]
    if missing:
        raise RuntimeError(f"TLS assets not found: {', '.join(missing)}")
    kwargs["ssl_cert"] = certificate
    kwargs["ssl_key"] = key
    return kwargs


def create_server(app: AdaptorApp, config: ServerConfig | None = None) -> Granian:
    cfg = config or ServerConfig.from_adaptor_config(app.config)
    _register_current_app(app)
    try:
        kwargs = _granian_kwargs(cfg, secure=app.config.server_secure)
        return Granian("adaptorkit.server:_current_app_loader", **kwargs)
    except Exception:
        _clear_current_app()
        raise


def run(app: AdaptorApp, config: ServerConfig | None = None) -> None:
    server = create_server(app, config)
    logger.info("serving %s", app.config.server_base_uri)
    try:
        server.serve(target_loader=_current_app_loader, wrap_loader=False)
    finally:
        _clear_current_app()


def main(argv: Sequence[str] | None = None) -> int:
    """Load configuration from ``-D`` overrides, the environment and a file, then serve."""

    overrides, remaining = parse_overrides(sys.argv[1:] if argv is None else argv)
    path = remaining[0] if remaining else None
    logging.basicConfig(level=logging.INFO)
    config = load_config(path, overrides=overrides)
    run(AdaptorApp(config))
    return 0


__all__ = ["ServerConfig", "create_server", "main", "run"]
