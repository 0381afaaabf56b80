"""
The proxy configuration: which transport each side speaks, where to listen,
where the backend is, and which certificates to use.

Examples:

    config = ProxyConfig.from_spec(
        "tls", "127.0.0.1:9000", "tcp", "127.0.0.1:9001",
        "certs/root_cert.pem", "certs/server_cert.pem", "certs/server_key.pem",
        "", "",
    )
    assert config.listen_transport is Transport.ENCRYPTED

    Transport.parse("udp")  # StartupConfigError
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

import ruamel.yaml

from rproxy.exceptions import StartupConfigError
from rproxy.net import server_spec
from rproxy.net.server_spec import Address

DEFAULT_CONNECT_TIMEOUT = 30.0


class Transport(Enum):
    PLAIN = "tcp"
    ENCRYPTED = "tls"

    @classmethod
    def parse(cls, value: str | Transport) -> Transport:
        if isinstance(value, Transport):
            return value
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise StartupConfigError(
                f"Unsupported transport {value!r}, expected one of: "
                f"{', '.join(t.value for t in cls)}."
            ) from None


@dataclass(frozen=True, kw_only=True)
class ProxyConfig:
    listen_transport: Transport
    listen_address: Address
    backend_transport: Transport
    backend_address: Address

    root_cert: Path | None = None
    """Root trust anchor, used to verify both front peers and the backend."""
    server_cert: Path | None = None
    """Our identity when accepting TLS connections on the listen side."""
    server_key: Path | None = None
    client_cert: Path | None = None
    """Our identity when connecting to a TLS backend."""
    client_key: Path | None = None

    backend_server_name: str | None = None
    """The identity the backend must prove. Defaults to the backend host."""
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT

    def __post_init__(self) -> None:
        if not isinstance(self.listen_transport, Transport):
            raise StartupConfigError(f"Invalid listen transport: {self.listen_transport!r}")
        if not isinstance(self.backend_transport, Transport):
            raise StartupConfigError(f"Invalid backend transport: {self.backend_transport!r}")
        if self.connect_timeout <= 0:
            raise StartupConfigError(
                f"Connect timeout must be positive, not {self.connect_timeout}."
            )

        if self.listen_transport is Transport.ENCRYPTED:
            self._require(
                "listen",
                root_cert=self.root_cert,
                server_cert=self.server_cert,
                server_key=self.server_key,
            )
        if self.backend_transport is Transport.ENCRYPTED:
            self._require(
                "backend",
                root_cert=self.root_cert,
                client_cert=self.client_cert,
                client_key=self.client_key,
            )

    @staticmethod
    def _require(side: str, **paths: Path | None) -> None:
        if missing := [name for name, path in paths.items() if path is None]:
            raise StartupConfigError(
                f"TLS on the {side} side requires {', '.join(missing)}."
            )

    @property
    def server_name(self) -> str:
        return self.backend_server_name or self.backend_address[0]

    @classmethod
    def from_spec(
        cls,
        listen_proto: str,
        listen_addr: str | Address,
        backend_proto: str,
        backend_addr: str | Address,
        root_cert: str | None,
        server_cert: str | None,
        server_key: str | None,
        client_cert: str | None,
        client_key: str | None,
        **kwargs: Any,
    ) -> ProxyConfig:
        """
        Build a configuration from plain strings, as they come from the command line.
        Addresses may also be given as already parsed `(host, port)` tuples.
        Empty paths count as "not given".
        """

        def address(addr: str | Address) -> Address:
            if isinstance(addr, tuple):
                return addr
            try:
                return server_spec.parse_address(str(addr))
            except ValueError as e:
                raise StartupConfigError(str(e)) from e

        def path(p: str | None) -> Path | None:
            if p:
                return Path(p).expanduser()
            return None

        return cls(
            listen_transport=Transport.parse(listen_proto),
            listen_address=address(listen_addr),
            backend_transport=Transport.parse(backend_proto),
            backend_address=address(backend_addr),
            root_cert=path(root_cert),
            server_cert=path(server_cert),
            server_key=path(server_key),
            client_cert=path(client_cert),
            client_key=path(client_key),
            **kwargs,
        )


CONFIG_KEYS = (
    "listen_proto",
    "listen_addr",
    "backend_proto",
    "backend_addr",
    "root_cert",
    "server_cert",
    "server_key",
    "client_cert",
    "client_key",
    "backend_server_name",
    "connect_timeout",
)


def parse(text: str) -> dict[str, Any]:
    """
    Parse a YAML configuration document into a dict of settings.

    *Raises:*
     - StartupConfigError, if the document is not valid YAML, not a mapping,
       or contains unknown keys.
    """
    if not text:
        return {}
    try:
        yaml = ruamel.yaml.YAML(typ="safe", pure=True)
        data = yaml.load(text)
    except ruamel.yaml.error.YAMLError as v:
        if hasattr(v, "problem_mark"):
            snip = v.problem_mark.get_snippet()
            raise StartupConfigError(
                "Config error at line %s:\n%s\n%s"
                % (v.problem_mark.line + 1, snip, getattr(v, "problem", ""))
            )
        else:
            raise StartupConfigError("Could not parse config.")
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise StartupConfigError("Config error - no keys found.")
    if unknown := sorted(set(data) - set(CONFIG_KEYS)):
        raise StartupConfigError(f"Unknown config keys: {', '.join(map(str, unknown))}")
    return data


def load_path(path: Path | str) -> dict[str, Any]:
    """
    Load settings from a YAML file. Relative certificate paths are resolved
    against the directory the file lives in.
    """
    p = Path(path).expanduser()
    try:
        txt = p.read_text(encoding="utf8")
    except (OSError, UnicodeDecodeError) as e:
        raise StartupConfigError(f"Error reading {p}: {e}") from e
    try:
        data = parse(txt)
    except StartupConfigError as e:
        raise StartupConfigError(f"Error reading {p}: {e}") from e

    for key in ("root_cert", "server_cert", "server_key", "client_cert", "client_key"):
        if data.get(key):
            data[key] = str(p.absolute().parent / Path(data[key]).expanduser())
    return data


def from_settings(settings: dict[str, Any]) -> ProxyConfig:
    """Build a ProxyConfig from a dict as returned by `load_path`, plus command-line overrides."""
    try:
        listen_proto = settings["listen_proto"]
        listen_addr = settings["listen_addr"]
        backend_proto = settings["backend_proto"]
        backend_addr = settings["backend_addr"]
    except KeyError as e:
        raise StartupConfigError(f"Missing required setting: {e.args[0]}") from None

    kwargs: dict[str, Any] = {}
    if settings.get("backend_server_name"):
        kwargs["backend_server_name"] = str(settings["backend_server_name"])
    if settings.get("connect_timeout") is not None:
        try:
            kwargs["connect_timeout"] = float(settings["connect_timeout"])
        except (TypeError, ValueError):
            raise StartupConfigError(
                f"Invalid connect timeout: {settings['connect_timeout']!r}"
            ) from None

    return ProxyConfig.from_spec(
        str(listen_proto),
        listen_addr,
        str(backend_proto),
        backend_addr,
        settings.get("root_cert"),
        settings.get("server_cert"),
        settings.get("server_key"),
        settings.get("client_cert"),
        settings.get("client_key"),
        **kwargs,
    )
