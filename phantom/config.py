"""Server configuration: defaults, YAML loading, validation and derived settings."""

import dataclasses
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Union, get_args, get_origin

import yaml

_INT_RE = re.compile(r"[+-]?[0-9]+")
_UINT32_MAX = 0xFFFFFFFF


class ConfigError(ValueError):
    """Raised when a configuration cannot be read, parsed or validated."""


@dataclass
class ARQConfig:
    """Reliability layer on top of UDP (not a transport mode of its own)."""

    enabled: bool = True
    window_size: int = 256
    max_retries: int = 10
    rto_min_ms: int = 100
    rto_max_ms: int = 10000
    enable_sack: bool = True
    enable_timestamp: bool = True


@dataclass
class MetricsConfig:
    enabled: bool = True
    listen: str = ":9100"
    path: str = "/metrics"
    health_path: str = "/health"
    enable_pprof: bool = False


@dataclass
class Hysteria2Config:
    enabled: bool = True
    up_mbps: int = 100
    down_mbps: int = 100
    disable_mtu: bool = False
    initial_window: int = 32
    max_window: int = 512
    min_rtt_ms: int = 20
    max_rtt_ms: int = 500
    loss_threshold: float = 0.1


@dataclass
class FakeTCPConfig:
    enabled: bool = False
    listen: str = ":54322"
    interface: str = ""
    sequence_id: int = field(default=0, metadata={"uint32": True})
    use_ebpf: bool = False


@dataclass
class WebSocketConfig:
    enabled: bool = False
    listen: str = ":54323"
    path: str = "/ws"
    host: str = ""
    tls: bool = False
    cert_file: str = ""
    key_file: str = ""
    cdn: bool = False


@dataclass
class EBPFConfig:
    enabled: bool = False
    interface: str = ""
    xdp_mode: str = "generic"
    program_path: str = ""
    map_size: int = 65536
    enable_stats: bool = False
    enable_tc: bool = False
    tc_faketcp: bool = False


def _default_priority() -> list[str]:
    return ["ebpf", "faketcp", "udp", "websocket"]


@dataclass
class SwitcherConfig:
    enabled: bool = True
    check_interval_ms: int = 1000
    fail_threshold: int = 3
    recover_threshold: int = 5
    rtt_threshold_ms: int = 300
    loss_threshold: float = 0.3
    priority: list[str] = field(default_factory=_default_priority)


@dataclass
class DuckDNSConfig:
    token: str = ""
    domains: str = ""


@dataclass
class FreeDNSConfig:
    token: str = ""
    domain: str = ""


@dataclass
class LetsEncryptConfig:
    email: str = ""
    staging: bool = False
    dns_provider: str = ""
    dns_token: str = ""


@dataclass
class TunnelConfig:
    enabled: bool = False
    mode: str = "temp"
    domain_mode: str = "auto"
    domain: str = ""
    subdomain: str = ""

    cert_mode: str = "auto"
    cert_file: str = ""
    key_file: str = ""

    cf_token: str = ""
    cf_tunnel_id: str = ""

    duckdns: DuckDNSConfig = field(default_factory=DuckDNSConfig)
    freedns: FreeDNSConfig = field(default_factory=FreeDNSConfig)
    letsencrypt: LetsEncryptConfig = field(default_factory=LetsEncryptConfig)

    local_addr: str = "127.0.0.1"
    local_port: int = 0
    protocol: str = "http"
    no_tls_verify: bool = False
    metrics: str = ""
    log_level: str = "info"


@dataclass
class Config:
    """Top-level server configuration."""

    listen: str = ":54321"
    psk: str = ""
    time_window: int = 30
    log_level: str = "info"
    mode: str = "auto"

    tunnel: TunnelConfig = field(default_factory=TunnelConfig)
    hysteria2: Hysteria2Config = field(default_factory=Hysteria2Config)
    faketcp: FakeTCPConfig = field(default_factory=FakeTCPConfig)
    websocket: WebSocketConfig = field(default_factory=WebSocketConfig)
    ebpf: EBPFConfig = field(default_factory=EBPFConfig)
    switcher: SwitcherConfig = field(default_factory=SwitcherConfig)
    metrics: MetricsConfig = field(default_factory=MetricsConfig)
    arq: ARQConfig = field(default_factory=ARQConfig)

    def validate(self) -> None:
        """Check values and port conflicts; raise ConfigError on the first problem."""
        if not self.psk:
            raise ConfigError("psk must not be empty")
        if not 1 <= self.time_window <= 300:
            raise ConfigError("time_window must be between 1 and 300")

        main_port = _port_of("listen", self.listen)
        ports: dict[int, str] = {main_port: "listen"}

        for name, section in (("faketcp", self.faketcp), ("websocket", self.websocket)):
            if section.enabled:
                port = _port_of(f"{name}.listen", section.listen)
                _check_conflict(name, port, ports)
                ports[port] = name

        if self.metrics.enabled:
            port = _port_of("metrics.listen", self.metrics.listen)
            _check_conflict("metrics", port, ports)

        if self.tunnel.enabled and self.tunnel.local_port not in (0, main_port):
            raise ConfigError(
                f"tunnel.local_port ({self.tunnel.local_port}) must match the listen port "
                f"({main_port}), or be 0 to follow it"
            )

        if self.arq.enabled:
            if not 16 <= self.arq.window_size <= 4096:
                raise ConfigError("arq.window_size must be between 16 and 4096")
            if not 1 <= self.arq.max_retries <= 50:
                raise ConfigError("arq.max_retries must be between 1 and 50")

        if any(mode.lower() == "arq" for mode in self.switcher.priority):
            raise ConfigError(
                "switcher.priority must not contain 'arq': ARQ is a layer over UDP, not a mode"
            )

    def sync_related(self) -> None:
        """Fill settings that follow from other sections."""
        if self.tunnel.enabled:
            if self.tunnel.local_port == 0:
                self.tunnel.local_port = self.listen_port
            if not self.tunnel.local_addr:
                self.tunnel.local_addr = "127.0.0.1"

        if self.ebpf.enabled and self.ebpf.tc_faketcp:
            self.faketcp.use_ebpf = True

        if self.ebpf.interface and not self.faketcp.interface:
            self.faketcp.interface = self.ebpf.interface

    @property
    def listen_port(self) -> int:
        """Port of the main listen address, or 0 when it cannot be parsed."""
        try:
            return parse_port(self.listen)
        except ConfigError:
            return 0


def _port_of(name: str, addr: str) -> int:
    try:
        return parse_port(addr)
    except ConfigError as exc:
        raise ConfigError(f"{name} has an invalid port: {exc}") from exc


def _check_conflict(name: str, port: int, ports: dict[int, str]) -> None:
    existing = ports.get(port)
    if existing is not None:
        raise ConfigError(f"{name}.listen port ({port}) conflicts with {existing}")


def _atoi(text: str) -> int:
    if not _INT_RE.fullmatch(text):
        raise ConfigError(f"invalid number {text!r}")
    return int(text)


def _split_host_port(addr: str) -> tuple[str, str]:
    if addr.startswith("["):
        end = addr.find("]")
        if end < 0:
            raise ConfigError(f"missing ']' in address {addr!r}")
        rest = addr[end + 1 :]
        if not rest.startswith(":"):
            raise ConfigError(f"missing port in address {addr!r}")
        return addr[1:end], rest[1:]
    host, sep, port = addr.rpartition(":")
    if not sep:
        raise ConfigError(f"missing port in address {addr!r}")
    if ":" in host:
        raise ConfigError(f"too many colons in address {addr!r}")
    return host, port


def parse_port(addr: str) -> int:
    """Extract the port from ":port", "host:port", "[v6]:port" or a bare number."""
    if addr.startswith(":"):
        return _atoi(addr[1:])
    try:
        _, port = _split_host_port(addr)
    except ConfigError:
        return _atoi(addr)
    return _atoi(port)


def default_config() -> Config:
    """A configuration holding every default value."""
    return Config()


def _scalar_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _coerce(value: Any, tp: Any, path: str, meta: Mapping[str, Any]) -> Any:
    if tp is bool:
        if isinstance(value, bool):
            return value
    elif tp is int:
        if isinstance(value, int) and not isinstance(value, bool):
            if meta.get("uint32") and not 0 <= value <= _UINT32_MAX:
                raise ConfigError(f"{path}: {value} does not fit an unsigned 32-bit integer")
            return value
    elif tp is float:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
    elif tp is str:
        if isinstance(value, (str, bool, int, float)):
            return value if isinstance(value, str) else _scalar_text(value)
    elif get_origin(tp) is list:
        if isinstance(value, list):
            (item_tp,) = get_args(tp)
            return [_coerce(item, item_tp, f"{path}[{i}]", {}) for i, item in enumerate(value)]
    raise ConfigError(f"{path}: cannot use {value!r} as {getattr(tp, '__name__', tp)}")


def _merge(target: Any, data: Any, path: str) -> None:
    if data is None:
        return
    if not isinstance(data, Mapping):
        raise ConfigError(f"{path or 'config'}: expected a mapping, got {data!r}")
    for f in dataclasses.fields(target):
        if f.name not in data:
            continue
        value = data[f.name]
        tp = f.type
        key = f"{path}.{f.name}" if path else f.name
        if dataclasses.is_dataclass(tp):
            _merge(getattr(target, f.name), value, key)
        elif value is None:
            setattr(target, f.name, (get_origin(tp) or tp)())
        else:
            setattr(target, f.name, _coerce(value, tp, key, f.metadata))


def from_dict(data: Union[Mapping[str, Any], None]) -> Config:
    """Build a configuration by laying ``data`` over the defaults; unknown keys are ignored."""
    cfg = default_config()
    _merge(cfg, data, "")
    return cfg


def load(path: Union[str, Path]) -> Config:
    """Read, validate and complete a YAML configuration file."""
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"failed to read config: {exc}") from exc
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"failed to parse config: {exc}") from exc
    cfg = from_dict(data)
    cfg.validate()
    cfg.sync_related()
    return cfg