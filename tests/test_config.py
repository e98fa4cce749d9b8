import pytest

from phantom.config import (
    Config,
    ConfigError,
    default_config,
    from_dict,
    load,
    parse_port,
)


def _valid() -> Config:
    cfg = default_config()
    cfg.psk = "placeholder"
    return cfg


def test_defaults_match_documented_values():
    cfg = default_config()
    assert cfg.listen == ":54321"
    assert cfg.time_window == 30
    assert cfg.mode == "auto"
    assert cfg.switcher.priority == ["ebpf", "faketcp", "udp", "websocket"]
    assert cfg.metrics.listen == ":9100"
    assert cfg.faketcp.listen == ":54322"
    assert cfg.websocket.path == "/ws"
    assert cfg.ebpf.xdp_mode == "generic"
    assert cfg.tunnel.local_addr == "127.0.0.1"


def test_default_priority_lists_are_independent():
    a = default_config()
    b = default_config()
    a.switcher.priority.append("extra")
    assert b.switcher.priority == ["ebpf", "faketcp", "udp", "websocket"]


@pytest.mark.parametrize(
    "addr, port",
    [(":54321", 54321), ("127.0.0.1:8080", 8080), ("[::1]:443", 443), ("9000", 9000)],
)
def test_parse_port(addr, port):
    assert parse_port(addr) == port


@pytest.mark.parametrize("addr", ["abc", "host:", "a:b:c", "", ":x"])
def test_parse_port_rejects_garbage(addr):
    with pytest.raises(ConfigError):
        parse_port(addr)


def test_listen_port_falls_back_to_zero():
    cfg = _valid()
    cfg.listen = "nonsense"
    assert cfg.listen_port == 0
    cfg.listen = "0.0.0.0:7000"
    assert cfg.listen_port == 7000


def test_valid_config_passes():
    cfg = _valid()
    cfg.validate()
    assert cfg.psk == "placeholder"


def test_empty_psk_rejected():
    with pytest.raises(ConfigError, match="psk"):
        default_config().validate()


@pytest.mark.parametrize("window", [0, 301])
def test_time_window_range(window):
    cfg = _valid()
    cfg.time_window = window
    with pytest.raises(ConfigError, match="time_window"):
        cfg.validate()


def test_bad_listen_port():
    cfg = _valid()
    cfg.listen = "bad"
    with pytest.raises(ConfigError, match="listen"):
        cfg.validate()


def test_faketcp_port_conflict():
    cfg = _valid()
    cfg.faketcp.enabled = True
    cfg.faketcp.listen = ":54321"
    with pytest.raises(ConfigError, match="faketcp"):
        cfg.validate()


def test_websocket_conflicts_with_faketcp():
    cfg = _valid()
    cfg.faketcp.enabled = True
    cfg.websocket.enabled = True
    cfg.websocket.listen = cfg.faketcp.listen
    with pytest.raises(ConfigError, match="websocket"):
        cfg.validate()


def test_disabled_sections_do_not_conflict():
    cfg = _valid()
    cfg.faketcp.listen = ":54321"
    cfg.websocket.listen = ":54321"
    cfg.validate()
    assert cfg.faketcp.enabled is False


def test_metrics_port_conflict():
    cfg = _valid()
    cfg.metrics.listen = "127.0.0.1:54321"
    with pytest.raises(ConfigError, match="metrics"):
        cfg.validate()


def test_tunnel_local_port_must_match():
    cfg = _valid()
    cfg.tunnel.enabled = True
    cfg.tunnel.local_port = 1234
    with pytest.raises(ConfigError, match="tunnel.local_port"):
        cfg.validate()
    cfg.tunnel.local_port = 54321
    cfg.validate()
    assert cfg.tunnel.local_port == 54321


@pytest.mark.parametrize("size", [15, 4097])
def test_arq_window_size_range(size):
    cfg = _valid()
    cfg.arq.window_size = size
    with pytest.raises(ConfigError, match="window_size"):
        cfg.validate()


@pytest.mark.parametrize("retries", [0, 51])
def test_arq_max_retries_range(retries):
    cfg = _valid()
    cfg.arq.max_retries = retries
    with pytest.raises(ConfigError, match="max_retries"):
        cfg.validate()


def test_arq_limits_ignored_when_disabled():
    cfg = _valid()
    cfg.arq.enabled = False
    cfg.arq.window_size = 1
    cfg.validate()
    assert cfg.arq.window_size == 1


def test_priority_must_not_contain_arq():
    cfg = _valid()
    cfg.switcher.priority = ["udp", "ARQ"]
    with pytest.raises(ConfigError, match="arq"):
        cfg.validate()


def test_sync_related_fills_tunnel_and_ebpf_settings():
    cfg = _valid()
    cfg.tunnel.enabled = True
    cfg.tunnel.local_addr = ""
    cfg.ebpf.enabled = True
    cfg.ebpf.tc_faketcp = True
    cfg.ebpf.interface = "eth0"
    cfg.sync_related()
    assert cfg.tunnel.local_port == 54321
    assert cfg.tunnel.local_addr == "127.0.0.1"
    assert cfg.faketcp.use_ebpf is True
    assert cfg.faketcp.interface == "eth0"


def test_sync_related_keeps_explicit_interface():
    cfg = _valid()
    cfg.ebpf.interface = "eth0"
    cfg.faketcp.interface = "eth1"
    cfg.sync_related()
    assert cfg.faketcp.interface == "eth1"
    assert cfg.tunnel.local_port == 0


def test_from_dict_merges_over_defaults():
    cfg = from_dict(
        {
            "psk": "placeholder",
            "listen": ":6000",
            "arq": {"window_size": 64},
            "tunnel": {"duckdns": {"token": "token"}},
            "unknown_key": 1,
        }
    )
    assert cfg.listen == ":6000"
    assert cfg.arq.window_size == 64
    assert cfg.arq.max_retries == 10
    assert cfg.tunnel.duckdns.token == "token"
    assert cfg.hysteria2.loss_threshold == 0.1


def test_from_dict_none_gives_defaults():
    assert from_dict(None) == default_config()


def test_from_dict_type_errors():
    with pytest.raises(ConfigError):
        from_dict({"time_window": "lots"})
    with pytest.raises(ConfigError):
        from_dict({"arq": "yes"})
    with pytest.raises(ConfigError):
        from_dict({"faketcp": {"sequence_id": -1}})
    with pytest.raises(ConfigError):
        from_dict(["not", "a", "mapping"])


def test_from_dict_null_resets_scalar():
    cfg = from_dict({"switcher": {"priority": None}, "mode": None})
    assert cfg.switcher.priority == []
    assert cfg.mode == ""


def test_load_round_trip(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "psk: placeholder\n"
        "listen: \":7000\"\n"
        "tunnel:\n"
        "  enabled: true\n"
        "faketcp:\n"
        "  enabled: true\n"
        "  listen: \":7001\"\n",
        encoding="utf-8",
    )
    cfg = load(path)
    assert cfg.listen_port == 7000
    assert cfg.tunnel.local_port == 7000
    assert cfg.faketcp.enabled is True


def test_load_missing_file(tmp_path):
    with pytest.raises(ConfigError):
        load(tmp_path / "absent.yaml")


def test_load_invalid_yaml(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("psk: [unclosed\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load(path)


def test_load_runs_validation(tmp_path):
    path = tmp_path / "nopsk.yaml"
    path.write_text("listen: \":7000\"\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="psk"):
        load(path)