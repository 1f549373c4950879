import uuid

import pytest

from panelnode.config import CertConfig, Config, FallBackConfig
from panelnode.inbound import (
    BuildError,
    CertProvider,
    build_inbound,
    build_trojan_fallbacks,
    build_vless_fallbacks,
    get_cert_file,
    network_type,
)
from panelnode.models import NodeInfo


class FakeProvider(CertProvider):
    def __init__(self):
        self.calls = []

    def dns_cert(self, domain, email, provider, dns_env):
        self.calls.append(("dns", domain, email, provider, dict(dns_env)))
        return f"/certs/{domain}.crt", f"/certs/{domain}.key"

    def http_cert(self, domain, email):
        self.calls.append(("http", domain, email))
        return f"/certs/{domain}.crt", f"/certs/{domain}.key"

    def renew_cert(self, domain, email, mode, provider, dns_env):
        self.calls.append(("renew", domain, mode))
        return f"/certs/{domain}.crt", f"/certs/{domain}.key"


def _node(**kwargs):
    base = dict(
        node_type="V2ray",
        node_id=1,
        port=1145,
        speed_limit=0,
        alter_id=2,
        transport_protocol="ws",
        host="test.test.tk",
        path="v2ray",
        enable_tls=False,
        tls_type="tls",
    )
    base.update(kwargs)
    return NodeInfo(**base)


def _dns_cert_config():
    return CertConfig(
        cert_mode="dns",
        cert_domain="trojan.test.tk",
        provider="alidns",
        email="node@example.com",
        dns_env={"ALICLOUD_ACCESS_KEY": "placeholder", "ALICLOUD_SECRET_KEY": "secret"},
    )


def test_build_v2ray():
    config = Config(
        cert_config=CertConfig(
            cert_mode="http",
            cert_domain="test.test.tk",
            provider="alidns",
            email="node@example.com",
        )
    )
    inbound = build_inbound(config, _node(), "V2ray__1145")
    assert inbound["protocol"] == "vmess"
    assert inbound["port"] == 1145
    assert inbound["tag"] == "V2ray__1145"
    stream = inbound["streamSettings"]
    assert stream["network"] == "websocket"
    assert stream["wsSettings"]["path"] == "v2ray"
    assert stream["wsSettings"]["headers"] == {"Host": "test.test.tk"}
    assert "security" not in stream
    assert "listen" not in inbound


def test_build_trojan():
    node = _node(node_type="Trojan", transport_protocol="tcp", host="trojan.test.tk")
    config = Config(cert_config=_dns_cert_config())
    inbound = build_inbound(config, node, "t")
    assert inbound["protocol"] == "trojan"
    assert inbound["settings"] == {}
    assert inbound["streamSettings"]["network"] == "tcp"
    assert inbound["streamSettings"]["tcpSettings"] == {"acceptProxyProtocol": False}


def test_build_ss():
    node = _node(node_type="Shadowsocks", transport_protocol="tcp")
    config = Config(cert_config=_dns_cert_config())
    inbound = build_inbound(config, node, "ss")
    assert inbound["protocol"] == "shadowsocks"
    settings = inbound["settings"]
    assert settings["network"] == ["tcp", "udp"]
    assert settings["ivCheck"] is True
    (client,) = settings["clients"]
    assert client["method"] == "aes-128-gcm"
    assert str(uuid.UUID(client["password"])) == client["password"]


def test_ss_default_passwords_are_random():
    node = _node(node_type="Shadowsocks", transport_protocol="tcp")
    first = build_inbound(Config(), node, "a")["settings"]["clients"][0]["password"]
    second = build_inbound(Config(), node, "a")["settings"]["clients"][0]["password"]
    assert first != second
    assert len(first) == 36


def test_disable_iv_check_and_sniffing():
    node = _node(node_type="Shadowsocks", transport_protocol="tcp")
    inbound = build_inbound(Config(disable_iv_check=True, disable_sniffing=True), node, "a")
    assert inbound["settings"]["ivCheck"] is False
    assert inbound["sniffing"] == {"enabled": False, "destOverride": ["http", "tls"]}


def test_ss_plugin_listens_on_loopback():
    node = _node(node_type="Shadowsocks-Plugin", transport_protocol="tcp")
    inbound = build_inbound(Config(listen_ip="0.0.0.0"), node, "a")
    assert inbound["listen"] == "127.0.0.1"


def test_listen_ip_is_used():
    inbound = build_inbound(Config(listen_ip="0.0.0.0"), _node(), "a")
    assert inbound["listen"] == "0.0.0.0"


def test_listen_on_domain_is_rejected():
    with pytest.raises(BuildError):
        build_inbound(Config(listen_ip="example.com"), _node(), "a")


def test_dokodemo_door_settings():
    node = _node(node_type="dokodemo-door", transport_protocol="ws")
    inbound = build_inbound(Config(), node, "d")
    assert inbound["protocol"] == "dokodemo-door"
    assert inbound["settings"] == {"address": "v1.mux.cool", "network": ["tcp", "udp"]}


def test_unsupported_node_type():
    with pytest.raises(BuildError, match="Unsupported node type: Foo"):
        build_inbound(Config(), _node(node_type="Foo"), "a")


def test_vless_without_fallback():
    inbound = build_inbound(Config(), _node(enable_vless=True), "a")
    assert inbound["protocol"] == "vless"
    assert inbound["settings"] == {"decryption": "none"}


def test_vless_fallback_requires_configs():
    with pytest.raises(BuildError, match="FallBackConfigs"):
        build_inbound(Config(enable_fallback=True), _node(enable_vless=True), "a")


def test_trojan_with_fallbacks():
    config = Config(
        enable_fallback=True,
        fallback_configs=[FallBackConfig(sni="a.example.com", dest="80", proxy_protocol_ver=1)],
    )
    inbound = build_inbound(config, _node(node_type="Trojan", transport_protocol="tcp"), "a")
    assert inbound["settings"]["fallbacks"] == [
        {"name": "a.example.com", "alpn": "", "path": "", "dest": "80", "xver": 1}
    ]


def test_fallback_dest_required():
    with pytest.raises(BuildError, match="Dest is required"):
        build_vless_fallbacks([FallBackConfig(sni="x")])
    with pytest.raises(BuildError):
        build_trojan_fallbacks(None)


def test_empty_fallback_list():
    assert build_vless_fallbacks([]) == []


@pytest.mark.parametrize(
    "alias, expected",
    [
        ("tcp", "tcp"),
        ("ws", "websocket"),
        ("WebSocket", "websocket"),
        ("h2", "http"),
        ("kcp", "mkcp"),
        ("gun", "grpc"),
        ("grpc", "grpc"),
        ("quic", "quic"),
    ],
)
def test_network_type(alias, expected):
    assert network_type(alias) == expected


def test_unknown_network_type():
    with pytest.raises(BuildError, match="convert TransportProtocol failed"):
        network_type("carrier-pigeon")
    with pytest.raises(BuildError):
        build_inbound(Config(), _node(transport_protocol="carrier-pigeon"), "a")


def test_http_and_grpc_stream_settings():
    http = build_inbound(Config(), _node(transport_protocol="http"), "a")["streamSettings"]
    assert http["httpSettings"] == {"host": ["test.test.tk"], "path": "v2ray"}
    grpc = build_inbound(
        Config(), _node(transport_protocol="grpc", service_name="svc"), "a"
    )["streamSettings"]
    assert grpc["grpcSettings"] == {"serviceName": "svc"}


def test_proxy_protocol_sockopt():
    config = Config(enable_proxy_protocol=True)
    tcp = build_inbound(config, _node(transport_protocol="tcp"), "a")["streamSettings"]
    assert "sockopt" not in tcp
    assert tcp["tcpSettings"]["acceptProxyProtocol"] is True
    grpc = build_inbound(config, _node(transport_protocol="grpc"), "a")["streamSettings"]
    assert grpc["sockopt"] == {"acceptProxyProtocol": True}
    ws = build_inbound(config, _node(transport_protocol="ws"), "a")["streamSettings"]
    assert ws["sockopt"] == {"acceptProxyProtocol": True}


def test_tls_with_file_certificate():
    config = Config(
        cert_config=CertConfig(
            cert_mode="file", cert_file="/c.crt", key_file="/c.key", reject_unknown_sni=True
        )
    )
    stream = build_inbound(config, _node(enable_tls=True), "a")["streamSettings"]
    assert stream["security"] == "tls"
    assert stream["tlsSettings"] == {
        "rejectUnknownSni": True,
        "certificates": [{"certificateFile": "/c.crt", "keyFile": "/c.key", "ocspStapling": 3600}],
    }


def test_xtls_with_dns_certificate():
    provider = FakeProvider()
    config = Config(cert_config=_dns_cert_config())
    node = _node(enable_tls=True, tls_type="xtls", transport_protocol="tcp")
    stream = build_inbound(config, node, "a", provider)["streamSettings"]
    assert stream["security"] == "xtls"
    cert = stream["xtlsSettings"]["certificates"][0]
    assert cert["certificateFile"] == "/certs/trojan.test.tk.crt"
    assert provider.calls[0][0] == "dns"
    assert provider.calls[0][4]["ALICLOUD_ACCESS_KEY"] == "placeholder"


def test_tls_with_cert_mode_none_has_no_security():
    config = Config(cert_config=CertConfig(cert_mode="none"))
    stream = build_inbound(config, _node(enable_tls=True), "a")["streamSettings"]
    assert "security" not in stream


def test_get_cert_file_file_mode():
    cert = CertConfig(cert_mode="file", cert_file="/a", key_file="/b")
    assert get_cert_file(cert) == ("/a", "/b")
    with pytest.raises(BuildError, match="not exist"):
        get_cert_file(CertConfig(cert_mode="file", cert_file="/a"))


def test_get_cert_file_http_mode():
    provider = FakeProvider()
    cert = CertConfig(cert_mode="http", cert_domain="test.test.tk", email="node@example.com")
    assert get_cert_file(cert, provider) == ("/certs/test.test.tk.crt", "/certs/test.test.tk.key")
    assert provider.calls == [("http", "test.test.tk", "node@example.com")]


def test_get_cert_file_errors():
    with pytest.raises(BuildError, match="Unsupported certmode: bogus"):
        get_cert_file(CertConfig(cert_mode="bogus"))
    with pytest.raises(BuildError):
        get_cert_file(CertConfig(cert_mode="dns"))