import pytest

from rproxy.net import server_spec


@pytest.mark.parametrize(
    "spec,default_scheme,out",
    [
        ("127.0.0.1:9000", "tcp", ("tcp", ("127.0.0.1", 9000))),
        ("127.0.0.1:9000", "tls", ("tls", ("127.0.0.1", 9000))),
        ("tls://127.0.0.1:9000", "tcp", ("tls", ("127.0.0.1", 9000))),
        ("TCP://Example.com:9001/", "tls", ("tcp", ("example.com", 9001))),
        ("[::1]:23001", "tcp", ("tcp", ("::1", 23001))),
        ("tls://[::1]:23001", "tcp", ("tls", ("::1", 23001))),
        (" 0.0.0.0:0 ", "tcp", ("tcp", ("0.0.0.0", 0))),
    ],
)
def test_parse(spec, default_scheme, out):
    assert server_spec.parse(spec, default_scheme) == out


def test_parse_err():
    with pytest.raises(ValueError, match="Invalid server specification"):
        server_spec.parse(":", "tcp")

    with pytest.raises(ValueError, match="Invalid server specification"):
        server_spec.parse("example.com", "tcp")

    with pytest.raises(ValueError, match="Invalid server scheme"):
        server_spec.parse("udp://example.com:53", "tcp")

    with pytest.raises(ValueError, match="Invalid hostname"):
        server_spec.parse("$$$:9000", "tcp")

    with pytest.raises(ValueError, match="Invalid port"):
        server_spec.parse("example.com:999999", "tcp")


def test_parse_address():
    assert server_spec.parse_address("127.0.0.1:9001") == ("127.0.0.1", 9001)
    assert server_spec.parse_address("[::1]:9001") == ("::1", 9001)
    with pytest.raises(ValueError, match="Unexpected scheme"):
        server_spec.parse_address("tls://127.0.0.1:9001")
    with pytest.raises(ValueError, match="Invalid server specification"):
        server_spec.parse_address("127.0.0.1")
