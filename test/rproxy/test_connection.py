from rproxy.connection import Client
from rproxy.connection import ConnectionState
from rproxy.connection import Server


class TestConnection:
    def test_basic(self):
        c = Client(
            peername=("127.0.0.1", 52314),
            sockname=("127.0.0.1", 9000),
            state=ConnectionState.OPEN,
        )
        assert c.connected
        assert not c.tls_established
        c.timestamp_tls_setup = 42
        c.tls_version = "TLSv1.3"
        assert c.tls_established
        assert str(c) == "Client(127.0.0.1:52314, state=open, TLSv1.3)"

        c.state = ConnectionState.CAN_WRITE
        assert not c.connected

    def test_eq(self):
        c = Client(peername=("127.0.0.1", 52314), sockname=("127.0.0.1", 9000))
        c2 = Client(peername=("127.0.0.1", 52314), sockname=("127.0.0.1", 9000))
        assert c == c
        assert c != c2
        assert c != 42
        assert hash(c) != hash(c2)
        assert c.timestamp_start


class TestServer:
    def test_str(self):
        s = Server(address=("example.com", 9001))
        assert str(s) == "Server(example.com:9001, state=closed)"

        s.peername = ("10.0.0.1", 9001)
        s.state = ConnectionState.OPEN
        assert str(s) == "Server(example.com:9001 (10.0.0.1:9001), state=open)"

        s = Server(address=("::1", 9001))
        assert str(s) == "Server([::1]:9001, state=closed)"
