from rproxy.tools import cmdline


def test_rproxy():
    parser = cmdline.rproxy()
    args = parser.parse_args(
        [
            "--listen",
            "tls://0.0.0.0:23001",
            "--backend",
            "127.0.0.1:23002",
            "--backend-proto",
            "tcp",
            "--root-cert",
            "certs/root_cert.pem",
            "--connect-timeout",
            "5",
            "-q",
        ]
    )
    assert args.listen == "tls://0.0.0.0:23001"
    assert args.backend == "127.0.0.1:23002"
    assert args.backend_proto == "tcp"
    assert args.root_cert == "certs/root_cert.pem"
    assert args.connect_timeout == 5.0
    assert args.quiet
    assert args.client_cert is None
    assert args.verbosity == "info"
