import argparse

from rproxy import log


def rproxy() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rproxy",
        usage="%(prog)s [options]",
        description="A reverse proxy relay with optional mutually authenticated TLS on either side.",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="show version number and exit",
        dest="version",
    )
    parser.add_argument(
        "--config",
        type=str,
        dest="config",
        metavar="PATH",
        help="""
            Read settings from a YAML file. Command-line options take precedence
            over settings in the file.
        """,
    )
    parser.add_argument(
        "-q", "--quiet", action="store_true", dest="quiet", help="Quiet."
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_const",
        dest="verbose",
        const="debug",
        help="Increase log verbosity.",
    )
    parser.add_argument(
        "--verbosity",
        type=str,
        dest="verbosity",
        choices=log.LogLevels,
        default="info",
        help="Log verbosity.",
    )

    group = parser.add_argument_group("Relay Options")
    group.add_argument(
        "-l",
        "--listen",
        type=str,
        dest="listen",
        metavar="[SCHEME://]HOST:PORT",
        help="""
            Address to listen on, e.g. tls://0.0.0.0:9000.
            The scheme (tcp or tls) can also be given with --listen-proto.
        """,
    )
    group.add_argument(
        "--listen-proto",
        type=str,
        dest="listen_proto",
        metavar="PROTO",
        help="Transport on the listen side: tcp or tls.",
    )
    group.add_argument(
        "-b",
        "--backend",
        type=str,
        dest="backend",
        metavar="[SCHEME://]HOST:PORT",
        help="""
            Backend address to relay to, e.g. tcp://127.0.0.1:9001.
            The scheme (tcp or tls) can also be given with --backend-proto.
        """,
    )
    group.add_argument(
        "--backend-proto",
        type=str,
        dest="backend_proto",
        metavar="PROTO",
        help="Transport on the backend side: tcp or tls.",
    )
    group.add_argument(
        "--connect-timeout",
        type=float,
        dest="connect_timeout",
        metavar="SECONDS",
        help="Timeout for connecting to the backend. Default: 30.",
    )

    group = parser.add_argument_group("TLS Options")
    group.add_argument(
        "--root-cert",
        type=str,
        dest="root_cert",
        metavar="PATH",
        help="PEM root certificate used to verify clients and the backend.",
    )
    group.add_argument(
        "--server-cert",
        type=str,
        dest="server_cert",
        metavar="PATH",
        help="PEM certificate (chain) presented to clients on a tls listen side.",
    )
    group.add_argument(
        "--server-key",
        type=str,
        dest="server_key",
        metavar="PATH",
        help="PEM private key for --server-cert.",
    )
    group.add_argument(
        "--client-cert",
        type=str,
        dest="client_cert",
        metavar="PATH",
        help="PEM certificate (chain) presented to a tls backend.",
    )
    group.add_argument(
        "--client-key",
        type=str,
        dest="client_key",
        metavar="PATH",
        help="PEM private key for --client-cert.",
    )
    group.add_argument(
        "--backend-server-name",
        type=str,
        dest="backend_server_name",
        metavar="NAME",
        help="Name the backend certificate must be valid for. Default: the backend host.",
    )
    return parser
