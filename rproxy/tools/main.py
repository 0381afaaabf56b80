from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from collections.abc import Sequence
from typing import Any

from rproxy import exceptions
from rproxy import log
from rproxy.net import server_spec
from rproxy.proxy import config
from rproxy.proxy.supervisor import Proxy
from rproxy.tools import cmdline
from rproxy.utils import debug

SETTINGS_FROM_ARGS = (
    "listen_proto",
    "backend_proto",
    "root_cert",
    "server_cert",
    "server_key",
    "client_cert",
    "client_key",
    "backend_server_name",
    "connect_timeout",
)


def process_options(args: argparse.Namespace) -> dict[str, Any]:
    """
    Merge the config file (if any) and the command line into one settings dict.
    Command-line values take precedence.
    """
    settings: dict[str, Any] = {}
    if args.config:
        settings.update(config.load_path(args.config))

    for side in ("listen", "backend"):
        spec = getattr(args, side)
        if spec is not None:
            # Without a scheme, keep the transport from the config file.
            default = str(settings.get(f"{side}_proto", "tcp")).strip().lower()
            try:
                scheme, address = server_spec.parse(spec, default)  # type: ignore
            except ValueError as e:
                raise exceptions.StartupConfigError(str(e)) from e
            settings[f"{side}_proto"] = scheme
            settings[f"{side}_addr"] = address

    settings.update(
        {
            key: val
            for key, val in vars(args).items()
            if key in SETTINGS_FROM_ARGS and val is not None
        }
    )
    return settings


def verbosity(args: argparse.Namespace) -> str:
    if args.quiet:
        return "error"
    if args.verbose:
        return "debug"
    return args.verbosity


def run(arguments: Sequence[str] | None = None) -> int:
    parser = cmdline.rproxy()
    args = parser.parse_args(arguments)
    if args.version:
        print(debug.dump_system_info())
        return 0

    termlog = log.TermLogHandler(verbosity=verbosity(args))
    termlog.install()
    logging.getLogger().setLevel(logging.DEBUG)
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    async def main() -> None:
        proxy = Proxy(conf)
        loop = asyncio.get_running_loop()

        def _shutdown(*_):
            loop.call_soon_threadsafe(proxy.shutdown)

        # We can't use loop.add_signal_handler because that's not available on Windows' Proactorloop,
        # but signal.signal just works fine for our purposes.
        signal.signal(signal.SIGINT, _shutdown)
        signal.signal(signal.SIGTERM, _shutdown)
        if hasattr(signal, "SIGPIPE"):
            signal.signal(signal.SIGPIPE, signal.SIG_IGN)

        await proxy.run()

    try:
        conf = config.from_settings(process_options(args))
        asyncio.run(main())
    except (exceptions.StartupConfigError, OSError) as e:
        print(f"{parser.prog}: {e}", file=sys.stderr)
        return 1
    finally:
        termlog.uninstall()
    return 0


def rproxy(args=None) -> int:  # pragma: no cover
    return run(args)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(rproxy())
