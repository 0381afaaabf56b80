"""
All exceptions that rproxy raises on purpose derive from RProxyException.

Startup errors (StartupConfigError and its subclasses) are fatal and abort the
process before anything is served. Everything else is scoped to a single
connection: it is handed to the supervisor's reporting sink and never stops
the accept loop.
"""


class RProxyException(Exception):
    """
    Base class for all exceptions thrown by rproxy.
    """

    def __init__(self, message=None):
        super().__init__(message)


class StartupConfigError(RProxyException):
    pass


class TrustLoadError(StartupConfigError):
    """The root trust anchor could not be read or parsed."""


class IdentityLoadError(StartupConfigError):
    """A certificate/private key pair could not be read, parsed or does not match."""


class TlsError(RProxyException):
    """
    Low-level TLS failure on a single stream.
    Components wrap this into one of the more specific errors below.
    """


class AcceptError(RProxyException):
    pass


class BackendError(RProxyException):
    pass


class BackendUnreachableError(BackendError):
    pass


class BackendAuthError(BackendError):
    pass


class RelayIOError(RProxyException):
    pass
