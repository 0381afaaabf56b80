import platform

from OpenSSL import SSL

from rproxy import version


def dump_system_info() -> str:
    rproxy_version = version.get_dev_version()
    openssl_version: str | bytes = SSL.SSLeay_version(SSL.SSLEAY_VERSION)
    if isinstance(openssl_version, bytes):
        openssl_version = openssl_version.decode()

    data = [
        f"rproxy:   {rproxy_version}",
        f"Python:   {platform.python_version()}",
        f"OpenSSL:  {openssl_version}",
        f"Platform: {platform.platform()}",
    ]
    return "\n".join(data)
