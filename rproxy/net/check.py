import ipaddress
import re

# Allow underscore in host name
# Note: This could be a DNS label, a hostname, a FQDN, or an IP
_label_valid = re.compile(rb"[A-Z\d\-_]{1,63}$", re.IGNORECASE)


def is_valid_host(host: str) -> bool:
    """
    Checks if the passed string is a valid DNS hostname or an IPv4/IPv6 address.
    """
    try:
        host_bytes = host.encode("idna")
    except UnicodeError:
        return False
    # RFC1035: 255 bytes or less.
    if not host_bytes or len(host_bytes) > 255:
        return False
    if host_bytes.endswith(b"."):
        host_bytes = host_bytes[:-1]
    if all(_label_valid.match(x) for x in host_bytes.split(b".")):
        return True
    try:
        ipaddress.ip_address(host)
        return True
    except ValueError:
        return False


def is_valid_port(port: int) -> bool:
    return 0 <= port <= 65535
