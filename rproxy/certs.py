import datetime
import ipaddress
from pathlib import Path
from typing import Optional

import OpenSSL
from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import dsa
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.asymmetric.types import CertificateIssuerPrivateKeyTypes
from cryptography.x509 import ExtendedKeyUsageOID
from cryptography.x509 import NameOID

from rproxy import exceptions

CA_EXPIRY = datetime.timedelta(days=10 * 365)
CERT_EXPIRY = datetime.timedelta(days=365)


class Cert:
    """Representation of a (TLS) certificate."""

    _cert: x509.Certificate

    def __init__(self, cert: x509.Certificate):
        assert isinstance(cert, x509.Certificate)
        self._cert = cert

    def __eq__(self, other):
        if isinstance(other, Cert):
            return self.fingerprint() == other.fingerprint()
        return False

    def __repr__(self):
        return f"<Cert(cn={self.cn!r}, altnames={self.altnames!r})>"

    def __hash__(self):
        return self._cert.__hash__()

    @classmethod
    def from_pem(cls, data: bytes) -> "Cert":
        cert = x509.load_pem_x509_certificate(data)
        return cls(cert)

    def to_pem(self) -> bytes:
        return self._cert.public_bytes(serialization.Encoding.PEM)

    @classmethod
    def from_pyopenssl(cls, x509: OpenSSL.crypto.X509) -> "Cert":
        return cls(x509.to_cryptography())

    def to_cryptography(self) -> x509.Certificate:
        return self._cert

    def fingerprint(self) -> bytes:
        return self._cert.fingerprint(hashes.SHA256())

    @property
    def notbefore(self) -> datetime.datetime:
        return self._cert.not_valid_before_utc

    @property
    def notafter(self) -> datetime.datetime:
        return self._cert.not_valid_after_utc

    def has_expired(self) -> bool:
        return datetime.datetime.now(datetime.timezone.utc) > self.notafter

    @property
    def keyinfo(self) -> tuple[str, int]:
        public_key = self._cert.public_key()
        if isinstance(public_key, rsa.RSAPublicKey):
            return "RSA", public_key.key_size
        if isinstance(public_key, dsa.DSAPublicKey):
            return "DSA", public_key.key_size
        if isinstance(public_key, ec.EllipticCurvePublicKey):
            return f"EC ({public_key.curve.name})", public_key.key_size
        return (
            public_key.__class__.__name__.replace("PublicKey", "").replace("_", ""),
            getattr(public_key, "key_size", -1),
        )  # pragma: no cover

    @property
    def cn(self) -> Optional[str]:
        attrs = self._cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
        if attrs:
            return str(attrs[0].value)
        return None

    @property
    def altnames(self) -> list[str]:
        """
        Get all SubjectAlternativeName DNS altnames and IP addresses.
        """
        try:
            ext = self._cert.extensions.get_extension_for_class(
                x509.SubjectAlternativeName
            ).value
        except x509.ExtensionNotFound:
            return []
        else:
            return ext.get_values_for_type(x509.DNSName) + [
                str(x) for x in ext.get_values_for_type(x509.IPAddress)
            ]

    def public_key_bytes(self) -> bytes:
        return self._cert.public_key().public_bytes(
            serialization.Encoding.DER,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        )


def load_certs(path: Path | str) -> list[Cert]:
    """
    Load all PEM certificates from a file.

    *Raises:*
     - TrustLoadError, if the file cannot be read or contains no valid certificate.
    """
    path = Path(path).expanduser()
    try:
        data = path.read_bytes()
    except OSError as e:
        raise exceptions.TrustLoadError(
            f"Cannot read trusted certificates from {path}: {e.strerror}"
        ) from e
    try:
        certs = x509.load_pem_x509_certificates(data)
    except ValueError as e:
        raise exceptions.TrustLoadError(
            f"Cannot parse trusted certificates in {path}: {e}"
        ) from e
    return [Cert(c) for c in certs]


def load_identity(
    cert_path: Path | str, key_path: Path | str
) -> tuple[list[Cert], CertificateIssuerPrivateKeyTypes]:
    """
    Load a certificate chain and its private key.

    Returns the chain (end-entity certificate first) and the private key.

    *Raises:*
     - IdentityLoadError, if either file is unreadable or unparseable,
       or if the key does not belong to the certificate.
    """
    cert_path = Path(cert_path).expanduser()
    key_path = Path(key_path).expanduser()
    try:
        cert_data = cert_path.read_bytes()
        key_data = key_path.read_bytes()
    except OSError as e:
        raise exceptions.IdentityLoadError(
            f"Cannot read certificate or key ({e.filename}): {e.strerror}"
        ) from e

    try:
        chain = [Cert(c) for c in x509.load_pem_x509_certificates(cert_data)]
    except ValueError as e:
        raise exceptions.IdentityLoadError(
            f"Cannot parse certificate in {cert_path}: {e}"
        ) from e
    try:
        key = serialization.load_pem_private_key(key_data, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise exceptions.IdentityLoadError(
            f"Cannot parse private key in {key_path}: {e}"
        ) from e

    key_bytes = key.public_key().public_bytes(
        serialization.Encoding.DER,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    if chain[0].public_key_bytes() != key_bytes:
        raise exceptions.IdentityLoadError(
            f"Private key {key_path} does not match certificate {cert_path}."
        )
    return chain, key  # type: ignore


def create_ca(
    organization: str,
    cn: str,
    key_size: int = 2048,
) -> tuple[rsa.RSAPrivateKey, Cert]:
    now = datetime.datetime.now(datetime.timezone.utc)

    private_key = rsa.generate_private_key(
        public_exponent=65537,
        key_size=key_size,
    )
    name = x509.Name(
        [
            x509.NameAttribute(NameOID.COMMON_NAME, cn),
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, organization),
        ]
    )
    builder = x509.CertificateBuilder()
    builder = builder.serial_number(x509.random_serial_number())
    builder = builder.subject_name(name)
    builder = builder.not_valid_before(now - datetime.timedelta(days=2))
    builder = builder.not_valid_after(now + CA_EXPIRY)
    builder = builder.issuer_name(name)
    builder = builder.public_key(private_key.public_key())
    builder = builder.add_extension(
        x509.BasicConstraints(ca=True, path_length=None), critical=True
    )
    builder = builder.add_extension(
        x509.KeyUsage(
            digital_signature=False,
            content_commitment=False,
            key_encipherment=False,
            data_encipherment=False,
            key_agreement=False,
            key_cert_sign=True,
            crl_sign=True,
            encipher_only=False,
            decipher_only=False,
        ),
        critical=True,
    )
    builder = builder.add_extension(
        x509.SubjectKeyIdentifier.from_public_key(private_key.public_key()),
        critical=False,
    )
    cert = builder.sign(private_key=private_key, algorithm=hashes.SHA256())
    return private_key, Cert(cert)


def create_cert(
    ca_key: rsa.RSAPrivateKey,
    ca_cert: Cert,
    commonname: Optional[str],
    sans: list[str],
    *,
    organization: Optional[str] = None,
    key_size: int = 2048,
    not_before: datetime.datetime | None = None,
    not_after: datetime.datetime | None = None,
) -> tuple[rsa.RSAPrivateKey, Cert]:
    """
    Generates a fresh key pair and a certificate for it, signed by the given CA.
    The certificate is valid for both TLS server and client authentication.

    ca_key: CA private key
    ca_cert: CA certificate
    commonname: Common name for the generated certificate.
    sans: A list of Subject Alternate Names (DNS names or IP addresses).
    """
    now = datetime.datetime.now(datetime.timezone.utc)
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)

    builder = x509.CertificateBuilder()
    issuer = ca_cert.to_cryptography()
    builder = builder.issuer_name(issuer.subject)
    builder = builder.add_extension(
        x509.ExtendedKeyUsage(
            [ExtendedKeyUsageOID.SERVER_AUTH, ExtendedKeyUsageOID.CLIENT_AUTH]
        ),
        critical=False,
    )
    builder = builder.add_extension(
        x509.AuthorityKeyIdentifier.from_issuer_public_key(issuer.public_key()),  # type: ignore
        critical=False,
    )
    builder = builder.public_key(private_key.public_key())
    builder = builder.not_valid_before(not_before or now - datetime.timedelta(days=2))
    builder = builder.not_valid_after(not_after or now + CERT_EXPIRY)

    subject = []
    is_valid_commonname = commonname is not None and len(commonname) < 64
    if is_valid_commonname:
        assert commonname is not None
        subject.append(x509.NameAttribute(NameOID.COMMON_NAME, commonname))
    if organization is not None:
        subject.append(x509.NameAttribute(NameOID.ORGANIZATION_NAME, organization))
    builder = builder.subject_name(x509.Name(subject))
    builder = builder.serial_number(x509.random_serial_number())

    ss: list[x509.GeneralName] = []
    for x in sans:
        try:
            ip = ipaddress.ip_address(x)
        except ValueError:
            ss.append(x509.DNSName(x))
        else:
            ss.append(x509.IPAddress(ip))
    if ss:
        # RFC 5280 §4.2.1.6: subjectAltName is critical if subject is empty.
        builder = builder.add_extension(
            x509.SubjectAlternativeName(ss), critical=not is_valid_commonname
        )
    cert = builder.sign(private_key=ca_key, algorithm=hashes.SHA256())
    return private_key, Cert(cert)


def private_key_to_pem(key: rsa.RSAPrivateKey) -> bytes:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )
