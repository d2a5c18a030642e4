"""X.509 and key helpers used to build the control plane trust hierarchy."""

import copy
import datetime
import ipaddress
from dataclasses import dataclass, field
from typing import List, Union

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

RSA_KEY_SIZE = 2048
CA_VALIDITY = datetime.timedelta(days=3650)
CERT_VALIDITY = datetime.timedelta(days=365)
# Tolerate clock skew between the operator and the workloads it serves
BACKDATE = datetime.timedelta(minutes=5)

SERVER_AUTH = ExtendedKeyUsageOID.SERVER_AUTH
CLIENT_AUTH = ExtendedKeyUsageOID.CLIENT_AUTH

USAGE_NAMES = {SERVER_AUTH: "server auth", CLIENT_AUTH: "client auth"}


def usage_name(oid):
    return USAGE_NAMES.get(oid, oid.dotted_string)


@dataclass
class AltNames:
    dns_names: List[str] = field(default_factory=list)
    ips: List[Union[ipaddress.IPv4Address, ipaddress.IPv6Address]] = field(default_factory=list)

    def is_empty(self):
        return not self.dns_names and not self.ips


@dataclass
class CertConfig:
    """Subject parameters of a certificate."""

    common_name: str = ""
    organization: List[str] = field(default_factory=list)
    usages: List[x509.ObjectIdentifier] = field(default_factory=list)
    alt_names: AltNames = field(default_factory=AltNames)

    def copy(self):
        return copy.deepcopy(self)


def new_private_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=RSA_KEY_SIZE)


def _subject(config):
    attributes = [x509.NameAttribute(NameOID.COMMON_NAME, config.common_name)]
    for org in config.organization:
        attributes.append(x509.NameAttribute(NameOID.ORGANIZATION_NAME, org))
    return x509.Name(attributes)


def _now():
    return datetime.datetime.now(datetime.timezone.utc)


def new_certificate_authority(config):
    """Create a self-signed CA certificate and its private key."""
    key = new_private_key()
    name = _subject(config)
    now = _now()

    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - BACKDATE)
        .not_valid_after(now + CA_VALIDITY)
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=True,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=True,
                crl_sign=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(
            x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False
        )
        .sign(key, hashes.SHA256())
    )
    return cert, key


def new_signed_cert(config, key, ca_cert, ca_key):
    """Sign a leaf certificate for ``key`` with the given CA."""
    if not config.common_name:
        raise ValueError("must specify a CommonName")
    if not config.usages:
        raise ValueError("must specify at least one ExtKeyUsage")

    now = _now()
    builder = (
        x509.CertificateBuilder()
        .subject_name(_subject(config))
        .issuer_name(ca_cert.subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - BACKDATE)
        .not_valid_after(now + CERT_VALIDITY)
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=True,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=False,
                crl_sign=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(x509.ExtendedKeyUsage(list(config.usages)), critical=False)
        .add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_public_key(ca_key.public_key()),
            critical=False,
        )
    )

    if not config.alt_names.is_empty():
        general_names = [x509.DNSName(name) for name in config.alt_names.dns_names]
        general_names += [x509.IPAddress(ip) for ip in config.alt_names.ips]
        builder = builder.add_extension(
            x509.SubjectAlternativeName(general_names), critical=False
        )

    return builder.sign(ca_key, hashes.SHA256())


def new_cert_and_key(ca_cert, ca_key, config):
    """Generate a key and a certificate for it signed by the CA."""
    key = new_private_key()
    return new_signed_cert(config, key, ca_cert, ca_key), key


def encode_cert_pem(cert):
    return cert.public_bytes(serialization.Encoding.PEM).decode()


def encode_private_key_pem(key):
    return key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.TraditionalOpenSSL,
        serialization.NoEncryption(),
    ).decode()


def encode_public_key_pem(public_key):
    return public_key.public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode()


def decode_cert_pem(data):
    return x509.load_pem_x509_certificate(data.encode())


def decode_private_key_pem(data):
    return serialization.load_pem_private_key(data.encode(), password=None)


def parse_ip(host):
    """Return ``host`` as an IP address, or None when it is a DNS name."""
    try:
        return ipaddress.ip_address(host)
    except ValueError:
        return None


def api_server_virtual_ip(service_subnet):
    """First usable address of the service subnet, reserved for the API service."""
    network = ipaddress.ip_network(service_subnet, strict=False)
    return network.network_address + 1
