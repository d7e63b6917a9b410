from __future__ import annotations

import argparse
import datetime
import hashlib
import os
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID


def cert_fingerprint(cert: x509.Certificate) -> str:
    return hashlib.sha256(cert.public_bytes(serialization.Encoding.DER)).hexdigest()


def generate_placeholder_cert(
    domain: str,
    live_dir: str | Path,
    include_www: bool = True,
    days: int = 30,
) -> x509.Certificate:
    """Write a self-signed fullchain/privkey/chain set where certbot will later put the real one.

    nginx refuses to start when ``ssl_certificate`` points at a missing file, so
    the HTTPS site cannot come up to answer the ACME challenge without this.
    """
    out = Path(live_dir)
    out.mkdir(parents=True, exist_ok=True)

    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    names = [x509.DNSName(domain)]
    if include_www:
        names.append(x509.DNSName(f"www.{domain}"))
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, domain)])
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(minutes=5))
        .not_valid_after(now + datetime.timedelta(days=days))
        .add_extension(x509.SubjectAlternativeName(names), critical=False)
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .sign(key, hashes.SHA256())
    )

    pem = cert.public_bytes(serialization.Encoding.PEM)
    key_path = out / "privkey.pem"
    key_path.write_bytes(
        key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
    )
    os.chmod(key_path, 0o600)
    (out / "fullchain.pem").write_bytes(pem)
    (out / "chain.pem").write_bytes(pem)
    (out / "cert.pem").write_bytes(pem)
    return cert


def is_placeholder(cert_path: str | Path) -> bool:
    path = Path(cert_path)
    if not path.is_file():
        return False
    cert = x509.load_pem_x509_certificate(path.read_bytes())
    return cert.issuer == cert.subject


def main() -> None:
    parser = argparse.ArgumentParser(description="Generate a self-signed placeholder certificate for nginx")
    parser.add_argument("domain", help="primary domain name")
    parser.add_argument("--output", default="/etc/letsencrypt/live", help="parent of the per-domain live directory")
    parser.add_argument("--no-www", action="store_true", help="do not add www.<domain> as an alternative name")
    parser.add_argument("--days", type=int, default=30)
    args = parser.parse_args()
    cert = generate_placeholder_cert(
        args.domain,
        Path(args.output) / args.domain,
        include_www=not args.no_www,
        days=args.days,
    )
    print(f"{args.domain} fingerprint: SHA256:{cert_fingerprint(cert)}")


if __name__ == "__main__":
    main()
