#!/usr/bin/env python3
"""
Generate or verify the VAPID key pair used to sign SPC Alerts web pushes.

The public key goes to the pages (foreground bridge and background
receiver), the private key stays with the dispatcher. A pair that does not
match makes every push service reject the dispatcher's JWT, so deployments
run `--check` against the configured environment.

    python scripts/generate_vapid.py            # print a fresh pair
    python scripts/generate_vapid.py --check    # verify VAPID_* settings
"""

import argparse
import base64
import binascii
import sys

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from app.settings import Settings


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b'=').decode('ascii')


def b64url_decode(value: str) -> bytes:
    value = value.strip()
    return base64.urlsafe_b64decode(value + '=' * (-len(value) % 4))


def _public_point(private_key: ec.EllipticCurvePrivateKey) -> bytes:
    # Uncompressed point (65 bytes: 0x04 + X + Y), the applicationServerKey form
    return private_key.public_key().public_bytes(
        encoding=serialization.Encoding.X962,
        format=serialization.PublicFormat.UncompressedPoint,
    )


def generate_vapid_keys() -> tuple[str, str]:
    """Return (public, private) as base64url strings without padding."""
    private_key = ec.generate_private_key(ec.SECP256R1())

    # Raw 32-byte scalar, the form pywebpush accepts
    private_value = private_key.private_numbers().private_value.to_bytes(32, 'big')
    return b64url(_public_point(private_key)), b64url(private_value)


def public_key_from_private(private_b64: str) -> str:
    """Derive the applicationServerKey for a raw base64url private scalar."""
    try:
        raw = b64url_decode(private_b64)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"VAPID private key is not base64url: {e}") from e
    if len(raw) != 32:
        raise ValueError(f"VAPID private key must be 32 bytes, got {len(raw)}")
    private_key = ec.derive_private_key(int.from_bytes(raw, 'big'), ec.SECP256R1())
    return b64url(_public_point(private_key))


def check_keys(public_key: str | None, private_key: str | None) -> str | None:
    """Return a problem description, or None when the pair matches."""
    if not public_key or not private_key:
        return "VAPID_PUBLIC_KEY and VAPID_PRIVATE_KEY must both be set"
    try:
        derived = public_key_from_private(private_key)
    except ValueError as e:
        return str(e)
    if derived != public_key.strip().rstrip('='):
        return "VAPID_PUBLIC_KEY does not belong to VAPID_PRIVATE_KEY"
    return None


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Generate or verify SPC Alerts VAPID keys")
    parser.add_argument("--check", action="store_true",
                        help="verify the configured key pair instead of generating one")
    args = parser.parse_args(argv)

    if args.check:
        config = Settings()
        problem = check_keys(config.vapid_public_key, config.vapid_private_key)
        if problem:
            print(f"VAPID check failed: {problem}", file=sys.stderr)
            return 1
        print(f"VAPID keys match (contact mailto:{config.vapid_contact_email})")
        return 0

    public_key, private_key = generate_vapid_keys()

    print("# SPC Alerts push signing keys")
    print(f"VAPID_PUBLIC_KEY={public_key}")
    print(f"VAPID_PRIVATE_KEY={private_key}")
    print("VAPID_CONTACT_EMAIL=admin@spcalerts.com")
    return 0


if __name__ == "__main__":
    sys.exit(main())
