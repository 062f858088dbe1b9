# signing.py
import logging
import os

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import (
    decode_dss_signature,
    encode_dss_signature,
)
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

logger = logging.getLogger("smallchain.signing")

CURVE = ec.SECP256K1()
SCALAR_SIZE = 32


class SigningError(Exception):
    """Raised when a key cannot be created, read, or used."""


class Signer:
    """Signs messages with a secp256k1 private key."""

    def __init__(self, private_key: ec.EllipticCurvePrivateKey):
        self._private_key = private_key
        self.public_key_hex = private_key.public_key().public_bytes(
            Encoding.X962, PublicFormat.CompressedPoint
        ).hex()

    @classmethod
    def generate(cls) -> "Signer":
        return cls(ec.generate_private_key(CURVE))

    @classmethod
    def from_hex(cls, private_key_hex: str) -> "Signer":
        try:
            value = int(private_key_hex.strip(), 16)
            return cls(ec.derive_private_key(value, CURVE))
        except ValueError as e:
            raise SigningError(f"Invalid private key: {e}") from e

    @classmethod
    def from_key_file(cls, path: str) -> "Signer":
        try:
            with open(path, "r") as f:
                return cls.from_hex(f.read())
        except (OSError, UnicodeDecodeError) as e:
            raise SigningError(f"Could not read key file {path}: {e}") from e

    def private_key_hex(self) -> str:
        value = self._private_key.private_numbers().private_value
        return value.to_bytes(SCALAR_SIZE, "big").hex()

    def write_key_files(self, path: str):
        """Writes `path` (private key) and `path`.pub (public key)."""
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        # O_CREAT's mode only applies to new files
        os.chmod(path, 0o600)
        with os.fdopen(fd, "w") as f:
            f.write(self.private_key_hex() + "\n")
        with open(path + ".pub", "w") as f:
            f.write(self.public_key_hex + "\n")
        logger.info(f"Wrote key pair to {path} and {path}.pub")

    def sign(self, message: bytes) -> str:
        """Returns the compact (r || s) signature as 128 hex characters."""
        der = self._private_key.sign(message, ec.ECDSA(hashes.SHA256()))
        r, s = decode_dss_signature(der)
        return (r.to_bytes(SCALAR_SIZE, "big") + s.to_bytes(SCALAR_SIZE, "big")).hex()


def verify(signature_hex: str, message: bytes, public_key_hex: str) -> bool:
    """Checks a compact signature against a compressed public key."""
    try:
        raw = bytes.fromhex(signature_hex)
        if len(raw) != 2 * SCALAR_SIZE:
            return False
        public_key = ec.EllipticCurvePublicKey.from_encoded_point(
            CURVE, bytes.fromhex(public_key_hex)
        )
        r = int.from_bytes(raw[:SCALAR_SIZE], "big")
        s = int.from_bytes(raw[SCALAR_SIZE:], "big")
        public_key.verify(encode_dss_signature(r, s), message, ec.ECDSA(hashes.SHA256()))
        return True
    except (ValueError, InvalidSignature):
        return False
