"""
Core cryptographic functions for the ledger.
"""
import nacl.signing
import nacl.exceptions
from Crypto.Hash import keccak

from zux_ledger.errors import BadPublicKey, BadSignature


def generate_hash(data: bytes) -> bytes:
    """Generates a Keccak-256 hash."""
    return keccak.new(digest_bits=256, data=data).digest()


def generate_keypair() -> tuple[nacl.signing.SigningKey, nacl.signing.VerifyKey]:
    """Generates an Ed25519 key pair from the OS CSPRNG."""
    signing_key = nacl.signing.SigningKey.generate()
    return signing_key, signing_key.verify_key


def sign(signing_key: nacl.signing.SigningKey, data: bytes) -> bytes:
    """Signs byte data, returning the detached 64-byte signature."""
    return signing_key.sign(data).signature


def load_verify_key(public_key: bytes) -> nacl.signing.VerifyKey:
    """Parses raw public key bytes, raising BadPublicKey on malformed input."""
    if not isinstance(public_key, (bytes, bytearray)):
        raise BadPublicKey(f"Public key must be bytes, got {type(public_key).__name__}")
    try:
        return nacl.signing.VerifyKey(bytes(public_key))
    except (ValueError, TypeError) as e:
        raise BadPublicKey(f"Invalid public key: {e}") from e


def verify_signature(public_key: bytes, signature: bytes, data: bytes) -> None:
    """
    Verifies an Ed25519 signature.

    Raises BadPublicKey if the key cannot be parsed and BadSignature if the
    signature is malformed or does not match the data.
    """
    verify_key = load_verify_key(public_key)
    if not signature:
        raise BadSignature("Missing signature")
    try:
        verify_key.verify(data, bytes(signature))
    except nacl.exceptions.BadSignatureError as e:
        raise BadSignature("Signature verification failed") from e
    except (ValueError, TypeError) as e:
        # Catch both cryptographic failures and format/length errors
        raise BadSignature(f"Malformed signature: {e}") from e
