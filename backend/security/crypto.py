"""
Security module: X25519 key agreement + AES-256-GCM channel frames.

Keys are ephemeral (one pair per negotiation) and never persisted.
The offer's one-time token salts the key derivation so an answer can
only be used against the offer it was produced for.
"""

import os
import logging

from cryptography.hazmat.primitives.asymmetric.x25519 import (
    X25519PrivateKey,
    X25519PublicKey,
)
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.hashes import SHA256
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    PublicFormat,
)

from config import APP_ID

logger = logging.getLogger(__name__)

# AES-256-GCM nonce size (12 bytes recommended)
NONCE_SIZE = 12
# AES-256 key size
KEY_SIZE = 32
KDF_INFO = f"{APP_ID}-channel-key".encode("utf-8")


def generate_keypair() -> tuple[X25519PrivateKey, bytes]:
    """
    Generate an ephemeral X25519 keypair.

    Returns:
        (private_key, public_key_bytes) where public_key_bytes
        is 32 bytes suitable for a negotiation descriptor.
    """
    private_key = X25519PrivateKey.generate()
    public_bytes = private_key.public_key().public_bytes(
        encoding=Encoding.Raw,
        format=PublicFormat.Raw,
    )
    return private_key, public_bytes


def derive_shared_key(
    private_key: X25519PrivateKey,
    peer_public_bytes: bytes,
    token: str,
) -> bytes:
    """Derive the 32-byte channel key from the ECDH secret and the offer token."""
    peer_public_key = X25519PublicKey.from_public_bytes(peer_public_bytes)
    shared_secret = private_key.exchange(peer_public_key)

    return HKDF(
        algorithm=SHA256(),
        length=KEY_SIZE,
        salt=token.encode("utf-8"),
        info=KDF_INFO,
    ).derive(shared_secret)


class SessionCipher:
    """
    Seals and opens channel frames.

    Frame layout: nonce (12 bytes) || ciphertext || tag (16 bytes).
    The frame type byte is bound in as associated data so a TEXT frame
    cannot be replayed as BINARY.
    """

    def __init__(self, key: bytes) -> None:
        if len(key) != KEY_SIZE:
            raise ValueError(f"Channel key must be {KEY_SIZE} bytes")
        self._aead = AESGCM(key)

    def encrypt(self, frame_type: int, plaintext: bytes) -> bytes:
        nonce = os.urandom(NONCE_SIZE)
        return nonce + self._aead.encrypt(nonce, plaintext, bytes([frame_type]))

    def decrypt(self, frame_type: int, data: bytes) -> bytes:
        """Raises cryptography.exceptions.InvalidTag on tampered frames."""
        nonce = data[:NONCE_SIZE]
        return self._aead.decrypt(nonce, data[NONCE_SIZE:], bytes([frame_type]))
