"""Password based authenticated encryption for fileset signatures.

AES-256-GCM under a key derived from the password with PBKDF2-HMAC-SHA256.
Every encryption draws a fresh salt and nonce; both travel with the
ciphertext, as does the KDF iteration count:

    iterations (4 bytes, big endian) || salt (16) || nonce (12) || ciphertext || tag (16)

GCM authenticates the ciphertext, so a wrong password and a modified blob
fail the same way (InvalidTag).
"""

import secrets
import struct
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

SALT_SIZE = 16
NONCE_SIZE = 12
KEY_SIZE = 32
TAG_SIZE = 16

# OWASP 2023 recommendation for PBKDF2-HMAC-SHA256
DEFAULT_KDF_ITERATIONS = 600_000
# Upper bound accepted from a stored blob. The count is read before the
# password is checked, so an unbounded value would let whoever can edit the
# database stall verification.
MAX_KDF_ITERATIONS = 10 * DEFAULT_KDF_ITERATIONS

_ITERATIONS = struct.Struct(">I")
_HEADER_SIZE = _ITERATIONS.size + SALT_SIZE + NONCE_SIZE


class DecryptionError(ValueError):
    """Raised when a blob cannot be decrypted: wrong password, truncated or modified."""
    pass


@dataclass
class EncryptedBlob:
    """Container for encrypted data with all metadata needed for decryption."""
    iterations: int
    salt: bytes
    nonce: bytes
    ciphertext: bytes

    def to_bytes(self) -> bytes:
        return _ITERATIONS.pack(self.iterations) + self.salt + self.nonce + self.ciphertext

    @classmethod
    def from_bytes(cls, data: bytes) -> "EncryptedBlob":
        if len(data) < _HEADER_SIZE + TAG_SIZE:
            raise DecryptionError("encrypted data too short")
        (iterations,) = _ITERATIONS.unpack_from(data)
        if iterations == 0 or iterations > MAX_KDF_ITERATIONS:
            raise DecryptionError("invalid key derivation parameters")
        salt_start = _ITERATIONS.size
        nonce_start = salt_start + SALT_SIZE
        return cls(
            iterations=iterations,
            salt=data[salt_start:nonce_start],
            nonce=data[nonce_start:_HEADER_SIZE],
            ciphertext=data[_HEADER_SIZE:],
        )


def derive_key(password: str, salt: bytes, iterations: int = DEFAULT_KDF_ITERATIONS) -> bytes:
    """Derive an AES-256 key from a password using PBKDF2."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(password.encode("utf-8", "surrogateescape"))


def encrypt(password: str, plaintext: bytes, iterations: int = DEFAULT_KDF_ITERATIONS) -> bytes:
    """Encrypt `plaintext` under `password`, returning the serialized blob."""
    if not 1 <= iterations <= MAX_KDF_ITERATIONS:
        raise ValueError(f"iterations must be between 1 and {MAX_KDF_ITERATIONS}, got {iterations}")
    salt = secrets.token_bytes(SALT_SIZE)
    nonce = secrets.token_bytes(NONCE_SIZE)
    key = derive_key(password, salt, iterations)
    ciphertext = AESGCM(key).encrypt(nonce, plaintext, associated_data=None)
    return EncryptedBlob(iterations=iterations, salt=salt, nonce=nonce, ciphertext=ciphertext).to_bytes()


def decrypt(password: str, data: bytes) -> bytes:
    """Decrypt a blob produced by encrypt().

    Raises:
        DecryptionError: If the password is wrong or the blob was modified.
    """
    blob = EncryptedBlob.from_bytes(data)
    key = derive_key(password, blob.salt, blob.iterations)
    try:
        return AESGCM(key).decrypt(blob.nonce, blob.ciphertext, associated_data=None)
    except InvalidTag:
        raise DecryptionError("authentication failed")
