"""Fileset signatures: tamper evidence for the stored baselines.

Verifying files only proves the files match their baselines. An attacker
with write access to the database can rewrite the baselines too. Signing a
fileset stores an encrypted digest of its entire contents, so any later
change to the fileset (by anyone not holding the password) is detected by
verify().

The digest is SHA-256 over key bytes (the filesystem bytes of the path)
then value bytes of every record, in key order. It covers every key, every
value and their order.
"""

import hashlib
import hmac
import logging
import os

from tripline._internal import crypto
from tripline.errors import (
    ContentsChangedError,
    NoSignatureError,
    SignatureExistsError,
    UnknownFilesetError,
    WrongPasswordError,
)
from tripline.kernel.store import RecordStore, check_user_fileset

logger = logging.getLogger(__name__)


def fileset_digest(store: RecordStore, fileset: str) -> bytes:
    """SHA-256 over the raw key/value bytes of a fileset, in key order.

    Raises:
        UnknownFilesetError: If the fileset does not exist.
    """
    h = hashlib.sha256()
    for path, value in store.query_raw(fileset):
        h.update(os.fsencode(path))
        h.update(value)
    return h.digest()


class SignatureEngine:
    """Signs filesets and verifies their signatures."""

    def __init__(self, store: RecordStore, kdf_iterations: int = crypto.DEFAULT_KDF_ITERATIONS):
        self.store = store
        self.kdf_iterations = kdf_iterations

    def sign(self, fileset: str, password: str, overwrite: bool = False) -> None:
        """Compute, encrypt and store the signature of `fileset`.

        Raises:
            SignatureExistsError: If already signed and `overwrite` is false.
            UnknownFilesetError: If the fileset does not exist.
        """
        check_user_fileset(fileset)
        if self.store.signatures.get(fileset) is not None and not overwrite:
            raise SignatureExistsError(fileset)
        if not self.store.fileset_exists(fileset):
            raise UnknownFilesetError(fileset)

        digest = fileset_digest(self.store, fileset)
        logger.debug("fileset %s digest: %s", fileset, digest.hex())
        signature = crypto.encrypt(password, digest, self.kdf_iterations)
        self.store.signatures.put(fileset, signature)
        logger.info("Signed fileset %r.", fileset)

    def verify(self, fileset: str, password: str) -> None:
        """Check the stored signature of `fileset` against its current contents.

        Passing means all three steps succeed: the signature is present, it
        decrypts under `password`, and the decrypted digest equals the digest
        of the fileset as it is now.

        Raises:
            UnknownFilesetError: If the fileset does not exist.
            NoSignatureError: Never signed, or the signature was removed.
            WrongPasswordError: Wrong password, or the signature was replaced.
            ContentsChangedError: The fileset changed since signing.
        """
        check_user_fileset(fileset)
        if not self.store.fileset_exists(fileset):
            raise UnknownFilesetError(fileset)
        digest = fileset_digest(self.store, fileset)
        logger.debug("fileset %s digest: %s", fileset, digest.hex())

        signatures = self.store.signatures
        signature = signatures.get(fileset)
        if signature is None:
            raise NoSignatureError(fileset, any_signatures=not signatures.is_empty())

        try:
            signed_digest = crypto.decrypt(password, signature)
        except crypto.DecryptionError as e:
            raise WrongPasswordError(fileset, str(e))

        if not hmac.compare_digest(signed_digest, digest):
            raise ContentsChangedError(fileset)
        logger.info("Integrity fileset %r is ok.", fileset)
