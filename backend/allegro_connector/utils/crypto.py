"""Encryption helpers for Allegro grants stored at rest.

:func:`encrypt` and :func:`decrypt` wrap AES-GCM with a key derived from the
application secret via HKDF-SHA256. Ciphertexts are versioned and prefixed so
they can be told apart from legacy plain-text values:

    ENC:v1:<base64(nonce || ciphertext || tag)>

``decrypt`` returns values without the prefix unchanged, which lets rows
written before encryption was enabled keep working.
"""

from __future__ import annotations

import base64
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from allegro_connector.config import settings
from allegro_connector.utils.logger import logger


_PREFIX = "ENC:v1:"
_NONCE_SIZE = 12  # 96-bit nonce recommended for AES-GCM
_KEY_SIZE = 32    # 256-bit AES key


def _get_key() -> bytes:
    base = settings.secret_key.encode("utf-8")

    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=_KEY_SIZE,
        salt=None,
        info=b"allegro-token-encryption",
    )
    return hkdf.derive(base)


def encrypt(plaintext: Optional[str]) -> Optional[str]:
    """Encrypt a string value using AES-GCM. ``None`` passes through."""

    if plaintext is None:
        return None
    if not isinstance(plaintext, str):
        plaintext = str(plaintext)

    aesgcm = AESGCM(_get_key())
    nonce = os.urandom(_NONCE_SIZE)
    ct = aesgcm.encrypt(nonce, plaintext.encode("utf-8"), associated_data=None)

    blob = base64.b64encode(nonce + ct).decode("ascii")
    return _PREFIX + blob


def is_encrypted(value: Optional[str]) -> bool:
    return isinstance(value, str) and value.startswith(_PREFIX)


def decrypt(value: Optional[str]) -> Optional[str]:
    """Decrypt a value produced by :func:`encrypt`.

    Values without the ``ENC:v1:`` prefix are returned unchanged. A value that
    carries the prefix but cannot be decrypted (wrong key, corrupted blob)
    yields ``None`` so callers treat the grant as missing instead of sending
    ciphertext to Allegro.
    """

    if value is None:
        return None
    if not is_encrypted(value):
        return value

    try:
        raw = base64.b64decode(value[len(_PREFIX):].encode("ascii"))
        if len(raw) <= _NONCE_SIZE:
            logger.error("Crypto decryption failed: blob too short")
            return None
        nonce, ct = raw[:_NONCE_SIZE], raw[_NONCE_SIZE:]
        pt_bytes = AESGCM(_get_key()).decrypt(nonce, ct, associated_data=None)
        return pt_bytes.decode("utf-8")
    except (InvalidTag, ValueError) as e:
        logger.error(f"Crypto decryption failed: {type(e).__name__}: {e}")
        return None
