"""
Client-side encryption shared by every producer and consumer of drops.

AES-256-CBC with PKCS#7 padding. Key and IV are the literal random bytes
carried in the share link; there is no password-based derivation. Output is
byte-identical to ``openssl enc -aes-256-cbc -K <key> -iv <iv>`` and to
WebCrypto/Node ``aes-256-cbc``, so links created by one client decrypt in any
other. The gateway stores and returns ciphertext without ever importing this
module.
"""

from __future__ import annotations

import os

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from apps.drops.secret_codec import IV_SIZE, KEY_SIZE

BLOCK_BITS = 128


class DecryptionError(Exception):
    """Ciphertext could not be decrypted with the given key and IV."""


def generate_key() -> bytes:
    return os.urandom(KEY_SIZE)


def generate_iv() -> bytes:
    return os.urandom(IV_SIZE)


def _cipher(key: bytes, iv: bytes) -> Cipher:
    if len(key) != KEY_SIZE:
        raise ValueError(f"key must be {KEY_SIZE} bytes, got {len(key)}")
    if len(iv) != IV_SIZE:
        raise ValueError(f"IV must be {IV_SIZE} bytes, got {len(iv)}")
    return Cipher(algorithms.AES(key), modes.CBC(iv))


def encrypt(plaintext: bytes | str, key: bytes, iv: bytes) -> bytes:
    """Encrypt bytes (or UTF-8 text). Output length is always a multiple of 16."""
    if isinstance(plaintext, str):
        plaintext = plaintext.encode("utf-8")
    padder = padding.PKCS7(BLOCK_BITS).padder()
    padded = padder.update(plaintext) + padder.finalize()
    encryptor = _cipher(key, iv).encryptor()
    return encryptor.update(padded) + encryptor.finalize()


def decrypt(ciphertext: bytes, key: bytes, iv: bytes) -> bytes:
    """Decrypt and strip padding.

    Raises:
        DecryptionError: wrong key/IV, truncated ciphertext or bad padding.
    """
    if not ciphertext or len(ciphertext) % (BLOCK_BITS // 8):
        raise DecryptionError("ciphertext length is not a positive multiple of the block size")
    decryptor = _cipher(key, iv).decryptor()
    padded = decryptor.update(ciphertext) + decryptor.finalize()
    unpadder = padding.PKCS7(BLOCK_BITS).unpadder()
    try:
        return unpadder.update(padded) + unpadder.finalize()
    except ValueError as e:
        raise DecryptionError("invalid padding (wrong key or IV?)") from e
