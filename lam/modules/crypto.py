"""
@lam/crypto — digests, HMAC, base64, CRC-32 and symmetric ciphers.

Digests and ciphertexts are returned as lower-case hex strings.

Ciphers
───────
aes-cbc — AES (16/24/32-byte key, 16-byte IV), PKCS#7 padding
des-cbc — single DES (8-byte key, 8-byte IV), PKCS#7 padding
des-ecb — single DES (8-byte key, no IV), PKCS#7 padding
"""

import base64
import binascii
import hashlib
import hmac as _hmac
import logging
import zlib

from cryptography.hazmat.decrepit.ciphers.algorithms import TripleDES
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from lupa.lua54 import lua_type

from lam.exceptions import CryptoError

__all__ = ["encrypt", "decrypt", "hmac", "digest", "build"]

logger = logging.getLogger(__name__)

_DIGESTS = ("md5", "sha1", "sha256", "sha384", "sha512")
_HMAC_ALGORITHMS = ("sha1", "sha256", "sha384", "sha512")


def _bytes(value, what: str) -> bytes:
    if isinstance(value, bytes):
        return value
    if isinstance(value, str):
        return value.encode("utf-8")
    raise CryptoError(f"{what} must be a string, got {lua_type(value) or type(value).__name__}")


def _name(value, what: str) -> str:
    return _bytes(value, what).decode("utf-8", "replace").lower()


# ── Digests ───────────────────────────────────────────────────────────────────

def digest(algorithm: str, data: bytes) -> str:
    if algorithm not in _DIGESTS:
        raise CryptoError(f"unsupported algorithm {algorithm}")
    return hashlib.new(algorithm, data).hexdigest()


def hmac(algorithm: str, data: bytes, secret: bytes) -> str:
    if algorithm not in _HMAC_ALGORITHMS:
        raise CryptoError(f"unsupported algorithm {algorithm}")
    return _hmac.new(secret, data, algorithm).hexdigest()


# ── Ciphers ───────────────────────────────────────────────────────────────────

def _cipher(method: str, key: bytes, iv) -> Cipher:
    if method == "aes-cbc":
        if len(key) not in (16, 24, 32):
            raise CryptoError(f"aes-cbc key must be 16, 24 or 32 bytes, got {len(key)}")
        algorithm = algorithms.AES(key)
    elif method in ("des-cbc", "des-ecb"):
        if len(key) != 8:
            raise CryptoError(f"{method} key must be 8 bytes, got {len(key)}")
        # three identical DES keys make TripleDES behave as single DES
        algorithm = TripleDES(key)
    else:
        raise CryptoError(f"unsupported method {method}")

    if method.endswith("-ecb"):
        return Cipher(algorithm, modes.ECB())
    if iv is None:
        raise CryptoError("expect IV as 4th argument")
    iv = _bytes(iv, "iv")
    block = algorithm.block_size // 8
    if len(iv) != block:
        raise CryptoError(f"{method} IV must be {block} bytes, got {len(iv)}")
    return Cipher(algorithm, modes.CBC(iv))


def encrypt(data: bytes, method: str, key: bytes, iv=None) -> str:
    cipher = _cipher(method, key, iv)
    padder = padding.PKCS7(cipher.algorithm.block_size).padder()
    padded = padder.update(data) + padder.finalize()
    encryptor = cipher.encryptor()
    return (encryptor.update(padded) + encryptor.finalize()).hex()


def decrypt(hex_data: bytes, method: str, key: bytes, iv=None) -> bytes:
    cipher = _cipher(method, key, iv)
    try:
        data = bytes.fromhex(hex_data.decode("ascii"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise CryptoError(f"ciphertext is not valid hex: {exc}") from exc
    decryptor = cipher.decryptor()
    unpadder = padding.PKCS7(cipher.algorithm.block_size).unpadder()
    try:
        padded = decryptor.update(data) + decryptor.finalize()
        return unpadder.update(padded) + unpadder.finalize()
    except ValueError as exc:
        raise CryptoError(f"decryption failed: {exc}") from exc


# ── Lua surface ───────────────────────────────────────────────────────────────

def _digest_fn(algorithm: str):
    def fn(data):
        return digest(algorithm, _bytes(data, "data")).encode()
    return fn


def _hmac_fn(algorithm, data, secret):
    return hmac(_name(algorithm, "algorithm"), _bytes(data, "data"), _bytes(secret, "secret")).encode()


def _base64_encode(data):
    return base64.b64encode(_bytes(data, "data"))


def _base64_decode(data):
    try:
        return base64.b64decode(_bytes(data, "data"), validate=True)
    except binascii.Error as exc:
        raise CryptoError(f"invalid base64: {exc}") from exc


def _crc32(data):
    return format(zlib.crc32(_bytes(data, "data")), "x").encode()


def _encrypt(data, method, key, iv=None):
    return encrypt(
        _bytes(data, "data"), _name(method, "method"), _bytes(key, "key"), iv
    ).encode()


def _decrypt(hex_data, method, key, iv=None):
    return decrypt(_bytes(hex_data, "data"), _name(method, "method"), _bytes(key, "key"), iv)


def build(engine):
    """Module table for require('@lam/crypto')."""
    fields = {name.encode(): _digest_fn(name) for name in _DIGESTS}
    fields.update({
        b"hmac":          _hmac_fn,
        b"base64_encode": _base64_encode,
        b"base64_decode": _base64_decode,
        b"crc32":         _crc32,
        b"encrypt":       _encrypt,
        b"decrypt":       _decrypt,
    })
    return engine.sandbox.module(fields)
