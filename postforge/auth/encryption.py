"""Authenticated encryption for third-party API keys stored at rest.

Each payload carries its own salt, so a fresh key is derived per record
from the master secret:

    base64( salt[64] || iv[16] || tag[16] || ciphertext )
"""

import base64
import binascii
import secrets

import structlog
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from postforge.core.exceptions import AuthenticationError

logger = structlog.get_logger(__name__)

SALT_LENGTH = 64
IV_LENGTH = 16
TAG_LENGTH = 16
KEY_LENGTH = 32
PBKDF2_ITERATIONS = 100_000
MIN_MASTER_SECRET_LENGTH = 64

_HEADER_LENGTH = SALT_LENGTH + IV_LENGTH + TAG_LENGTH


def derive_key(master_secret: str, salt: bytes) -> bytes:
    """
    Derive a 256-bit AES key from the master secret.

    Args:
        master_secret: Server-wide encryption secret
        salt: Per-record random salt

    Returns:
        32-byte key
    """
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA512(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=PBKDF2_ITERATIONS,
    )
    return kdf.derive(master_secret.encode("utf-8"))


def encrypt(plaintext: str, master_secret: str) -> str:
    """
    Encrypt a credential with AES-256-GCM.

    Args:
        plaintext: Secret to protect (e.g. a provider API key)
        master_secret: Server-wide encryption secret

    Returns:
        Base64 payload ``salt || iv || tag || ciphertext``

    Example:
        >>> payload = encrypt("sk-live-abc", master_secret)
        >>> decrypt(payload, master_secret)
        'sk-live-abc'
    """
    salt = secrets.token_bytes(SALT_LENGTH)
    iv = secrets.token_bytes(IV_LENGTH)
    key = derive_key(master_secret, salt)

    # AESGCM appends the tag to the ciphertext
    sealed = AESGCM(key).encrypt(iv, plaintext.encode("utf-8"), None)
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]

    return base64.b64encode(salt + iv + tag + ciphertext).decode("ascii")


def decrypt(payload: str, master_secret: str) -> str:
    """
    Decrypt a payload produced by :func:`encrypt`.

    Args:
        payload: Base64 payload
        master_secret: Server-wide encryption secret

    Returns:
        The original plaintext

    Raises:
        AuthenticationError: If the payload is malformed, was tampered with,
            or was encrypted under a different secret
    """
    try:
        raw = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        logger.debug("credential_decrypt_failed", reason="invalid_base64")
        raise AuthenticationError("Unable to decrypt credential") from e

    if len(raw) < _HEADER_LENGTH:
        logger.debug("credential_decrypt_failed", reason="payload_too_short", size=len(raw))
        raise AuthenticationError("Unable to decrypt credential")

    salt = raw[:SALT_LENGTH]
    iv = raw[SALT_LENGTH : SALT_LENGTH + IV_LENGTH]
    tag = raw[SALT_LENGTH + IV_LENGTH : _HEADER_LENGTH]
    ciphertext = raw[_HEADER_LENGTH:]

    key = derive_key(master_secret, salt)
    try:
        plaintext = AESGCM(key).decrypt(iv, ciphertext + tag, None)
    except InvalidTag as e:
        logger.debug("credential_decrypt_failed", reason="authentication_tag_mismatch")
        raise AuthenticationError("Unable to decrypt credential") from e

    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as e:
        logger.debug("credential_decrypt_failed", reason="invalid_utf8")
        raise AuthenticationError("Unable to decrypt credential") from e


class CredentialCipher:
    """
    Encrypts and decrypts credentials under one validated master secret.

    Args:
        master_secret: At least 64 characters (e.g. ``secrets.token_hex(32)``)

    Raises:
        ValueError: If the master secret is missing or too short
    """

    def __init__(self, master_secret: str):
        if not master_secret or len(master_secret) < MIN_MASTER_SECRET_LENGTH:
            raise ValueError(
                f"Encryption key must be at least {MIN_MASTER_SECRET_LENGTH} characters"
            )
        self._master_secret = master_secret

    def encrypt(self, plaintext: str) -> str:
        return encrypt(plaintext, self._master_secret)

    def decrypt(self, payload: str) -> str:
        return decrypt(payload, self._master_secret)

    def __repr__(self) -> str:
        return "CredentialCipher(master_secret=***)"
