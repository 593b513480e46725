"""Webhook link encryption (AES-256-CBC).

The Bitrix24 incoming webhook URL is a bearer secret, so it is stored only
as ciphertext next to its key and IV. An HMAC-SHA256 tag over IV and
ciphertext is appended, so decrypting with a wrong key or IV raises
instead of returning garbage.

Stored format:
    secret_key      hex, 32 bytes
    iv              hex, 16 bytes
    encrypted_link  base64(ciphertext || tag)
"""

import base64
import binascii
import secrets
from dataclasses import dataclass

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, hmac, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from core.errors import DecryptionError, ValidationError

KEY_SIZE = 32
IV_SIZE = 16
TAG_SIZE = 32
BLOCK_SIZE = algorithms.AES.block_size  # bits

_MAC_INFO = b"bx-link-mac"


@dataclass(frozen=True)
class Credential:
    """Everything needed to decrypt the webhook link later."""
    secret_key: str
    iv: str
    encrypted_link: str

    def to_dict(self) -> dict:
        return {
            "secret_key": self.secret_key,
            "iv": self.iv,
            "encrypted_link": self.encrypted_link,
        }


def generate_key_and_iv() -> tuple:
    """Generate a fresh random AES-256 key and CBC IV (raw bytes)."""
    return secrets.token_bytes(KEY_SIZE), secrets.token_bytes(IV_SIZE)


def _mac_key(key: bytes) -> bytes:
    return HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=None,
        info=_MAC_INFO,
    ).derive(key)


def _tag(key: bytes, iv: bytes, ciphertext: bytes) -> bytes:
    h = hmac.HMAC(_mac_key(key), hashes.SHA256())
    h.update(iv + ciphertext)
    return h.finalize()


def encrypt(plaintext: str, key: bytes, iv: bytes) -> bytes:
    """Encrypt text with AES-256-CBC + PKCS7 and append the HMAC tag."""
    if len(key) != KEY_SIZE or len(iv) != IV_SIZE:
        raise ValueError("Key must be 32 bytes and IV 16 bytes")

    padder = padding.PKCS7(BLOCK_SIZE).padder()
    padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()

    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    ciphertext = encryptor.update(padded) + encryptor.finalize()
    return ciphertext + _tag(key, iv, ciphertext)


def initialize(secret_plaintext: str) -> Credential:
    """Encrypt the webhook link under a freshly generated key and IV.

    Args:
        secret_plaintext: Bitrix24 incoming webhook URL

    Returns:
        Credential with hex key/IV and base64 ciphertext, ready to persist

    Raises:
        ValidationError: If the secret is empty
    """
    if not secret_plaintext or not isinstance(secret_plaintext, str):
        raise ValidationError("Webhook link is required", source="crypto.initialize")

    key, iv = generate_key_and_iv()
    blob = encrypt(secret_plaintext, key, iv)
    return Credential(
        secret_key=key.hex(),
        iv=iv.hex(),
        encrypted_link=base64.b64encode(blob).decode("ascii"),
    )


def decrypt(ciphertext: str, key: str, iv: str) -> str:
    """Decrypt a link produced by initialize().

    Args:
        ciphertext: base64 ciphertext with tag
        key: hex secret key
        iv: hex IV

    Raises:
        DecryptionError: On undecodable input, wrong lengths, a tag that does
            not verify (wrong key/IV, tampered data) or corrupt padding
    """
    source = "crypto.decrypt"
    if not ciphertext or not key or not iv:
        raise DecryptionError("Ciphertext, key and IV are required", source=source)

    try:
        raw_key = bytes.fromhex(key)
        raw_iv = bytes.fromhex(iv)
        blob = base64.b64decode(ciphertext, validate=True)
    except (ValueError, binascii.Error) as e:
        raise DecryptionError(f"Cannot decode credential: {e}", source=source)

    if len(raw_key) != KEY_SIZE:
        raise DecryptionError(f"Invalid key length: {len(raw_key)}", source=source)
    if len(raw_iv) != IV_SIZE:
        raise DecryptionError(f"Invalid IV length: {len(raw_iv)}", source=source)

    body, tag = blob[:-TAG_SIZE], blob[-TAG_SIZE:]
    if not body or len(body) % (BLOCK_SIZE // 8) != 0:
        raise DecryptionError(f"Invalid ciphertext length: {len(blob)}", source=source)

    h = hmac.HMAC(_mac_key(raw_key), hashes.SHA256())
    h.update(raw_iv + body)
    try:
        h.verify(tag)
    except InvalidSignature:
        raise DecryptionError("Ciphertext does not match key/IV", source=source)

    decryptor = Cipher(algorithms.AES(raw_key), modes.CBC(raw_iv)).decryptor()
    padded = decryptor.update(body) + decryptor.finalize()
    try:
        unpadder = padding.PKCS7(BLOCK_SIZE).unpadder()
        data = unpadder.update(padded) + unpadder.finalize()
        return data.decode("utf-8")
    except (ValueError, UnicodeDecodeError) as e:
        raise DecryptionError(f"Corrupt padding or payload: {e}", source=source)
