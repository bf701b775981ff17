"""
Encryption of stored credential passwords.

Each user gets their own Fernet key derived from the server secret and the
user's UID, so a leaked row cannot be decrypted with another user's key.
"""
import base64
import hashlib

from cryptography.fernet import Fernet, InvalidToken

from core import config


class DecryptionError(Exception):
    pass


def _get_encryption_key(uid: str) -> bytes:
    key_material = f"{uid}:{config.CREDENTIALS_ENCRYPTION_SECRET}".encode('utf-8')
    # SHA256 gives 32 bytes; Fernet wants them url-safe base64 encoded
    key_hash = hashlib.sha256(key_material).digest()
    return base64.urlsafe_b64encode(key_hash)


def encrypt_password(password: str, uid: str) -> str:
    f = Fernet(_get_encryption_key(uid))
    return f.encrypt(password.encode('utf-8')).decode('utf-8')


def decrypt_password(encrypted: str, uid: str) -> str:
    f = Fernet(_get_encryption_key(uid))
    try:
        return f.decrypt(encrypted.encode('utf-8')).decode('utf-8')
    except InvalidToken:
        raise DecryptionError("Stored password could not be decrypted")
