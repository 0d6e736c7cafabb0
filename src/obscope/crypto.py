"""Secret encryption at rest: AES-256-GCM under a per-instance master key."""

import os
from pathlib import Path

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

_NONCE_SIZE = 12  # 96 bits, recommended for AES-GCM
_KEY_SIZE = 32
_KEY_FILE = ".secret"


def get_or_create_master_key(data_dir: Path) -> bytes:
    """Load the master key from <data_dir>/.secret, creating it on first use.

    Losing the file makes every stored secret unrecoverable.
    """
    secret_path = data_dir / _KEY_FILE
    if secret_path.exists():
        key = secret_path.read_bytes()
        if len(key) != _KEY_SIZE:
            raise ValueError(f"Master key at {secret_path} is not {_KEY_SIZE} bytes")
        return key
    key = AESGCM.generate_key(bit_length=_KEY_SIZE * 8)
    secret_path.write_bytes(key)
    secret_path.chmod(0o600)
    return key


def encrypt_secret(plaintext: str, master_key: bytes, associated: str = "") -> bytes:
    """Encrypt a secret, binding it to an associated id (e.g. the credential id).

    Returns nonce + ciphertext + tag as one blob.
    """
    nonce = os.urandom(_NONCE_SIZE)
    ciphertext = AESGCM(master_key).encrypt(
        nonce, plaintext.encode("utf-8"), associated.encode("utf-8")
    )
    return nonce + ciphertext


def decrypt_secret(blob: bytes, master_key: bytes, associated: str = "") -> str:
    """Reverse encrypt_secret.

    Raises cryptography.exceptions.InvalidTag on tampering, a wrong key or a
    blob that was bound to a different id.
    """
    nonce, ciphertext = blob[:_NONCE_SIZE], blob[_NONCE_SIZE:]
    plaintext = AESGCM(master_key).decrypt(nonce, ciphertext, associated.encode("utf-8"))
    return plaintext.decode("utf-8")
