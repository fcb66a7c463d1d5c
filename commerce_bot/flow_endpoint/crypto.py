"""WhatsApp Flow envelope encryption.

Requests carry an AES key wrapped with our RSA public key (OAEP, SHA-256), the
AES-GCM encrypted JSON body with its 16-byte tag appended, and the IV. Replies
are encrypted with the same AES key under the bit-inverted IV.
"""

import base64
import binascii
import json
import logging
from pathlib import Path
from typing import Any, NamedTuple, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding as asympad
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from commerce_bot.config import config
from commerce_bot.errors import FlowDecryptionFailed, FlowEncryptionFailed, FlowKeyError

logger = logging.getLogger(__name__)

TAG_LENGTH = 16
AES_KEY_LENGTHS = {16: "AES-128-GCM", 32: "AES-256-GCM"}

DECRYPT_KEY_FAILED = "Failed to decrypt the request. Please verify your private key."
DECRYPT_DATA_FAILED = "Failed to decrypt flow data."
PARSE_FAILED = "Failed to parse decrypted data."
ENCRYPT_FAILED = "Failed to encrypt response."


class FlowDecryption(NamedTuple):
    aes_key: bytes
    iv: bytes
    payload: dict


def flip_iv(iv: bytes) -> bytes:
    return bytes(b ^ 0xFF for b in iv)


def _b64decode(value: Optional[str], field: str) -> bytes:
    if not value:
        raise FlowDecryptionFailed(f"Missing {field}")
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        logger.error(f"Invalid base64 in {field}")
        raise FlowDecryptionFailed(DECRYPT_DATA_FAILED) from e


def _aes_cipher(aes_key: bytes, mode) -> Cipher:
    if len(aes_key) not in AES_KEY_LENGTHS:
        raise ValueError(f"Unsupported AES key length: {len(aes_key)} bytes")
    return Cipher(algorithms.AES(aes_key), mode, backend=default_backend())


# ============================================================
# PRIVATE KEY LOADING
# ============================================================
def load_private_key(key_data: bytes, passphrase: Optional[str] = None) -> RSAPrivateKey:
    """Load an RSA private key from PEM (PKCS#1, PKCS#8, encrypted) or DER bytes."""
    password = passphrase.encode() if passphrase else None
    attempts = []
    if b"-----BEGIN" in key_data:
        if b"BEGIN PUBLIC KEY" in key_data and b"PRIVATE KEY" not in key_data:
            raise FlowKeyError("Provided key appears to be a PUBLIC key; a PRIVATE key is required.")
        attempts.append((serialization.load_pem_private_key, password))
        if password is not None:
            attempts.append((serialization.load_pem_private_key, None))
    else:
        attempts.append((serialization.load_der_private_key, password))
        if password is not None:
            attempts.append((serialization.load_der_private_key, None))

    last_error: Optional[Exception] = None
    for loader, pwd in attempts:
        try:
            key = loader(key_data, password=pwd, backend=default_backend())
        except (TypeError, ValueError) as e:
            last_error = e
            continue
        if not isinstance(key, RSAPrivateKey):
            raise FlowKeyError("Flow private key must be an RSA key")
        return key

    logger.error(f"Failed to load flow private key: {type(last_error).__name__}")
    raise FlowKeyError("Failed to load private key. Check the key format and passphrase.")


def resolve_private_key_bytes(settings=config) -> bytes:
    """Resolve key material: base64 env var, then PEM env var, then key path, then default file."""
    if settings.META_FLOW_PRIVATE_KEY_BASE64:
        try:
            return base64.b64decode(settings.META_FLOW_PRIVATE_KEY_BASE64.strip())
        except (binascii.Error, ValueError):
            logger.warning("⚠️ Failed to decode META_FLOW_PRIVATE_KEY_BASE64, trying other sources")

    pem = (settings.META_FLOW_PRIVATE_KEY_PEM or "").strip()
    if pem:
        return pem.replace("\\\\n", "\n").replace("\\n", "\n").encode()

    key_path = (settings.META_FLOW_PRIVATE_KEY_PATH or "").strip().strip("\"'")
    if key_path:
        try:
            return Path(key_path).read_bytes()
        except OSError as e:
            raise FlowKeyError(f"Failed to read private key from META_FLOW_PRIVATE_KEY_PATH: {key_path}") from e

    default_path = Path.cwd() / settings.DEFAULT_FLOW_PRIVATE_KEY_FILE
    if default_path.is_file():
        return default_path.read_bytes()

    raise FlowKeyError(
        "Private key not found. Set one of META_FLOW_PRIVATE_KEY_BASE64, "
        "META_FLOW_PRIVATE_KEY_PEM, META_FLOW_PRIVATE_KEY_PATH, or provide "
        f"{settings.DEFAULT_FLOW_PRIVATE_KEY_FILE}"
    )


# ============================================================
# ENVELOPE CRYPTO
# ============================================================
class FlowCryptoService:
    def __init__(self, private_key: Optional[RSAPrivateKey] = None, settings=config):
        self._private_key = private_key
        self.settings = settings

    @property
    def private_key(self) -> RSAPrivateKey:
        if self._private_key is None:
            key_data = resolve_private_key_bytes(self.settings)
            self._private_key = load_private_key(key_data, self.settings.META_FLOW_PRIVATE_KEY_PASSPHRASE)
            logger.info("✅ Flow private key loaded")
        return self._private_key

    def decrypt_request(self, envelope: dict) -> FlowDecryption:
        encrypted_aes_key = _b64decode(envelope.get("encrypted_aes_key"), "encrypted_aes_key")
        flow_data = _b64decode(envelope.get("encrypted_flow_data"), "encrypted_flow_data")
        iv = _b64decode(envelope.get("initial_vector"), "initial_vector")

        try:
            aes_key = self.private_key.decrypt(
                encrypted_aes_key,
                asympad.OAEP(
                    mgf=asympad.MGF1(algorithm=hashes.SHA256()),
                    algorithm=hashes.SHA256(),
                    label=None,
                ),
            )
        except ValueError as e:
            logger.error(f"Failed to decrypt AES key: {type(e).__name__}")
            raise FlowDecryptionFailed(DECRYPT_KEY_FAILED) from e

        if len(flow_data) < TAG_LENGTH:
            logger.error(f"Flow data too short: {len(flow_data)} bytes")
            raise FlowDecryptionFailed(DECRYPT_DATA_FAILED)

        body, tag = flow_data[:-TAG_LENGTH], flow_data[-TAG_LENGTH:]
        try:
            decryptor = _aes_cipher(aes_key, modes.GCM(iv, tag)).decryptor()
            plaintext = decryptor.update(body) + decryptor.finalize()
        except (InvalidTag, ValueError) as e:
            logger.error(f"Failed to decrypt flow data: {type(e).__name__}")
            raise FlowDecryptionFailed(DECRYPT_DATA_FAILED) from e

        try:
            payload = json.loads(plaintext.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.error(f"Failed to parse decrypted JSON: {type(e).__name__}")
            raise FlowDecryptionFailed(PARSE_FAILED) from e
        if not isinstance(payload, dict):
            raise FlowDecryptionFailed(PARSE_FAILED)

        logger.debug(f"Decrypted flow request with {AES_KEY_LENGTHS[len(aes_key)]}")
        return FlowDecryption(aes_key=aes_key, iv=iv, payload=payload)

    def encrypt_response(self, response: dict[str, Any], aes_key: bytes, iv: bytes) -> str:
        """Encrypt under the flipped request IV; returns base64(ciphertext || tag)."""
        if not aes_key or not iv:
            raise FlowEncryptionFailed(ENCRYPT_FAILED)
        try:
            encryptor = _aes_cipher(aes_key, modes.GCM(flip_iv(iv))).encryptor()
            encrypted = encryptor.update(json.dumps(response).encode("utf-8")) + encryptor.finalize()
        except (ValueError, TypeError) as e:
            logger.error(f"Failed to encrypt flow response: {type(e).__name__}")
            raise FlowEncryptionFailed(ENCRYPT_FAILED) from e

        return base64.b64encode(encrypted + encryptor.tag).decode("utf-8")
