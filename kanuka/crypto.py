"""
Envelope encryption primitives.

The project's symmetric key is a random 256-bit AES-GCM key. It is wrapped
for each device with RSA-OAEP (SHA-256) under that device's public key.
Secret files are encrypted with AES-256-GCM under the symmetric key, using a
fresh 96-bit nonce every time, and stored as nonce || ciphertext || tag.
"""

import logging
import secrets
import typing

from cryptography.exceptions import InvalidTag, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .errors import (
    DecryptFailed,
    InvalidKeyFormat,
    InvalidPrivateKey,
    KeyDecryptFailed,
    PassphraseRequired,
)

log = logging.getLogger(__name__)

CONTENT_KEY_SIZE = 32
NONCE_SIZE = 12
TAG_SIZE = 16
RSA_KEY_SIZE = 2048
RSA_PUBLIC_EXPONENT = 65537

PrivateKey = rsa.RSAPrivateKey
PublicKey = rsa.RSAPublicKey

OAEP = padding.OAEP(
    mgf=padding.MGF1(algorithm=hashes.SHA256()),
    algorithm=hashes.SHA256(),
    label=None)


def generate_content_key() -> bytes:
    return secrets.token_bytes(CONTENT_KEY_SIZE)


def generate_device_keypair() -> typing.Tuple[PublicKey, PrivateKey]:
    log.debug(f"Generating {RSA_KEY_SIZE} bit RSA keypair")
    private_key = rsa.generate_private_key(
        public_exponent=RSA_PUBLIC_EXPONENT,
        key_size=RSA_KEY_SIZE)
    return private_key.public_key(), private_key


def serialize_private_key(private_key: PrivateKey) -> bytes:
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption())


def serialize_public_key(public_key: PublicKey) -> bytes:
    return public_key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo)


def load_private_key(
        data: bytes,
        passphrase: typing.Optional[bytes] = None) -> PrivateKey:
    """
    Parse an RSA private key in PEM (PKCS#1 or PKCS#8) or OpenSSH format.

    Raises PassphraseRequired if the key is encrypted and no passphrase was
    given, or the passphrase was wrong.
    """
    data = data.strip()
    if not data.startswith(b'-----BEGIN'):
        raise InvalidPrivateKey("Private key is not in PEM or OpenSSH format")

    loader = (serialization.load_ssh_private_key
              if b'OPENSSH PRIVATE KEY' in data
              else serialization.load_pem_private_key)

    try:
        key = loader(data, password=passphrase or None)
    except TypeError as error:
        # Raised for encrypted keys without a password and vice versa.
        if passphrase is None:
            raise PassphraseRequired() from error
        raise InvalidPrivateKey(str(error)) from error
    except ValueError as error:
        if passphrase is not None:
            raise PassphraseRequired("Incorrect passphrase for private key") from error
        raise InvalidPrivateKey(f"Could not parse private key: {error}") from error
    except UnsupportedAlgorithm as error:
        raise InvalidPrivateKey(str(error)) from error

    if not isinstance(key, rsa.RSAPrivateKey):
        raise InvalidPrivateKey(
            f"Only RSA keys are supported, got {type(key).__name__}")
    return key


def load_public_key(data: typing.Union[bytes, str]) -> PublicKey:
    """Parse an RSA public key in PEM (SPKI or PKCS#1) or 'ssh-rsa' format."""
    if isinstance(data, str):
        data = data.encode()
    data = data.strip()

    try:
        if data.startswith(b'ssh-rsa'):
            key = serialization.load_ssh_public_key(data)
        elif data.startswith(b'-----BEGIN'):
            key = serialization.load_pem_public_key(data)
        else:
            raise InvalidKeyFormat("Public key is not in PEM or SSH format")
    except (ValueError, UnsupportedAlgorithm) as error:
        raise InvalidKeyFormat(f"Could not parse public key: {error}") from error

    if not isinstance(key, rsa.RSAPublicKey):
        raise InvalidKeyFormat(
            f"Only RSA keys are supported, got {type(key).__name__}")
    return key


def wrap_key(content_key: bytes, public_key: PublicKey) -> bytes:
    return public_key.encrypt(content_key, OAEP)


def unwrap_key(envelope: bytes, private_key: PrivateKey) -> bytes:
    try:
        content_key = private_key.decrypt(envelope, OAEP)
    except ValueError as error:
        raise KeyDecryptFailed() from error

    if len(content_key) != CONTENT_KEY_SIZE:
        raise KeyDecryptFailed(
            f"Symmetric key has length {len(content_key)}, expected {CONTENT_KEY_SIZE}")
    return content_key


def encrypt_content(content_key: bytes, plaintext: bytes) -> bytes:
    nonce = secrets.token_bytes(NONCE_SIZE)
    return nonce + AESGCM(content_key).encrypt(nonce, plaintext, None)


def decrypt_content(content_key: bytes, ciphertext: bytes) -> bytes:
    if len(ciphertext) < NONCE_SIZE + TAG_SIZE:
        raise DecryptFailed()

    nonce, body = ciphertext[:NONCE_SIZE], ciphertext[NONCE_SIZE:]
    try:
        return AESGCM(content_key).decrypt(nonce, body, None)
    except (InvalidTag, ValueError) as error:
        raise DecryptFailed() from error
