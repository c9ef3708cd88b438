"""
EncryptionManager.py

The three cryptographic stages of a digital envelope:
- SessionKey generation (one fresh random key per envelope)
- Symmetric payload encryption/decryption under the session key
- RSA wrapping/unwrapping of the session key for each recipient

Each stage goes through a CryptographicProvider, so the primitives can be
swapped (tests use a deterministic stand-in where randomness is not under test).
"""

import base64
import binascii
from dataclasses import dataclass

from rsa import PrivateKey

from Seal_Functions.CryptoProvider import CryptographicProvider, DefaultProvider
from Seal_Functions.Errors import MalformedKey, UnwrapFailure, WrapFailure
from Seal_Functions.KeyNormalizer import KeyAlgorithm, PublicKey
from Seal_Functions.Settings import SALT_BYTES, SALT_MAGIC, SESSION_KEY_BYTES
from Seal_Functions.Workspace import wipe_buffer


class SessionKey:
    """
    A single-use symmetric key.

    The raw bytes and their encoded form (base64 text, which is what actually
    keys the cipher and what gets wrapped) both live in bytearrays, computed
    once, so wipe() can overwrite them when the owning operation is over.
    """
    def __init__(self, material):
        if len(material) != SESSION_KEY_BYTES:
            raise ValueError(f"Session key must be {SESSION_KEY_BYTES} bytes, got {len(material)}.")
        self.material = bytearray(material)
        self.encoded = bytearray(base64.b64encode(self.material))

    def wipe(self) -> None:
        wipe_buffer(self.material)
        wipe_buffer(self.encoded)

    def __repr__(self):
        # Never print key bytes
        return f"SessionKey(<{len(self.material)} bytes>)"


@dataclass(frozen=True)
class EncryptedPayload:
    """
    Symmetric ciphertext of the plaintext: b'Salted__' + salt + AES-CBC body.
    Everything needed for decryption (besides the key) is inline.
    """
    data: bytes

    @property
    def salt(self) -> bytes:
        return self.data[len(SALT_MAGIC):len(SALT_MAGIC) + SALT_BYTES]


@dataclass(frozen=True)
class WrappedKey:
    """The session key, RSA-encrypted for the key with this fingerprint."""
    fingerprint: str
    ciphertext: bytes


def generate_session_key(provider: CryptographicProvider = None) -> SessionKey:
    """
    Draws a fresh session key from the provider's secure random source.
    Raises EntropyUnavailable if that source fails.
    """
    provider = provider or DefaultProvider()
    return SessionKey(provider.generate_random_bytes(SESSION_KEY_BYTES))


def encrypt_payload(plaintext: bytes, session_key: SessionKey,
                    provider: CryptographicProvider = None) -> EncryptedPayload:
    """
    Encrypts 'plaintext' (possibly empty) under the session key.

    :param plaintext: The message bytes
    :param session_key: The envelope's session key
    :return: An EncryptedPayload carrying its own salt
    """
    provider = provider or DefaultProvider()
    return EncryptedPayload(provider.symmetric_encrypt(bytes(plaintext), session_key.encoded))


def decrypt_payload(payload: EncryptedPayload, session_key: SessionKey,
                    provider: CryptographicProvider = None) -> bytes:
    """
    Recovers the plaintext. Raises CipherMismatch on a wrong key or damaged
    payload. There is no authentication tag, so some damage goes undetected.
    """
    provider = provider or DefaultProvider()
    return provider.symmetric_decrypt(payload.data, session_key.encoded)


def wrap_session_key(session_key: SessionKey, recipient: PublicKey,
                     provider: CryptographicProvider = None) -> WrappedKey:
    """
    RSA-encrypts the encoded session key with the recipient's public key.

    :raises WrapFailure: if the key is not RSA, cannot be converted, or is
                         too small to carry the session key.
    """
    provider = provider or DefaultProvider()
    if recipient.algorithm is not KeyAlgorithm.RSA:
        raise WrapFailure("Only RSA keys can wrap a session key.",
                          {'fingerprint': recipient.fingerprint})
    try:
        # Turn the canonical SSH blob back into an RSA public key
        public_key = recipient.rsa_key
    except MalformedKey as e:
        raise WrapFailure(f"Key could not be converted: {e.message}",
                          {'fingerprint': recipient.fingerprint})

    try:
        # RSA-encrypt the encoded session key so only this recipient can recover it
        ciphertext = provider.asymmetric_encrypt(session_key.encoded, public_key)
    except WrapFailure as e:
        e.details['fingerprint'] = recipient.fingerprint
        raise
    return WrappedKey(recipient.fingerprint, ciphertext)


def unwrap_session_key(wrapped: WrappedKey, private_key: PrivateKey,
                       provider: CryptographicProvider = None) -> SessionKey:
    """
    Recovers the session key from a wrapped key with our private key.

    :raises UnwrapFailure: when the private key does not fit or the wrapped
                           key was damaged in transit.
    """
    provider = provider or DefaultProvider()
    # RSA-decrypt the encoded session key using our private key
    encoded = bytearray(provider.asymmetric_decrypt(wrapped.ciphertext, private_key))
    material = bytearray()
    try:
        # A successful RSA decrypt must still yield a well-formed session key
        try:
            material = bytearray(base64.b64decode(encoded, validate=True))
        except (binascii.Error, ValueError):
            raise UnwrapFailure("Recovered session key is not valid base64.",
                                {'fingerprint': wrapped.fingerprint})
        if len(material) != SESSION_KEY_BYTES:
            raise UnwrapFailure("Recovered session key has the wrong length.",
                                {'fingerprint': wrapped.fingerprint})
        return SessionKey(material)
    finally:
        # SessionKey holds its own copies
        wipe_buffer(encoded)
        wipe_buffer(material)
