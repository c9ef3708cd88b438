"""
CryptoProvider.py

Defines the capability interface every cryptographic primitive goes through,
and the default implementation of it.

The envelope code never calls a cipher library directly. Instead it asks a
CryptographicProvider for:
  - random bytes
  - salted AES-256-CBC encryption/decryption (OpenSSL "enc -salt" layout)
  - RSA PKCS#1 v1.5 encryption/decryption
  - a digest for fingerprints

Dependencies:
    pip install pycryptodomex rsa
"""

from abc import ABC, abstractmethod

from Cryptodome.Cipher import AES
from Cryptodome.Hash import SHA256
from Cryptodome.Random import get_random_bytes
from Cryptodome.Util.Padding import pad, unpad
from rsa import encrypt, decrypt, DecryptionError, PublicKey, PrivateKey

from Seal_Functions.Errors import (
    CipherMismatch,
    EntropyUnavailable,
    UnwrapFailure,
    WrapFailure,
)
from Seal_Functions.Settings import (
    AES_IV_BYTES,
    AES_KEY_BYTES,
    SALT_BYTES,
    SALT_MAGIC,
)
from Seal_Functions.Workspace import wipe_buffer


class CryptographicProvider(ABC):
    """
    Abstract set of primitives used by the envelope stages.

    Implementations raise the Seal_Functions error types directly, so the
    stages above them never have to know which library was used.
    """

    @abstractmethod
    def generate_random_bytes(self, length: int) -> bytes:
        """
        Returns 'length' bytes from a cryptographically secure source.
        Raises EntropyUnavailable if the source cannot be read.
        """
        pass

    @abstractmethod
    def symmetric_encrypt(self, plaintext: bytes, passphrase: bytes) -> bytes:
        """
        Encrypts 'plaintext' under a key derived from 'passphrase'.
        The result must carry its own salt/IV.
        """
        pass

    @abstractmethod
    def symmetric_decrypt(self, ciphertext: bytes, passphrase: bytes) -> bytes:
        """
        Reverses symmetric_encrypt. Raises CipherMismatch on a wrong
        passphrase or a damaged ciphertext.
        """
        pass

    @abstractmethod
    def asymmetric_encrypt(self, message: bytes, public_key: PublicKey) -> bytes:
        """
        RSA-encrypts 'message' with PKCS#1 v1.5 padding.
        Raises WrapFailure if the key cannot carry the message.
        """
        pass

    @abstractmethod
    def asymmetric_decrypt(self, ciphertext: bytes, private_key: PrivateKey) -> bytes:
        """
        Reverses asymmetric_encrypt. Raises UnwrapFailure when the private key
        does not match or the ciphertext is damaged.
        """
        pass

    @abstractmethod
    def digest(self, data: bytes) -> str:
        """Returns a printable, file-system safe digest of 'data'."""
        pass


def derive_key_and_iv(passphrase: bytes, salt: bytes) -> tuple:
    """
    OpenSSL EVP_BytesToKey with SHA-256 and a single iteration, which is what
    'openssl enc -aes-256-cbc -salt' uses by default.

    D_1 = H(passphrase + salt), D_i = H(D_(i-1) + passphrase + salt),
    concatenated until there are enough bytes for the key and the IV.

    :param passphrase: The encoded session key
    :param salt: SALT_BYTES of random salt
    :return: (key, iv) as bytearrays, so the caller can wipe them
    """
    derived = bytearray()
    block = b''
    while len(derived) < AES_KEY_BYTES + AES_IV_BYTES:
        block = SHA256.new(block + passphrase + salt).digest()
        derived += block
    # Slicing a bytearray gives new bytearrays
    key = derived[:AES_KEY_BYTES]
    iv = derived[AES_KEY_BYTES:AES_KEY_BYTES + AES_IV_BYTES]
    wipe_buffer(derived)
    return key, iv


class DefaultProvider(CryptographicProvider):
    """
    Production provider: AES and SHA-256 from pycryptodomex,
    RSA PKCS#1 v1.5 from the 'rsa' package.
    """

    def generate_random_bytes(self, length: int) -> bytes:
        try:
            return get_random_bytes(length)
        except (OSError, NotImplementedError) as e:
            raise EntropyUnavailable(f"Secure random source unavailable: {e}")

    def symmetric_encrypt(self, plaintext: bytes, passphrase: bytes) -> bytes:
        """
        Produces b'Salted__' + salt + AES-256-CBC(PKCS#7(plaintext)).
        """
        # A fresh salt per payload gives a fresh key and IV
        salt = self.generate_random_bytes(SALT_BYTES)
        key, iv = derive_key_and_iv(passphrase, salt)
        try:
            # Create an AES cipher object in CBC mode with the derived key and IV
            cipher = AES.new(key, AES.MODE_CBC, iv)
        finally:
            wipe_buffer(key)
            wipe_buffer(iv)
        # Apply PKCS#7 padding, then encrypt; empty input still gives one block
        return SALT_MAGIC + salt + cipher.encrypt(pad(plaintext, AES.block_size))

    def symmetric_decrypt(self, ciphertext: bytes, passphrase: bytes) -> bytes:
        # Header: magic followed by the salt
        header_len = len(SALT_MAGIC) + SALT_BYTES
        if len(ciphertext) < header_len or not ciphertext.startswith(SALT_MAGIC):
            raise CipherMismatch("Payload is missing its salt header.")

        # CBC needs at least one whole block
        body = ciphertext[header_len:]
        if not body or len(body) % AES.block_size:
            raise CipherMismatch("Payload is not a whole number of cipher blocks.")

        key, iv = derive_key_and_iv(passphrase, ciphertext[len(SALT_MAGIC):header_len])
        try:
            cipher = AES.new(key, AES.MODE_CBC, iv)
        finally:
            wipe_buffer(key)
            wipe_buffer(iv)
        try:
            # Decrypt and then remove PKCS#7 padding
            return unpad(cipher.decrypt(body), AES.block_size)
        except ValueError:
            # Wrong key and corrupted data both surface as bad padding
            raise CipherMismatch("Payload did not decrypt under the session key.")

    def asymmetric_encrypt(self, message: bytes, public_key: PublicKey) -> bytes:
        try:
            # PKCS#1 v1.5 type 2 padding; fails when the key is too small
            return encrypt(message, public_key)
        except (OverflowError, ValueError, TypeError) as e:
            raise WrapFailure(f"RSA encryption failed: {e}")

    def asymmetric_decrypt(self, ciphertext: bytes, private_key: PrivateKey) -> bytes:
        try:
            return decrypt(ciphertext, private_key)
        except (DecryptionError, OverflowError, ValueError) as e:
            raise UnwrapFailure(f"RSA decryption failed: {e}")

    def digest(self, data: bytes) -> str:
        return SHA256.new(data).hexdigest()
