"""
EnvelopeManager.py

Builds and opens multi-recipient digital envelopes.

Encrypt:
  1) Generate a fresh session key
  2) Encrypt the plaintext once with it
  3) RSA-wrap the session key for every recipient (failures are skipped)
  4) Serialize payload + wrapped keys into one ASCII container

Decrypt:
  1) Parse the container
  2) Pick the wrapped key whose block name equals our key's fingerprint
  3) Unwrap it with our private key
  4) Decrypt the payload with the recovered session key

Session keys never outlive the operation: each one is tracked by the
operation's Workspace and wiped when the operation returns or fails.
"""

import logging
from dataclasses import dataclass, field

from rsa import PrivateKey

from Seal_Functions.CryptoProvider import CryptographicProvider, DefaultProvider
from Seal_Functions.EncryptionManager import (
    EncryptedPayload,
    WrappedKey,
    decrypt_payload,
    encrypt_payload,
    generate_session_key,
    unwrap_session_key,
    wrap_session_key,
)
from Seal_Functions.Errors import KeyNotAddressed, NoValidRecipients, WrapFailure
from Seal_Functions.KeyNormalizer import PublicKey, Recipient, public_key_from_private
from Seal_Functions.TransportCodec import decode_container, encode_container
from Seal_Functions.Workspace import Workspace

logger = logging.getLogger(__name__)


@dataclass
class OperationContext:
    """Everything one encrypt/decrypt call needs besides its inputs."""
    provider: CryptographicProvider
    workspace: Workspace


@dataclass(frozen=True)
class Envelope:
    """
    One encrypted payload plus one wrapped session key per recipient.
    An envelope without wrapped keys cannot be opened by anyone and is refused.
    """
    payload: EncryptedPayload
    wrapped_keys: tuple

    def __post_init__(self):
        if not self.wrapped_keys:
            raise NoValidRecipients("An envelope needs at least one wrapped key.")

    def find(self, fingerprint: str):
        for wrapped in self.wrapped_keys:
            if wrapped.fingerprint == fingerprint:
                return wrapped
        return None

    def to_container(self) -> str:
        return encode_container(self.payload, self.wrapped_keys)


@dataclass
class EncryptionResult:
    """
    container: the ASCII container to hand to the recipients
    envelope:  the envelope it was built from
    failures:  (fingerprint, WrapFailure) for every recipient that was skipped
    """
    container: str
    envelope: Envelope
    failures: list = field(default_factory=list)

    @property
    def recipients(self) -> list:
        return [wrapped.fingerprint for wrapped in self.envelope.wrapped_keys]


def _as_public_key(item) -> PublicKey:
    return item.key if isinstance(item, Recipient) else item


class EnvelopeEncryptor:
    """
    Encrypts a plaintext for a set of canonical RSA public keys.
    """
    def __init__(self, provider: CryptographicProvider = None):
        self.provider = provider or DefaultProvider()

    def build(self, plaintext: bytes, recipients, context: OperationContext) -> tuple:
        """
        Creates the Envelope inside an already open operation context.

        :param plaintext: Message bytes (may be empty)
        :param recipients: Iterable of PublicKey or Recipient
        :param context: The operation's provider and workspace
        :return: (Envelope, failures)
        :raises NoValidRecipients: if no recipient could be wrapped for
        """
        # Generate a fresh session key, wiped when the workspace closes
        session_key = context.workspace.track(generate_session_key(context.provider))
        # Encrypt the plaintext once under the session key
        payload = encrypt_payload(plaintext, session_key, context.provider)

        wrapped_keys = []
        failures = []
        seen = set()
        for item in recipients:
            key = _as_public_key(item)
            if key.fingerprint in seen:
                continue
            seen.add(key.fingerprint)

            try:
                # Wrap the session key with this recipient's public key
                wrapped_keys.append(wrap_session_key(session_key, key, context.provider))
                logger.debug("Wrapped session key for %s", key.fingerprint)
            except WrapFailure as e:
                # One unusable recipient does not stop the others
                logger.warning("Skipping recipient %s: %s", key.fingerprint, e.message)
                failures.append((key.fingerprint, e))

        if not wrapped_keys:
            raise NoValidRecipients(
                "The session key could not be wrapped for any recipient.",
                {'failures': [(fp, error.message) for fp, error in failures]},
            )
        return Envelope(payload, tuple(wrapped_keys)), failures

    def encrypt(self, plaintext: bytes, recipients) -> EncryptionResult:
        """
        Runs a complete encrypt operation in its own workspace.

        :return: EncryptionResult with the container text and skipped recipients
        """
        with Workspace() as workspace:
            context = OperationContext(self.provider, workspace)
            envelope, failures = self.build(plaintext, recipients, context)
            container = envelope.to_container()
        return EncryptionResult(container, envelope, failures)


class EnvelopeDecryptor:
    """
    Opens a container for the holder of one private key.
    """
    def __init__(self, provider: CryptographicProvider = None):
        self.provider = provider or DefaultProvider()

    def recipients(self, container) -> list:
        """Fingerprints of every key the container is addressed to."""
        return [name for name, _ in decode_container(container).wrapped]

    def decrypt(self, container, own_key, own_private_key: PrivateKey) -> bytes:
        """
        Recovers the plaintext.

        :param container: Container text (str or ASCII bytes)
        :param own_key: Our canonical PublicKey/Recipient, or None to derive it
                        from own_private_key
        :param own_private_key: The rsa.PrivateKey matching own_key
        :raises TransportParseError: the container is malformed
        :raises KeyNotAddressed: no wrapped key carries our fingerprint
        :raises UnwrapFailure: our wrapped key did not decrypt
        :raises CipherMismatch: the payload did not decrypt
        """
        with Workspace() as workspace:
            context = OperationContext(self.provider, workspace)
            # Split the container into the payload and the wrapped keys
            decoded = decode_container(container)

            if own_key is None:
                own_key = public_key_from_private(own_private_key, provider=context.provider)
            fingerprint = _as_public_key(own_key).fingerprint

            # Fingerprints are unique, so the first match is the only one
            ciphertext = next((data for name, data in decoded.wrapped if name == fingerprint), None)
            if ciphertext is None:
                raise KeyNotAddressed(
                    "This key is not among the envelope's recipients.",
                    {'fingerprint': fingerprint},
                )

            # Unwrap our copy of the session key with our private key
            session_key = workspace.track(
                unwrap_session_key(WrappedKey(fingerprint, ciphertext), own_private_key, context.provider)
            )
            logger.debug("Recovered session key for %s", fingerprint)
            # Decrypt the payload with the recovered session key
            return decrypt_payload(EncryptedPayload(decoded.payload), session_key, context.provider)


def create_digital_envelope(plaintext: bytes, recipients, provider: CryptographicProvider = None) -> str:
    """
    Encrypts 'plaintext' for every key in 'recipients' and returns the
    container text. Recipients that cannot be wrapped for are skipped.
    """
    return EnvelopeEncryptor(provider).encrypt(plaintext, recipients).container


def unpack_digital_envelope(container, private_key: PrivateKey, own_key=None,
                            provider: CryptographicProvider = None) -> bytes:
    """
    Reverses create_digital_envelope for the holder of 'private_key'.
    """
    return EnvelopeDecryptor(provider).decrypt(container, own_key, private_key)
