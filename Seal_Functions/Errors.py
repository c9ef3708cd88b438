"""
Errors.py

Exception types raised by the envelope core and the key acquisition layer.

Two kinds of errors exist:
  - per-item errors (UnsupportedKeyType, MalformedKey, WrapFailure) that are
    collected and reported while the operation carries on
  - fatal errors that end the encrypt/decrypt operation

None of these ever terminate the process; SealMessage.py decides the exit code.
"""


class SealError(Exception):
    """
    Base class for every error raised by Seal_Functions.

    :param message: Human readable description, shown to the user as-is.
    :param details: Optional extra context (fingerprint, source, ...).
    """
    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            'error': self.__class__.__name__,
            'message': self.message,
            'details': self.details,
        }


# ---------------------------------------------------------------------
# Key normalization
# ---------------------------------------------------------------------

class UnsupportedKeyType(SealError):
    """A well-formed key of an algorithm other than RSA. Non-fatal."""


class MalformedKey(SealError):
    """Key material that cannot be parsed into a canonical key. Non-fatal."""


class NoSupportedKeys(SealError):
    """Normalization finished without a single usable RSA key."""


# ---------------------------------------------------------------------
# Cryptographic stages
# ---------------------------------------------------------------------

class EntropyUnavailable(SealError):
    """The secure random source could not produce bytes."""


class WrapFailure(SealError):
    """The session key could not be encrypted for one recipient. Non-fatal."""


class NoValidRecipients(SealError):
    """Not a single recipient could receive a wrapped session key."""


class UnwrapFailure(SealError):
    """The private key could not recover a session key from a wrapped key."""


class CipherMismatch(SealError):
    """The payload did not decrypt under the recovered session key."""


# ---------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------

class TransportParseError(SealError):
    """The container text is not a well-formed sequence of blocks."""


class KeyNotAddressed(SealError):
    """The caller's key is not among the envelope's recipients."""


# ---------------------------------------------------------------------
# Key acquisition (outside the core)
# ---------------------------------------------------------------------

class KeySourceError(SealError):
    """A key file or directory lookup could not be read."""
