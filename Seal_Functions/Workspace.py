"""
Workspace.py

A scoped home for the secrets of one encrypt or decrypt operation.

Secrets (session key bytes, private key file contents) are registered with
track() and overwritten with zeros when the scope closes, on every exit path:
normal return, any exception, or KeyboardInterrupt.

The default provider works entirely in memory, so nothing is ever spilled to
disk and the workspace needs no temporary directory.

Usage:
    with Workspace() as workspace:
        key = workspace.track(bytearray(secret_bytes))
        ...
    # key is all zeros here
"""

import logging

logger = logging.getLogger(__name__)


def wipe_buffer(buffer: bytearray) -> None:
    """Overwrites a mutable buffer with zeros in place."""
    buffer[:] = bytes(len(buffer))


class Workspace:
    """
    Holds references to mutable secret buffers and wipes them on close().
    A workspace belongs to exactly one operation and is not shared.
    """
    def __init__(self):
        self._secrets = []
        self.closed = False

    def track(self, secret):
        """
        Registers a secret for wiping at scope exit.

        :param secret: A bytearray, or any object with a wipe() method
                       (e.g. EncryptionManager.SessionKey)
        :return: The same object, for inline use
        """
        if self.closed:
            raise RuntimeError("Workspace is already closed.")
        if not isinstance(secret, bytearray) and not hasattr(secret, 'wipe'):
            raise TypeError("Only bytearrays or objects with wipe() can be tracked.")
        self._secrets.append(secret)
        return secret

    def close(self) -> None:
        """Wipes every tracked secret. Safe to call more than once."""
        if self.closed:
            return
        for secret in self._secrets:
            if isinstance(secret, bytearray):
                wipe_buffer(secret)
            else:
                secret.wipe()
        logger.debug("Workspace closed, %d secret(s) wiped", len(self._secrets))
        self._secrets = []
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()
        return False
