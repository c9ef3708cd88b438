"""Shared fixtures: RSA key pairs, key file helpers and stand-in providers."""

import struct
from collections import namedtuple

import pytest
import rsa
import rsa.pem

from Seal_Functions.CryptoProvider import DefaultProvider
from Seal_Functions.Errors import EntropyUnavailable
from Seal_Functions.KeyNormalizer import (
    canonical_rsa_blob,
    encode_mpint,
    encode_string,
    public_key_from_rsa,
)
from Seal_Functions.KeySources import OPENSSH_MAGIC

KeyPair = namedtuple('KeyPair', ['public', 'private', 'key'])


def _make_pair(name: str, bits: int = 1024) -> KeyPair:
    public, private = rsa.newkeys(bits)
    return KeyPair(public, private, public_key_from_rsa(public, comment=name))


@pytest.fixture(scope='session')
def alice():
    return _make_pair('alice@example')


@pytest.fixture(scope='session')
def bob():
    return _make_pair('bob@example')


@pytest.fixture(scope='session')
def carol():
    return _make_pair('carol@example')


@pytest.fixture(scope='session')
def tiny():
    """A key too small to carry an encoded session key."""
    return _make_pair('tiny@example', bits=256)


def ed25519_line(comment: str = 'edward@example') -> str:
    """A well-formed OpenSSH key line of a non-RSA type."""
    import base64
    blob = encode_string(b'ssh-ed25519') + encode_string(bytes(range(32)))
    return f"ssh-ed25519 {base64.b64encode(blob).decode('ascii')} {comment}"


def openssh_private_pem(private: rsa.PrivateKey, cipher: bytes = b'none',
                        check: tuple = (0x1234, 0x1234)) -> bytes:
    """Builds an 'openssh-key-v1' private key file for 'private'."""
    section = struct.pack('>II', *check)
    section += encode_string(b'ssh-rsa')
    for value in (private.n, private.e, private.d, private.coef, private.p, private.q):
        section += encode_mpint(value)
    section += encode_string(b'test key')
    pad = 1
    while len(section) % 8:
        section += bytes([pad])
        pad += 1

    blob = OPENSSH_MAGIC
    blob += encode_string(cipher)
    blob += encode_string(b'none' if cipher == b'none' else b'bcrypt')
    blob += encode_string(b'')
    blob += struct.pack('>I', 1)
    blob += encode_string(canonical_rsa_blob(private.n, private.e))
    blob += encode_string(section)
    return rsa.pem.save_pem(blob, 'OPENSSH PRIVATE KEY')


class CountingProvider(DefaultProvider):
    """
    Default primitives, but random bytes come from a counter. Use it only
    where randomness is not what the test is about.
    """
    def __init__(self):
        self.counter = 0

    def generate_random_bytes(self, length: int) -> bytes:
        data = bytes((self.counter + index) % 256 for index in range(length))
        self.counter += 1
        return data


class NoEntropyProvider(DefaultProvider):
    def generate_random_bytes(self, length: int) -> bytes:
        raise EntropyUnavailable("no entropy in tests")


@pytest.fixture
def counting_provider():
    return CountingProvider()


@pytest.fixture
def write_file(tmp_path):
    """Writes bytes or text to a file under tmp_path and returns its path."""
    def _write(name: str, content) -> str:
        path = tmp_path / name
        if isinstance(content, str):
            content = content.encode('ascii')
        path.write_bytes(content)
        return str(path)
    return _write
