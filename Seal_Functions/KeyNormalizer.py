"""
KeyNormalizer.py

Turns raw public key material into canonical PublicKey records.

Raw material may be:
  - an OpenSSH public key line ("ssh-rsa AAAA... comment"), optionally
    preceded by authorized_keys options (command="...",no-pty ...)
  - a bare base64 SSH wire blob, or the binary blob itself
  - a PEM "RSA PUBLIC KEY" (PKCS#1) or "PUBLIC KEY" (X.509 SubjectPublicKeyInfo)

Every accepted key is re-encoded as the SSH wire blob
    string "ssh-rsa" | mpint e | mpint n
and fingerprinted over exactly those bytes, so the same RSA key always gets
the same fingerprint no matter which of the formats above it came from.
"""

import base64
import binascii
import logging
import re
import struct
from dataclasses import dataclass, field
from enum import Enum

import rsa
from Cryptodome.IO import PEM
from Cryptodome.PublicKey import RSA
from Cryptodome.Util.asn1 import DerObjectId, DerSequence

from Seal_Functions.CryptoProvider import CryptographicProvider, DefaultProvider
from Seal_Functions.Errors import (
    MalformedKey,
    NoSupportedKeys,
    UnsupportedKeyType,
)
from Seal_Functions.Settings import RSA_KEY_TYPE

logger = logging.getLogger(__name__)

_PEM_LABEL = re.compile(r'-----BEGIN ([A-Z0-9 ]+)-----')

# AlgorithmIdentifier of an RSA SubjectPublicKeyInfo
RSA_ENCRYPTION_OID = '1.2.840.113549.1.1.1'

# Longest key type name we accept in a binary blob (e.g. 'ecdsa-sha2-nistp521')
MAX_KEY_TYPE_LENGTH = 64


class KeyAlgorithm(Enum):
    RSA = RSA_KEY_TYPE
    UNSUPPORTED = 'unsupported'


@dataclass(frozen=True)
class PublicKey:
    """
    Canonical public key.

    Attributes:
        raw_material (bytes): SSH wire encoding of the key.
        algorithm (KeyAlgorithm): Always RSA for keys that leave normalize_keys().
        fingerprint (str): Hex SHA-256 of raw_material. The only thing used to
                           match a recipient against an envelope.
        comment (str): Free text from the key line. Not part of the identity.
    """
    raw_material: bytes
    algorithm: KeyAlgorithm
    fingerprint: str
    comment: str = field(default='', compare=False)

    @property
    def rsa_key(self) -> rsa.PublicKey:
        """The key as an rsa.PublicKey object, ready for rsa.encrypt()."""
        reader = SshReader(self.raw_material)
        reader.read_string()
        e = reader.read_mpint()
        n = reader.read_mpint()
        return rsa.PublicKey(n, e)

    def to_openssh(self) -> str:
        line = f"{self.algorithm.value} {base64.b64encode(self.raw_material).decode('ascii')}"
        if self.comment:
            line += f" {self.comment}"
        return line


@dataclass(frozen=True)
class Recipient:
    """A canonical key plus where it came from (file path, directory user, ...)."""
    key: PublicKey
    source: str = ''

    @property
    def fingerprint(self) -> str:
        return self.key.fingerprint


@dataclass(frozen=True)
class RawKey:
    """
    Candidate key material as handed over by key acquisition.

    :param material: Key bytes or text, exactly as read.
    :param claimed_algorithm: What the source says the key is (e.g. 'ssh-rsa'), if known.
    :param source: Provenance label used in reports.
    """
    material: object
    claimed_algorithm: str = None
    source: str = ''


@dataclass
class NormalizationResult:
    """
    Output of normalize_keys().

    recipients: accepted keys, in first-seen order
    rejected:   (source, error) for every key that was skipped
    duplicates: how many inputs repeated an already seen key
    """
    recipients: list = field(default_factory=list)
    rejected: list = field(default_factory=list)
    duplicates: int = 0

    @property
    def keys(self) -> list:
        return [recipient.key for recipient in self.recipients]


# ---------------------------------------------------------------------
# SSH wire format (RFC 4251 section 5)
# ---------------------------------------------------------------------

class SshReader:
    """
    Sequential reader over an SSH wire-format buffer.
    Any truncation raises MalformedKey.
    """
    def __init__(self, data: bytes):
        self.data = bytes(data)
        self.offset = 0

    def read_uint32(self) -> int:
        if self.offset + 4 > len(self.data):
            raise MalformedKey("Truncated key data.")
        (value,) = struct.unpack('>I', self.data[self.offset:self.offset + 4])
        self.offset += 4
        return value

    def read_string(self) -> bytes:
        length = self.read_uint32()
        if self.offset + length > len(self.data):
            raise MalformedKey("Truncated key data.")
        value = self.data[self.offset:self.offset + length]
        self.offset += length
        return value

    def read_mpint(self) -> int:
        value = int.from_bytes(self.read_string(), 'big', signed=True)
        if value < 0:
            raise MalformedKey("Negative integer in key data.")
        return value

    def at_end(self) -> bool:
        return self.offset == len(self.data)


def encode_string(value: bytes) -> bytes:
    return struct.pack('>I', len(value)) + value


def encode_mpint(value: int) -> bytes:
    # One extra bit leaves room for the sign, giving the leading zero byte
    # when the high bit of the top byte is set
    return encode_string(value.to_bytes((value.bit_length() + 8) // 8, 'big'))


def canonical_rsa_blob(n: int, e: int) -> bytes:
    return encode_string(RSA_KEY_TYPE.encode('ascii')) + encode_mpint(e) + encode_mpint(n)


# ---------------------------------------------------------------------
# Fingerprints and canonical records
# ---------------------------------------------------------------------

def fingerprint(canonical: bytes, provider: CryptographicProvider = None) -> str:
    """
    Fingerprint of a canonical key encoding. Pure: same bytes, same string.
    """
    return (provider or DefaultProvider()).digest(canonical)


def public_key_from_rsa(public_key: rsa.PublicKey, comment: str = '',
                        provider: CryptographicProvider = None) -> PublicKey:
    blob = canonical_rsa_blob(public_key.n, public_key.e)
    return PublicKey(blob, KeyAlgorithm.RSA, fingerprint(blob, provider), comment)


def public_key_from_private(private_key: rsa.PrivateKey, comment: str = '',
                            provider: CryptographicProvider = None) -> PublicKey:
    """Canonical public half of a private key, used to find our own wrapped key."""
    return public_key_from_rsa(rsa.PublicKey(private_key.n, private_key.e), comment, provider)


# ---------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------

def looks_like_wire_blob(data: bytes) -> bool:
    """
    True when 'data' starts like a binary SSH key blob: a small length
    prefix followed by a printable key type such as b'ssh-rsa'.
    Text never passes, since its first four bytes read as a huge length.
    """
    if len(data) < 5:
        return False
    (length,) = struct.unpack('>I', bytes(data[:4]))
    key_type = data[4:4 + length]
    return (0 < length <= MAX_KEY_TYPE_LENGTH
            and len(key_type) == length
            and all(33 <= b < 127 for b in key_type))


def _b64decode(token: str):
    try:
        return base64.b64decode(token, validate=True)
    except (binascii.Error, ValueError):
        return None


def _split_fields(line: str) -> list:
    """
    Splits a key line on whitespace, keeping double-quoted option values
    (which may contain spaces and escaped quotes) inside one field.
    """
    fields = []
    current = ''
    in_quotes = False
    escaped = False
    for char in line:
        if escaped:
            current += char
            escaped = False
        elif char == '\\' and in_quotes:
            current += char
            escaped = True
        elif char == '"':
            current += char
            in_quotes = not in_quotes
        elif char.isspace() and not in_quotes:
            if current:
                fields.append(current)
                current = ''
        else:
            current += char
    if in_quotes:
        raise MalformedKey("Unterminated quote in key options.")
    if current:
        fields.append(current)
    return fields


def _blob_type(blob: bytes) -> str:
    key_type = SshReader(blob).read_string()
    try:
        return key_type.decode('ascii')
    except UnicodeDecodeError:
        raise MalformedKey("Key type is not printable.")


def _blob_from_line(line: str) -> tuple:
    """
    Finds the type/blob/comment triplet in an OpenSSH key line.
    Everything in front of it is authorized_keys options and is dropped.

    :return: (blob, comment)
    """
    fields = _split_fields(line)

    # A key line is a type token followed by a blob that repeats that type
    for index in range(len(fields) - 1):
        blob = _b64decode(fields[index + 1])
        if blob is None:
            continue
        try:
            embedded = _blob_type(blob)
        except MalformedKey:
            continue
        if embedded == fields[index]:
            return blob, ' '.join(fields[index + 2:])

    # Bare base64 wire blob
    if len(fields) == 1:
        blob = _b64decode(fields[0])
        if blob is not None:
            _blob_type(blob)
            return blob, ''

    raise MalformedKey("No key type and key data found in key line.")


def _spki_algorithm(text: str) -> str:
    """
    Returns the algorithm OID of a "PUBLIC KEY" (SubjectPublicKeyInfo) PEM.

    SubjectPublicKeyInfo ::= SEQUENCE { algorithm AlgorithmIdentifier, subjectPublicKey BIT STRING }
    AlgorithmIdentifier  ::= SEQUENCE { algorithm OBJECT IDENTIFIER, parameters ANY OPTIONAL }
    """
    der, _, _ = PEM.decode(text)
    spki = DerSequence().decode(der)
    algorithm = DerSequence().decode(spki[0])
    return DerObjectId().decode(algorithm[0]).value


def _blob_from_pem(text: str) -> tuple:
    match = _PEM_LABEL.search(text)
    label = match.group(1) if match else ''
    if label not in ('RSA PUBLIC KEY', 'PUBLIC KEY'):
        raise MalformedKey(f"PEM block '{label}' is not a public key.")

    try:
        # Ed25519, EC and DSA keys share the "PUBLIC KEY" label; only the OID tells them apart
        if label == 'PUBLIC KEY':
            oid = _spki_algorithm(text)
            if oid != RSA_ENCRYPTION_OID:
                raise UnsupportedKeyType(f"PEM public key algorithm {oid} is not RSA.",
                                         {'key_type': oid})
        # Parses both PKCS#1 and SubjectPublicKeyInfo
        public_key = RSA.import_key(text)
    except (ValueError, IndexError, TypeError, EOFError) as e:
        # UnicodeError is a ValueError: non-ASCII text ends up here too
        raise MalformedKey(f"Unreadable PEM public key: {e}")

    if public_key.has_private():
        raise MalformedKey("PEM block holds a private key, not a public key.")
    return canonical_rsa_blob(public_key.n, public_key.e), ''


def _extract_blob(material) -> tuple:
    """Reduces any accepted input form to (wire blob, comment)."""
    if isinstance(material, (bytes, bytearray)):
        if looks_like_wire_blob(material):
            return bytes(material), ''
        # Key lines are text; comments may hold any UTF-8
        try:
            material = bytes(material).decode('utf-8')
        except UnicodeDecodeError:
            raise MalformedKey("Key material is neither text nor an SSH key blob.")
    if not isinstance(material, str):
        raise MalformedKey(f"Unsupported key material type: {type(material).__name__}")

    text = material.strip()
    if not text:
        raise MalformedKey("Empty key material.")
    if '-----BEGIN' in text:
        return _blob_from_pem(text)
    return _blob_from_line(text)


def _classify(blob: bytes, comment: str, provider: CryptographicProvider) -> PublicKey:
    key_type = _blob_type(blob)
    if key_type != RSA_KEY_TYPE:
        raise UnsupportedKeyType(f"Key type '{key_type}' cannot wrap a session key.",
                                 {'key_type': key_type})

    reader = SshReader(blob)
    reader.read_string()
    e = reader.read_mpint()
    n = reader.read_mpint()
    if not reader.at_end():
        raise MalformedKey("Trailing data after RSA key.")
    # construct() checks 1 < e < n, gcd(n, e) == 1 and an odd modulus;
    # an RSA exponent must also be odd
    if e % 2 == 0:
        raise MalformedKey("RSA key parameters are out of range.")
    try:
        RSA.construct((n, e))
    except ValueError as error:
        raise MalformedKey(f"RSA key parameters are out of range: {error}")

    # Re-encode so non-minimal encodings still fingerprint identically
    canonical = canonical_rsa_blob(n, e)
    return PublicKey(canonical, KeyAlgorithm.RSA, fingerprint(canonical, provider), comment)


def _check_claim(claimed_algorithm: str):
    if claimed_algorithm is None:
        return
    if claimed_algorithm.lower() not in ('rsa', RSA_KEY_TYPE):
        raise MalformedKey(f"Key claims to be '{claimed_algorithm}' but encodes an RSA key.")


def parse_key(material, claimed_algorithm: str = None,
              provider: CryptographicProvider = None) -> PublicKey:
    """
    Parses a single key. Raises UnsupportedKeyType or MalformedKey.
    """
    blob, comment = _extract_blob(material)
    key = _classify(blob, comment, provider)
    _check_claim(claimed_algorithm)
    return key


def normalize_keys(raw_keys, provider: CryptographicProvider = None) -> NormalizationResult:
    """
    Normalizes an unordered collection of candidate keys.

    Each item may be a RawKey, bytes or str. Unsupported and malformed keys
    are skipped and recorded in result.rejected; exact duplicates are dropped.

    :raises NoSupportedKeys: if no RSA key survives.
    """
    result = NormalizationResult()
    seen = set()

    for index, item in enumerate(raw_keys):
        if not isinstance(item, RawKey):
            item = RawKey(item)
        source = item.source or f"key #{index + 1}"

        try:
            blob, comment = _extract_blob(item.material)
            if blob in seen:
                result.duplicates += 1
                logger.debug("Dropping duplicate key from %s", source)
                continue
            seen.add(blob)

            key = _classify(blob, comment, provider)
            _check_claim(item.claimed_algorithm)
        except (UnsupportedKeyType, MalformedKey) as e:
            logger.warning("Skipping key from %s: %s", source, e.message)
            result.rejected.append((source, e))
            continue

        if key.fingerprint in {r.fingerprint for r in result.recipients}:
            # Same key reached through a different encoding
            result.duplicates += 1
            continue
        result.recipients.append(Recipient(key, source))

    if not result.recipients:
        raise NoSupportedKeys(
            "None of the supplied keys is a usable RSA public key.",
            {'rejected': [(source, error.message) for source, error in result.rejected]},
        )
    return result
