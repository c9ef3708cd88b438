"""Tests for session keys, the symmetric codec and the RSA key wrapper."""

import base64

import pytest
import rsa

from conftest import NoEntropyProvider
from Seal_Functions import CryptoProvider
from Seal_Functions.CryptoProvider import DefaultProvider, derive_key_and_iv
from Seal_Functions.EncryptionManager import (
    EncryptedPayload,
    SessionKey,
    WrappedKey,
    decrypt_payload,
    encrypt_payload,
    generate_session_key,
    unwrap_session_key,
    wrap_session_key,
)
from Seal_Functions.Errors import CipherMismatch, EntropyUnavailable, UnwrapFailure, WrapFailure
from Seal_Functions.KeyNormalizer import KeyAlgorithm, PublicKey
from Seal_Functions.Settings import SALT_MAGIC, SESSION_KEY_BYTES


# =============================================================================
# SESSION KEYS
# =============================================================================


class TestSessionKey:
    def test_fixed_length(self):
        key = generate_session_key()
        assert len(key.material) == SESSION_KEY_BYTES
        assert len(key.encoded) == 44

    def test_fresh_every_time(self):
        keys = {bytes(generate_session_key().material) for _ in range(50)}
        assert len(keys) == 50

    def test_wipe_zeroes_material(self):
        key = generate_session_key()
        key.wipe()
        assert key.material == bytearray(SESSION_KEY_BYTES)

    def test_wipe_zeroes_encoded_form(self):
        key = generate_session_key()
        encoded = key.encoded
        assert base64.b64decode(encoded) == key.material
        key.wipe()
        assert encoded == bytearray(44)

    def test_encoded_form_is_computed_once(self):
        key = generate_session_key()
        assert key.encoded is key.encoded
        assert isinstance(key.encoded, bytearray)

    def test_repr_hides_bytes(self):
        key = SessionKey(b'\xab' * SESSION_KEY_BYTES)
        assert repr(key) == 'SessionKey(<32 bytes>)'

    def test_wrong_length_rejected(self):
        with pytest.raises(ValueError):
            SessionKey(b'short')

    def test_entropy_failure_is_reported(self):
        with pytest.raises(EntropyUnavailable):
            generate_session_key(NoEntropyProvider())

    def test_default_provider_translates_os_errors(self, monkeypatch):
        def broken(length):
            raise OSError("getrandom failed")
        monkeypatch.setattr(CryptoProvider, 'get_random_bytes', broken)
        with pytest.raises(EntropyUnavailable):
            DefaultProvider().generate_random_bytes(32)


# =============================================================================
# SYMMETRIC CODEC
# =============================================================================


class TestSymmetricCodec:
    @pytest.mark.parametrize('plaintext', [b'', b'x', b'hello world', bytes(range(256)) * 40])
    def test_round_trip(self, plaintext):
        key = generate_session_key()
        payload = encrypt_payload(plaintext, key)
        assert decrypt_payload(payload, key) == plaintext

    def test_salted_layout(self):
        payload = encrypt_payload(b'hello', generate_session_key())
        assert payload.data.startswith(SALT_MAGIC)
        assert len(payload.salt) == 8
        assert (len(payload.data) - 16) % 16 == 0

    def test_empty_plaintext_is_one_padding_block(self):
        payload = encrypt_payload(b'', generate_session_key())
        assert len(payload.data) == 16 + 16

    def test_salt_is_random_per_call(self):
        key = generate_session_key()
        assert encrypt_payload(b'same', key) != encrypt_payload(b'same', key)

    def test_deterministic_with_fixed_randomness(self, counting_provider):
        key = SessionKey(bytes(SESSION_KEY_BYTES))
        first = encrypt_payload(b'same', key, counting_provider)
        counting_provider.counter = 0
        assert encrypt_payload(b'same', key, counting_provider) == first

    def test_wrong_key_never_returns_plaintext(self):
        payload = encrypt_payload(b'attack at dawn', generate_session_key())
        try:
            recovered = decrypt_payload(payload, generate_session_key())
        except CipherMismatch:
            return
        # No integrity tag: a lucky padding byte yields garbage, never the message
        assert recovered != b'attack at dawn'

    def test_missing_header(self):
        with pytest.raises(CipherMismatch):
            decrypt_payload(EncryptedPayload(b'\x00' * 48), generate_session_key())

    def test_truncated_body(self):
        key = generate_session_key()
        payload = encrypt_payload(b'hello', key)
        with pytest.raises(CipherMismatch):
            decrypt_payload(EncryptedPayload(payload.data[:-1]), key)

    def test_header_only(self):
        with pytest.raises(CipherMismatch):
            decrypt_payload(EncryptedPayload(SALT_MAGIC + b'12345678'), generate_session_key())

    def test_key_derivation_sizes(self):
        key, iv = derive_key_and_iv(b'passphrase', b'saltsalt')
        assert len(key) == 32
        assert len(iv) == 16
        assert derive_key_and_iv(b'passphrase', b'saltsalt') == (key, iv)
        assert derive_key_and_iv(b'passphrase', b'SALTSALT') != (key, iv)

    def test_derived_key_and_iv_are_wipeable(self):
        key, iv = derive_key_and_iv(b'passphrase', b'saltsalt')
        assert isinstance(key, bytearray) and isinstance(iv, bytearray)


# =============================================================================
# ASYMMETRIC WRAPPER
# =============================================================================


class TestWrapper:
    def test_round_trip(self, alice):
        key = generate_session_key()
        wrapped = wrap_session_key(key, alice.key)
        assert wrapped.fingerprint == alice.key.fingerprint
        assert unwrap_session_key(wrapped, alice.private).material == key.material

    def test_wrapping_is_randomized(self, alice):
        key = generate_session_key()
        assert wrap_session_key(key, alice.key) != wrap_session_key(key, alice.key)

    def test_wrong_private_key(self, alice, bob):
        wrapped = wrap_session_key(generate_session_key(), alice.key)
        with pytest.raises(UnwrapFailure):
            unwrap_session_key(wrapped, bob.private)

    def test_key_too_small(self, tiny):
        with pytest.raises(WrapFailure) as excinfo:
            wrap_session_key(generate_session_key(), tiny.key)
        assert excinfo.value.details['fingerprint'] == tiny.key.fingerprint

    def test_non_rsa_key(self, alice):
        other = PublicKey(alice.key.raw_material, KeyAlgorithm.UNSUPPORTED, 'f' * 64)
        with pytest.raises(WrapFailure):
            wrap_session_key(generate_session_key(), other)

    def test_unconvertible_material(self):
        broken = PublicKey(b'\x00\x00\x00\x07ssh-rsa', KeyAlgorithm.RSA, 'e' * 64)
        with pytest.raises(WrapFailure):
            wrap_session_key(generate_session_key(), broken)

    def test_recovered_value_must_be_base64(self, alice):
        ciphertext = rsa.encrypt(b'definitely not base64!', alice.public)
        with pytest.raises(UnwrapFailure):
            unwrap_session_key(WrappedKey(alice.key.fingerprint, ciphertext), alice.private)

    def test_recovered_value_must_have_key_length(self, alice):
        ciphertext = rsa.encrypt(base64.b64encode(b'\x01' * 16), alice.public)
        with pytest.raises(UnwrapFailure):
            unwrap_session_key(WrappedKey(alice.key.fingerprint, ciphertext), alice.private)

    def test_corrupted_ciphertext(self, alice):
        wrapped = wrap_session_key(generate_session_key(), alice.key)
        damaged = bytearray(wrapped.ciphertext)
        damaged[len(damaged) // 2] ^= 0x01
        with pytest.raises(UnwrapFailure):
            unwrap_session_key(WrappedKey(wrapped.fingerprint, bytes(damaged)), alice.private)
