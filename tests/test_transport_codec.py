"""Tests for the uuencoded transport container."""

import pytest

from Seal_Functions.EncryptionManager import EncryptedPayload, WrappedKey
from Seal_Functions.Errors import TransportParseError
from Seal_Functions.TransportCodec import (
    decode_container,
    encode_block,
    encode_container,
    iter_blocks,
)

FP_A = 'a' * 64
FP_B = 'b' * 64


class TestBlocks:
    @pytest.mark.parametrize('data', [b'', b'\x00', bytes(range(45)), bytes(range(46)), bytes(range(256)) * 4])
    def test_round_trip(self, data):
        assert list(iter_blocks(encode_block('item', data))) == [('item', data)]

    def test_layout(self):
        text = encode_block('item', bytes(range(100)))
        lines = text.splitlines()
        assert lines[0] == 'begin 600 item'
        assert lines[-2:] == ['`', 'end']
        # 45 bytes per full line: one length char plus 60 data chars
        assert all(len(line) <= 61 for line in lines[1:-2])
        assert all(' ' < char <= '`' for line in lines[1:-2] for char in line)

    def test_name_must_not_contain_whitespace(self):
        with pytest.raises(ValueError):
            encode_block('two words', b'x')
        with pytest.raises(ValueError):
            encode_block('', b'x')

    def test_text_around_blocks_is_ignored(self):
        text = 'Hi, here is the secret:\n\n' + encode_block('item', b'data') + '\n-- \nsignature\n'
        assert list(iter_blocks(text)) == [('item', b'data')]

    def test_bytes_input(self):
        assert list(iter_blocks(encode_block('item', b'data').encode('ascii'))) == [('item', b'data')]

    def test_crlf_line_endings(self):
        text = encode_block('item', bytes(range(90))).replace('\n', '\r\n')
        assert list(iter_blocks(text)) == [('item', bytes(range(90)))]

    def test_unterminated_block(self):
        text = encode_block('item', b'data').replace('end\n', '')
        with pytest.raises(TransportParseError):
            list(iter_blocks(text))

    def test_malformed_header(self):
        with pytest.raises(TransportParseError):
            list(iter_blocks('begin xyz\n`\nend\n'))

    def test_invalid_body_line(self):
        with pytest.raises(TransportParseError):
            list(iter_blocks('begin 600 item\nMabcdefgh\n`\nend\n'))

    def test_non_ascii(self):
        with pytest.raises(TransportParseError):
            list(iter_blocks('begin 600 item\n`\nend\n'.encode('ascii') + b'\xff'))


class TestContainer:
    def test_round_trip(self):
        payload = EncryptedPayload(b'Salted__' + bytes(range(100)))
        wrapped = [WrappedKey(FP_A, b'\x01' * 128), WrappedKey(FP_B, b'\x02' * 256)]
        decoded = decode_container(encode_container(payload, wrapped))
        assert decoded.payload == payload.data
        assert decoded.wrapped == [(FP_A, b'\x01' * 128), (FP_B, b'\x02' * 256)]

    def test_payload_found_by_name_in_any_position(self):
        text = encode_block(FP_A, b'key a') + encode_block('message', b'payload') + encode_block(FP_B, b'key b')
        decoded = decode_container(text)
        assert decoded.payload == b'payload'
        assert [name for name, _ in decoded.wrapped] == [FP_A, FP_B]

    def test_first_block_is_payload_without_reserved_name(self):
        text = encode_block('data', b'payload') + encode_block(FP_A, b'key a')
        decoded = decode_container(text)
        assert decoded.payload == b'payload'
        assert decoded.wrapped == [(FP_A, b'key a')]

    def test_payload_only_container(self):
        decoded = decode_container(encode_container(b'payload', []))
        assert decoded.wrapped == []

    def test_no_blocks(self):
        with pytest.raises(TransportParseError):
            decode_container('just some text\n')

    def test_empty_wrapped_key_block(self):
        text = encode_block('message', b'payload') + encode_block(FP_A, b'')
        with pytest.raises(TransportParseError):
            decode_container(text)

    def test_reserved_name_cannot_be_a_recipient(self):
        with pytest.raises(ValueError):
            encode_container(b'payload', [WrappedKey('message', b'x')])
