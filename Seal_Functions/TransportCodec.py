"""
TransportCodec.py

Serializes an envelope into a single ASCII container and back.

The container is a sequence of uuencoded blocks, one per binary item:

    begin 600 message
    M<45 bytes per line, printable characters only>
    `
    end
    begin 600 <recipient fingerprint>
    ...
    end

The payload block uses the reserved name 'message'. Fingerprints are hex
strings, so they can never collide with it. Text outside of blocks is ignored,
which lets a container travel inside an e-mail body or a chat message.
"""

import binascii
import re
from dataclasses import dataclass, field

from Seal_Functions.Errors import TransportParseError
from Seal_Functions.Settings import BLOCK_FILE_MODE, PAYLOAD_BLOCK_NAME, UU_LINE_BYTES

_BEGIN_LINE = re.compile(r'^begin\s+([0-7]{3,4})\s+(\S+)\s*$')


@dataclass
class DecodedContainer:
    """
    Result of decode_container().

    payload: the binary content of the payload block
    wrapped: (fingerprint, ciphertext) for every other block, in container order
    """
    payload: bytes
    wrapped: list = field(default_factory=list)


def _check_name(name: str) -> None:
    if not name or any(char.isspace() for char in name):
        raise ValueError(f"Block name must be non-empty and contain no whitespace: {name!r}")


def encode_block(name: str, data: bytes) -> str:
    """
    Encodes one binary item as a named uuencoded block.

    :param name: The block name written on the 'begin' line
    :param data: Binary content, any length including zero
    :return: The block text, ending with a newline
    """
    _check_name(name)
    lines = [f"begin {BLOCK_FILE_MODE} {name}"]
    for offset in range(0, len(data), UU_LINE_BYTES):
        chunk = data[offset:offset + UU_LINE_BYTES]
        # backtick=True: zero bits encode as '`', so no line ends in a space
        lines.append(binascii.b2a_uu(chunk, backtick=True).decode('ascii').rstrip('\n'))
    # Zero-length line, then the end marker
    lines.append('`')
    lines.append('end')
    return '\n'.join(lines) + '\n'


def encode_container(payload, wrapped_keys) -> str:
    """
    Builds the container text for an envelope.

    :param payload: EncryptedPayload (or raw bytes) of the message
    :param wrapped_keys: Iterable of WrappedKey
    :return: ASCII container text
    """
    payload_data = getattr(payload, 'data', payload)
    blocks = [encode_block(PAYLOAD_BLOCK_NAME, payload_data)]
    for wrapped in wrapped_keys:
        if wrapped.fingerprint == PAYLOAD_BLOCK_NAME:
            raise ValueError(f"'{PAYLOAD_BLOCK_NAME}' is reserved for the payload block.")
        blocks.append(encode_block(wrapped.fingerprint, wrapped.ciphertext))
    return ''.join(blocks)


def _decode_line(line: str, name: str) -> bytes:
    try:
        return binascii.a2b_uu(line)
    except binascii.Error as e:
        raise TransportParseError(f"Block '{name}' contains an invalid line: {e}", {'block': name})


def iter_blocks(text):
    """
    Yields (name, data) for every block in the container, in order.

    :raises TransportParseError: on a malformed 'begin' line, an invalid body
                                 line, or a block without its 'end' marker.
    """
    if isinstance(text, (bytes, bytearray)):
        try:
            text = bytes(text).decode('ascii')
        except UnicodeDecodeError:
            raise TransportParseError("Container is not ASCII text.")

    name = None
    body = []
    for line in text.splitlines():
        if name is None:
            # Outside a block: only a 'begin' line matters
            if not line.startswith('begin '):
                continue
            match = _BEGIN_LINE.match(line)
            if not match:
                raise TransportParseError(f"Malformed block header: {line!r}")
            name = match.group(2)
            body = []
        elif line.strip() == 'end':
            yield name, b''.join(body)
            name = None
        elif line.strip():
            body.append(_decode_line(line, name))

    if name is not None:
        raise TransportParseError(f"Block '{name}' has no 'end' marker.", {'block': name})


def decode_container(text) -> DecodedContainer:
    """
    Splits a container into its payload and candidate wrapped keys.

    The block named 'message' is the payload. Containers without one are
    read the way older encoders wrote them: the first block is the payload.

    :raises TransportParseError: if there is no block at all, the text is
                                 malformed, or a wrapped key block is empty.
    """
    blocks = list(iter_blocks(text))
    if not blocks:
        raise TransportParseError("No 'begin' marker found in container.")

    payload_index = 0
    for index, (name, _) in enumerate(blocks):
        if name == PAYLOAD_BLOCK_NAME:
            payload_index = index
            break

    wrapped = []
    for index, (name, data) in enumerate(blocks):
        if index == payload_index:
            continue
        if not data:
            raise TransportParseError(f"Wrapped key block '{name}' is empty.", {'block': name})
        wrapped.append((name, data))

    return DecodedContainer(blocks[payload_index][1], wrapped)
