"""
Utilities for splitting the multiplexed stdout/stderr stream of a container.

Without a TTY the engine sends frames made of an 8-byte header
(stream id, three zero bytes, big-endian payload size) and a payload.
"""
import struct
from typing import Iterable, Iterator, Tuple

STDIN = 0
STDOUT = 1
STDERR = 2

HEADER_SIZE = 8


def demultiplex(chunks: Iterable[bytes]) -> Iterator[Tuple[int, bytes]]:
    """
    Yields (stream id, payload) pairs from raw chunks, which may split frames anywhere.

    :raises ValueError: On an unknown stream id or a truncated final frame.
    """
    buffer = b""
    for chunk in chunks:
        buffer += chunk
        while len(buffer) >= HEADER_SIZE:
            stream, size = struct.unpack(">BxxxL", buffer[:HEADER_SIZE])
            if stream not in (STDIN, STDOUT, STDERR):
                raise ValueError(f"unrecognized stream id {stream} in multiplexed output")
            if len(buffer) < HEADER_SIZE + size:
                break
            yield stream, buffer[HEADER_SIZE:HEADER_SIZE + size]
            buffer = buffer[HEADER_SIZE + size:]
    if buffer:
        raise ValueError(f"multiplexed output ended inside a frame ({len(buffer)} bytes left)")
