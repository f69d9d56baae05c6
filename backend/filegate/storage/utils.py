from typing import BinaryIO, Iterator, Optional, Union

from filegate.core.exceptions import PayloadTooLarge
from filegate.storage.base import STREAM_CHUNK_SIZE


def copy_stream(
    source: Union[bytes, BinaryIO],
    target: BinaryIO,
    max_bytes: Optional[int] = None,
) -> int:
    """
    Copy ``source`` into ``target`` and return the number of bytes written.

    Raises PayloadTooLarge as soon as more than ``max_bytes`` were read;
    the caller owns removing the partial target.
    """
    if isinstance(source, (bytes, bytearray)):
        if max_bytes is not None and len(source) > max_bytes:
            raise PayloadTooLarge()
        target.write(source)
        return len(source)

    written = 0
    while True:
        chunk = source.read(STREAM_CHUNK_SIZE)
        if not chunk:
            return written
        written += len(chunk)
        if max_bytes is not None and written > max_bytes:
            raise PayloadTooLarge()
        target.write(chunk)


def iter_file(handle: BinaryIO, chunk_size: int = STREAM_CHUNK_SIZE) -> Iterator[bytes]:
    """Yield the content of an open file in chunks, closing it at the end"""
    try:
        while True:
            chunk = handle.read(chunk_size)
            if not chunk:
                break
            yield chunk
    finally:
        handle.close()
