import os
import threading
import zlib
from pathlib import Path
from typing import BinaryIO

from .. import config
from ..exceptions import FileHashError


class FileHasher:
    """
    CRC-32 content fingerprints.

    Reads go through a fixed-size buffer that is allocated once per thread
    and reused for every file, so memory use does not grow with file size.
    This is an integrity check, not a security check.
    """

    def __init__(self, buffer_size: int = config.CHECKSUM_BUFFER_SIZE):
        self.buffer_size = buffer_size
        self._local = threading.local()

    def _buffer(self) -> memoryview:
        buf = getattr(self._local, "buf", None)
        if buf is None:
            buf = memoryview(bytearray(self.buffer_size))
            self._local.buf = buf
        return buf

    def checksum_stream(self, stream: BinaryIO) -> str:
        """Checksums everything left in a readable binary stream."""
        crc, _ = self._crc_stream(stream)
        return self.format_crc(crc)

    def checksum_file(self, path: Path) -> str:
        """
        Checksums the full content of the file at `path`.

        Raises FileHashError if the file cannot be opened or read to the end.
        """
        try:
            with open(path, "rb") as f:
                expected = os.fstat(f.fileno()).st_size
                crc, total = self._crc_stream(f)
        except OSError as e:
            raise FileHashError(f"Cannot read {path}: {e}") from e

        if total < expected:
            raise FileHashError(f"Short read on {path}: got {total} of {expected} bytes")
        return self.format_crc(crc)

    def _crc_stream(self, stream: BinaryIO):
        buf = self._buffer()
        crc = 0
        total = 0
        while n := stream.readinto(buf):
            crc = zlib.crc32(buf[:n], crc)
            total += n
        return crc, total

    @staticmethod
    def format_crc(crc: int) -> str:
        return f"{crc & 0xFFFFFFFF:08X}"
