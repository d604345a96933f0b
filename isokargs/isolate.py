import io
import logging
from typing import BinaryIO, Tuple

from isokargs import OutputFile
from isokargs.iso import ImagePath, IsoFileSystem

log = logging.getLogger(__name__)


class LimitedReader(io.RawIOBase):
    """
    Reads at most `length` bytes from the current position of `source`.
    A read only comes back short at the end of the file or the source.
    Closing the reader closes `source`.
    """

    def __init__(self, source: BinaryIO, length: int):
        super().__init__()
        self.source = source
        self.length = length
        self.remaining = length

    def readable(self) -> bool:
        return True

    def readinto(self, b) -> int:
        if self.closed:
            raise ValueError("I/O operation on closed reader")
        out = memoryview(b)
        total = 0
        # Sources may return short reads at internal boundaries.
        while total < len(out) and self.remaining > 0:
            data = self.source.read(min(len(out) - total, self.remaining))
            if not data:
                break
            out[total : total + len(data)] = data
            total += len(data)
            self.remaining -= len(data)
        return total

    def close(self) -> None:
        if self.closed:
            return
        try:
            self.source.close()
        finally:
            super().close()


def isolate(
    source: BinaryIO, offset: int, length: int, min_length: int = 0
) -> Tuple[LimitedReader, bool]:
    """
    Cut the file at `offset` out of `source`.

    When `min_length` exceeds `length` the announced length of the returned
    reader is `min_length` and `expanded` is True. The source may run out
    before that; consumers sizing output from `length` must pad.

    Returns:
        (reader, expanded)
    """
    expanded = False
    if min_length > length:
        log.debug(f"Expanding file at {offset} from {length} to {min_length} bytes")
        length = min_length
        expanded = True

    source.seek(offset)
    return LimitedReader(source, length), expanded


def isolate_iso_file(
    fs: IsoFileSystem,
    image_path: ImagePath,
    path: str,
    source: BinaryIO,
    min_length: int = 0,
) -> Tuple[OutputFile, bool]:
    spec = fs.locate(image_path, path)
    log.debug(f"Isolating '{path}' at offset {spec.offset} ({spec.length} bytes)")
    reader, expanded = isolate(source, spec.offset, spec.length, min_length)
    return OutputFile(path, reader), expanded
