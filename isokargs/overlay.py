import io
import logging
from dataclasses import dataclass
from typing import BinaryIO, List, Optional, Union

log = logging.getLogger(__name__)


@dataclass
class OverlayRange:
    # Absolute offset in the base stream where the content is substituted
    offset: int

    content: BinaryIO

    length: int

    @property
    def end(self) -> int:
        return self.offset + self.length


def _stream_size(stream: BinaryIO) -> int:
    current = stream.tell()
    size = stream.seek(0, io.SEEK_END)
    stream.seek(current)
    return size


class OverlayReader(io.RawIOBase):
    """
    Seekable view of `base` with every range's content substituted for the
    base bytes it covers. The base is never copied: each read seeks into it
    at the current position. Closing the reader closes the base and the
    range contents.
    """

    def __init__(self, base: BinaryIO, ranges: List[OverlayRange]):
        super().__init__()
        self.base = base
        self.ranges = sorted(ranges, key=lambda r: r.offset)
        for prev, cur in zip(self.ranges, self.ranges[1:]):
            if cur.offset < prev.end:
                raise ValueError(
                    f"Overlay ranges overlap: {prev.offset}-{prev.end} and "
                    f"{cur.offset}-{cur.end}"
                )
        self.base_size = _stream_size(base)
        self.size = max([self.base_size] + [r.end for r in self.ranges])
        self.position = 0

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return True

    def tell(self) -> int:
        return self.position

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        if whence == io.SEEK_SET:
            position = offset
        elif whence == io.SEEK_CUR:
            position = self.position + offset
        elif whence == io.SEEK_END:
            position = self.size + offset
        else:
            raise ValueError(f"Invalid whence ({whence})")
        if position < 0:
            raise ValueError(f"Negative seek position {position}")
        self.position = position
        return position

    def _range_at(self, position: int) -> Optional[OverlayRange]:
        for r in self.ranges:
            if r.offset <= position < r.end:
                return r
        return None

    def _next_boundary(self, position: int) -> int:
        for r in self.ranges:
            if r.offset > position:
                return r.offset
        return self.size

    def _read_segment(self, out: memoryview) -> int:
        current = self._range_at(self.position)
        if current is not None:
            count = min(len(out), current.end - self.position)
            current.content.seek(self.position - current.offset)
            data = current.content.read(count)
        else:
            count = min(len(out), self._next_boundary(self.position) - self.position)
            if self.position < self.base_size:
                self.base.seek(self.position)
                data = self.base.read(min(count, self.base_size - self.position))
            else:
                # Gap between the end of the base and a range reads as zeros.
                data = bytes(count)

        if not data:
            return 0
        out[: len(data)] = data
        self.position += len(data)
        return len(data)

    def readinto(self, b) -> int:
        if self.closed:
            raise ValueError("I/O operation on closed overlay")

        out = memoryview(b)
        total = 0
        while total < len(out) and self.position < self.size:
            count = self._read_segment(out[total:])
            if count == 0:
                break
            total += count
        return total

    def close(self) -> None:
        if self.closed:
            return
        try:
            self.base.close()
            for r in self.ranges:
                r.content.close()
        finally:
            super().close()


def compose_overlay(
    base: BinaryIO,
    patch_offset: int,
    patch: Union[bytes, BinaryIO],
    patch_length: Optional[int] = None,
) -> OverlayReader:
    """
    Overlay `patch` at the absolute `patch_offset` of `base`.

    Args:
        base: Seekable base stream, owned by the returned reader
        patch_offset: Absolute offset in base where the patch starts
        patch: Patch bytes or a seekable stream holding them
        patch_length: Length of the patched span, defaults to the patch size

    Returns:
        OverlayReader yielding base bytes outside the patch and patch bytes
        inside it.
    """
    if isinstance(patch, (bytes, bytearray, memoryview)):
        patch = io.BytesIO(bytes(patch))
    available = _stream_size(patch)
    if patch_length is None:
        patch_length = available
    elif patch_length > available:
        log.warning(
            f"Declared patch length {patch_length} exceeds the {available} "
            f"available patch bytes, clamping"
        )
        patch_length = available
    log.debug(f"Overlaying {patch_length} bytes at offset {patch_offset}")
    return OverlayReader(base, [OverlayRange(patch_offset, patch, patch_length)])
