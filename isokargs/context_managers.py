import io
import logging
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import BinaryIO, Callable, Generator, Optional


def remove_dir(path: Path) -> None:
    logging.debug(f"Cleaning up scratch dir: {path}")
    try:
        shutil.rmtree(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logging.warning(f"Failed to clean up scratch dir {path}: {e}")


@contextmanager
def temp_dir(
    prefix: Optional[str] = None, dir: Optional[Path] = None
) -> Generator[Path, None, None]:
    """
    Context manager for temporary directory cleanup.

    Args:
        prefix: Prefix for the temp directory name
        dir: Parent directory in which to create the temp dir (default None, system temp dir)

    Yields:
        Path: Path of temp dir
    """
    parent = str(dir) if dir is not None else None
    scratch_dir = Path(tempfile.mkdtemp(prefix=prefix, dir=parent))
    try:
        yield scratch_dir
    finally:
        remove_dir(scratch_dir)


class ScratchFile(io.RawIOBase):
    """
    File handle living inside a scratch directory. Closing the handle runs
    `cleanup` exactly once, after the file itself is closed.
    """

    def __init__(self, file: BinaryIO, cleanup: Callable[[], None]):
        super().__init__()
        self.file = file
        self._cleanup: Optional[Callable[[], None]] = cleanup

    @property
    def name(self) -> str:
        return self.file.name

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return True

    def readinto(self, b) -> int:
        return self.file.readinto(b)

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        return self.file.seek(offset, whence)

    def tell(self) -> int:
        return self.file.tell()

    def close(self) -> None:
        if self.closed:
            return
        try:
            self.file.close()
        finally:
            cleanup, self._cleanup = self._cleanup, None
            try:
                if cleanup is not None:
                    cleanup()
            finally:
                super().close()
