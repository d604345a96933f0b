import logging
import posixpath
from contextlib import contextmanager
from io import BytesIO
from pathlib import Path
from typing import Dict, Generator, Protocol, Union

import pycdlib
from pycdlib.pycdlibexception import PyCdlibException

from isokargs import FileSpec
from isokargs.errors import ImageIOError, NotFoundError

log = logging.getLogger(__name__)

ImagePath = Union[str, Path]


class IsoFileSystem(Protocol):
    def locate(self, image_path: ImagePath, path: str) -> FileSpec:
        """Resolve `path` to its absolute offset and length in the image."""
        pass

    def read_whole(self, image_path: ImagePath, path: str) -> bytes:
        """Return the full content of `path`."""
        pass

    def extract_all(self, image_path: ImagePath, destination: Path) -> None:
        """Unpack every file of the image below `destination`."""
        pass


def _normalize(path: str) -> str:
    return "/" + path.strip("/")


def _iso9660_path(path: str) -> str:
    """Plain ISO9660 form of `path`: upper case, file version `;1`."""
    parts = [p.upper() for p in path.strip("/").split("/") if p]
    if parts and ";" not in parts[-1]:
        parts[-1] += ";1"
    return "/" + "/".join(parts)


def _local_name(name: str) -> str:
    """Name an ISO9660 identifier extracts to: no version, lower case."""
    return name.split(";")[0].rstrip(".").lower()


class PycdlibFileSystem:
    """
    IsoFileSystem backed by pycdlib. Rock Ridge names are preferred, then
    Joliet names, then plain ISO9660 names. Paths given for a plain image
    may use either form; they are matched case-insensitively and extracted
    in lower case without version suffixes.
    """

    @contextmanager
    def _open(self, image_path: ImagePath) -> Generator[pycdlib.PyCdlib, None, None]:
        iso = pycdlib.PyCdlib()
        try:
            iso.open(str(image_path))
        except (OSError, PyCdlibException) as e:
            raise ImageIOError(f"Failed to open image '{image_path}': {e}") from e
        try:
            yield iso
        finally:
            iso.close()

    @staticmethod
    def _path_key(iso: pycdlib.PyCdlib) -> str:
        if iso.has_rock_ridge():
            return "rr_path"
        if iso.has_joliet():
            return "joliet_path"
        return "iso_path"

    def _lookup(self, iso: pycdlib.PyCdlib, path: str) -> Dict[str, str]:
        key = self._path_key(iso)
        if key == "iso_path":
            return {key: _iso9660_path(path)}
        return {key: _normalize(path)}

    def _record(self, iso: pycdlib.PyCdlib, image_path: ImagePath, path: str):
        try:
            record = iso.get_record(**self._lookup(iso, path))
        except PyCdlibException as e:
            raise NotFoundError(
                f"File '{path}' not found in image '{image_path}': {e}"
            ) from e
        if record.is_dir():
            raise NotFoundError(
                f"Expected '{path}' in image '{image_path}' to be a file, found a directory"
            )
        return record

    def locate(self, image_path: ImagePath, path: str) -> FileSpec:
        with self._open(image_path) as iso:
            record = self._record(iso, image_path, path)
            offset = record.extent_location() * iso.logical_block_size
            length = record.get_data_length()
        log.debug(f"Located '{path}' in '{image_path}' at {offset} ({length} bytes)")
        return FileSpec(path, offset, length)

    def read_whole(self, image_path: ImagePath, path: str) -> bytes:
        with self._open(image_path) as iso:
            out = BytesIO()
            try:
                iso.get_file_from_iso_fp(out, **self._lookup(iso, path))
            except PyCdlibException as e:
                raise NotFoundError(
                    f"File '{path}' not found in image '{image_path}': {e}"
                ) from e
        return out.getvalue()

    def extract_all(self, image_path: ImagePath, destination: Path) -> None:
        destination = Path(destination)
        log.info(f"Extracting '{image_path}' to '{destination}'")
        with self._open(image_path) as iso:
            key = self._path_key(iso)
            local = _local_name if key == "iso_path" else str
            try:
                for root, dirs, files in iso.walk(**{key: "/"}):
                    local_root = destination.joinpath(
                        *[local(p) for p in root.strip("/").split("/") if p]
                    )
                    local_root.mkdir(parents=True, exist_ok=True)
                    for d in dirs:
                        (local_root / local(d)).mkdir(parents=True, exist_ok=True)
                    for f in files:
                        iso.get_file_from_iso(
                            str(local_root / local(f)), **{key: posixpath.join(root, f)}
                        )
            except (OSError, PyCdlibException) as e:
                raise ImageIOError(
                    f"Failed to extract '{image_path}' to '{destination}': {e}"
                ) from e
