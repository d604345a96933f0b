# pytest will expose fixtures in conftest.py to sibling files.

import io
import pytest

from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

from isokargs import FileSpec
from isokargs.errors import NotFoundError

"""Files are laid out on block boundaries, like ISO9660 extents."""
BLOCK_SIZE = 2048

GRUB_CFG = (
    b"set timeout=5\n"
    b"menuentry 'Fedora CoreOS (Live)' --class fedora {\n"
    b"\tlinux /images/pxeboot/vmlinuz coreos.liveiso=fcos ignition.firstboot"
    b"\n################################ COREOS_KARG_EMBED_AREA\n"
    b"\tinitrd /images/pxeboot/initrd.img\n"
    b"}\n"
)

ISOLINUX_CFG = (
    b"label linux\n"
    b"  kernel /images/pxeboot/vmlinuz\n"
    b"  append initrd=/images/pxeboot/initrd.img coreos.liveiso=fcos"
    b"\n################################ COREOS_KARG_EMBED_AREA\n"
)


class FakeIsoFileSystem:
    """
    IsoFileSystem over a synthetic image: the files are written to a flat
    file on block boundaries and their offsets recorded. Every call is
    recorded in `calls`.
    """

    def __init__(self, image_path: Path, files: Dict[str, bytes]):
        self.image_path = image_path
        self.files = dict(files)
        self.specs: Dict[str, FileSpec] = {}
        self.calls: List[Tuple[str, str]] = []
        self.missing: Set[str] = set()

        image = bytearray(b"\xaa" * BLOCK_SIZE)
        for path, content in self.files.items():
            self.specs[path] = FileSpec(path, len(image), len(content))
            image += content
            image += b"\xaa" * (BLOCK_SIZE - len(image) % BLOCK_SIZE)
        image_path.write_bytes(bytes(image))

    def _check(self, path: str) -> None:
        if path not in self.files or path in self.missing:
            raise NotFoundError(f"File '{path}' not found in image '{self.image_path}'")

    def locate(self, image_path, path: str) -> FileSpec:
        self.calls.append(("locate", path))
        self._check(path)
        return self.specs[path]

    def read_whole(self, image_path, path: str) -> bytes:
        self.calls.append(("read_whole", path))
        self._check(path)
        return self.files[path]

    def extract_all(self, image_path, destination: Path) -> None:
        self.calls.append(("extract_all", str(destination)))
        for path, content in self.files.items():
            local = Path(destination) / path.lstrip("/")
            local.parent.mkdir(parents=True, exist_ok=True)
            local.write_bytes(content)


class TrackingStream(io.BytesIO):
    """BytesIO that records when it is closed."""

    def __init__(self, data: bytes, closed_log: Optional[List[str]] = None, name=""):
        super().__init__(data)
        self.closed_log = closed_log if closed_log is not None else []
        self.label = name

    def close(self) -> None:
        if not self.closed:
            self.closed_log.append(self.label)
        super().close()


@pytest.fixture
def make_image(tmp_path):
    """Returns a factory building a FakeIsoFileSystem in tmp_path."""

    def factory(files: Dict[str, bytes], name: str = "fcos-live.x86_64.iso"):
        return FakeIsoFileSystem(tmp_path / name, files)

    return factory


@pytest.fixture
def default_image(make_image):
    """Image without a kargs manifest, as shipped by older releases."""
    return make_image(
        {
            "/EFI/redhat/grub.cfg": GRUB_CFG,
            "/isolinux/isolinux.cfg": ISOLINUX_CFG,
        }
    )
