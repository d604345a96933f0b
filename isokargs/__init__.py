from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import BinaryIO, List, Optional, Union


@dataclass(frozen=True)
class FileSpec:
    # Path of the file inside the image
    path: str

    # Absolute byte offset of the file's first byte in the image
    offset: int

    # Length of the file in bytes
    length: int

    @property
    def end(self) -> int:
        return self.offset + self.length


@dataclass(frozen=True)
class PatchRegion:
    # Absolute byte offset in the image where the substitution starts
    offset: int

    # Number of bytes reserved at that offset
    length: int

    def within(self, spec: FileSpec) -> bool:
        """Return whether the region lies inside, or immediately after, the file."""
        return spec.offset <= self.offset <= spec.end


@dataclass
class ManifestEntry:
    path: str

    # Offset of the reserved area, relative to the start of `path`
    offset: int = 0

    # Terminator written after the padding of the reserved area
    end: str = "\n"

    # Character used to fill unused space in the reserved area
    pad: str = "#"


@dataclass
class KargsManifest:
    # Kernel arguments baked into the image
    default: str = ""

    files: List[ManifestEntry] = field(default_factory=list)

    # Size of the reserved area in each file, 0 when unknown
    size: int = 0

    def paths(self) -> List[str]:
        return [entry.path for entry in self.files]

    def find_entry(self, path: str) -> Optional[ManifestEntry]:
        for entry in self.files:
            if entry.path == path:
                return entry
        return None


@dataclass
class OutputFile:
    """
    A file inside the image together with its new content.

    The caller owns `content` and must close it.
    """

    filename: str
    content: BinaryIO

    def close(self) -> None:
        self.content.close()

    def __enter__(self) -> "OutputFile":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class Architecture(Enum):
    X86_64 = "x86_64"
    AARCH64 = "aarch64"
    PPC64LE = "ppc64le"
    S390X = "s390x"

    @classmethod
    def from_image_path(cls, path: Union[str, Path]) -> "Architecture":
        """
        Guess the architecture from the image file name, e.g.
        `rhcos-live.s390x.iso`. Defaults to x86_64.
        """
        name = Path(path).name
        for arch in cls:
            if arch.value in name:
                return arch
        return cls.X86_64

    def __str__(self) -> str:
        return self.value


class InjectionStrategy(Enum):
    # Overlay the embed area marked by COREOS_KARG_EMBED_AREA
    MARKER = "marker"

    # Rewrite the reserved area of an extracted copy of the image
    RESERVATION_TABLE = "reservation-table"

    def __str__(self) -> str:
        return self.value


@dataclass
class ImageDescriptor:
    path: Path
    architecture: Architecture = Architecture.X86_64

    def __post_init__(self):
        # Update the path to be a Path object if it's a string
        if isinstance(self.path, str):
            self.path = Path(self.path)

        if isinstance(self.architecture, str):
            self.architecture = Architecture(self.architecture)

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> "ImageDescriptor":
        return cls(Path(path), Architecture.from_image_path(path))

    @property
    def strategy(self) -> InjectionStrategy:
        if self.architecture == Architecture.S390X:
            return InjectionStrategy.RESERVATION_TABLE
        return InjectionStrategy.MARKER
