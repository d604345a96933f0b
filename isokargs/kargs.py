import logging
import os
from contextlib import ExitStack
from pathlib import Path
from typing import BinaryIO, List, Optional, Union

from isokargs import (
    ImageDescriptor,
    InjectionStrategy,
    KargsManifest,
    ManifestEntry,
    OutputFile,
)
from isokargs.boundaries import embed_area_for
from isokargs.config import KargsConfig
from isokargs.context_managers import ScratchFile, temp_dir
from isokargs.errors import FormatError, ImageIOError, NotFoundError, ValidationError
from isokargs.iso import IsoFileSystem, PycdlibFileSystem
from isokargs.isolate import isolate_iso_file
from isokargs.manifest import kargs_files, load_manifest
from isokargs.overlay import compose_overlay

log = logging.getLogger(__name__)


def normalize_kargs(
    append_kargs: str, strategy: InjectionStrategy = InjectionStrategy.MARKER
) -> Optional[bytes]:
    """
    Turn the text to append into the bytes written to the image, or None
    when there is nothing to append.

    Boot configs get exactly one trailing newline added when it is missing.
    Reserved areas are filled up to their own terminator, so trailing
    newlines are dropped there.
    """
    if append_kargs == "" or append_kargs == "\n":
        return None

    data = append_kargs.encode()
    if strategy == InjectionStrategy.RESERVATION_TABLE:
        return data.rstrip(b"\n") or None

    if not data.endswith(b"\n"):
        data += b"\n"
    return data


def _open_image(path: Path) -> BinaryIO:
    try:
        return open(path, "rb")
    except OSError as e:
        raise ImageIOError(f"Failed to open image '{path}': {e}") from e


def append_marker_kargs(
    image: ImageDescriptor,
    path: str,
    append_data: bytes,
    fs: IsoFileSystem,
    config: KargsConfig,
) -> OutputFile:
    """
    Build a virtual copy of `path` with `append_data` written over its
    embed area. The image itself is left untouched.
    """
    region = embed_area_for(fs, image.path, path, config.embed_marker)
    spec = fs.locate(image.path, path)
    if region.offset + len(append_data) > spec.end:
        raise ValidationError(
            f"Kernel arguments ({len(append_data)} bytes) do not fit in '{path}': "
            f"{spec.end - region.offset} bytes available from the embed area"
        )
    if len(append_data) > region.length:
        log.warning(
            f"Kernel arguments ({len(append_data)} bytes) exceed the embed area "
            f"of '{path}' ({region.length} bytes), overwriting the bytes after it"
        )

    with ExitStack() as stack:
        base = _open_image(image.path)
        stack.callback(base.close)
        iso = compose_overlay(base, region.offset, append_data)
        stack.callback(iso.close)
        file_data, _ = isolate_iso_file(fs, image.path, path, iso, 0)
        stack.pop_all()
    return file_data


def _separator(before: bytes, append_data: bytes) -> bytes:
    if not before or before[-1:].isspace() or append_data[:1].isspace():
        return b""
    return b" "


def _strip_reserved(area: bytes, entry: ManifestEntry) -> bytes:
    end = entry.end.encode()
    if end and area.endswith(end):
        area = area[: -len(end)]
    return area.rstrip(entry.pad.encode())


def _reserved_area_content(
    existing: bytes,
    append_data: bytes,
    manifest: KargsManifest,
    entry: ManifestEntry,
) -> bytes:
    """
    Content of the reserved area after the default arguments: previously
    appended arguments, the new ones, padding and the terminator.
    """
    area_length = len(existing)
    trailing = _strip_reserved(existing, entry)
    separator = _separator(trailing or manifest.default.encode(), append_data)
    kargs = trailing + separator + append_data

    end = entry.end.encode()
    body_length = area_length - len(end)
    if len(kargs) > body_length:
        raise ValidationError(
            f"Kernel arguments do not fit the reserved area of '{entry.path}': "
            f"need {len(kargs)} bytes, {body_length} available"
        )
    pad = entry.pad.encode() or b" "
    padding = (pad * (body_length - len(kargs)))[: body_length - len(kargs)]
    return kargs + padding + end


def _rewrite_reserved_area(
    file: BinaryIO,
    write_offset: int,
    append_data: bytes,
    manifest: KargsManifest,
    entry: ManifestEntry,
) -> None:
    file.seek(write_offset)
    if manifest.size > 0:
        area_length = entry.offset + manifest.size - write_offset
        if area_length < len(entry.end):
            raise FormatError(
                f"Default kernel arguments ({len(manifest.default)} bytes) fill the "
                f"{manifest.size} byte reserved area of '{entry.path}'"
            )
        existing = file.read(area_length)
        if len(existing) != area_length:
            raise FormatError(
                f"Reserved area of '{entry.path}' ends past the end of the file: "
                f"expected {area_length} bytes at {write_offset}, found {len(existing)}"
            )
        final = _reserved_area_content(existing, append_data, manifest, entry)
    else:
        existing = file.read()
        final = existing + append_data
    log.debug(f"Existing kargs: {existing!r}")
    log.debug(f"Combined kargs: {final!r}")

    file.seek(write_offset)
    file.write(final)
    file.flush()
    os.fsync(file.fileno())
    file.seek(0)


def append_reservation_kargs(
    image: ImageDescriptor,
    path: str,
    append_data: bytes,
    fs: IsoFileSystem,
    config: KargsConfig,
) -> OutputFile:
    """
    Append kernel arguments to the reserved area of `path` in an extracted
    copy of the image.

    Unlike the marker strategy this mutates a file on disk: the returned
    content is a live handle into the extracted copy. The scratch directory
    holding the copy is removed when the content is closed, or right away
    if anything fails.
    """
    manifest = load_manifest(image.path, fs, config)
    entry = manifest.find_entry(path)
    if entry is None:
        raise NotFoundError(
            f"file {path} not found in kargs config, expected one of {manifest.paths()}"
        )

    write_offset = entry.offset + len(manifest.default.encode())
    spec = fs.locate(image.path, path)
    if write_offset > spec.length:
        raise FormatError(
            f"Reserved area of '{path}' at {write_offset} lies past the end of "
            f"the file ({spec.length} bytes)"
        )
    log.debug(
        f"Writing kargs for '{path}' at relative offset {write_offset}, "
        f"absolute {spec.offset + write_offset}"
    )

    with ExitStack() as stack:
        scratch = stack.enter_context(
            temp_dir(prefix=config.scratch_prefix, dir=config.scratch_dir)
        )
        fs.extract_all(image.path, scratch)

        local_path = scratch / path.lstrip("/")
        log.debug(f"Opening {local_path} for modification")
        try:
            file = open(local_path, "r+b")
        except OSError as e:
            raise ImageIOError(f"Failed to open extracted '{local_path}': {e}") from e
        stack.callback(file.close)

        try:
            _rewrite_reserved_area(file, write_offset, append_data, manifest, entry)
        except OSError as e:
            raise ImageIOError(
                f"Failed to append kargs to extracted '{local_path}': {e}"
            ) from e

        cleanup = stack.pop_all()
    return OutputFile(path, ScratchFile(file, cleanup.close))


def kargs_file_data(
    image: ImageDescriptor,
    path: str,
    append_data: bytes,
    fs: IsoFileSystem,
    config: KargsConfig,
) -> OutputFile:
    if image.strategy == InjectionStrategy.RESERVATION_TABLE:
        log.debug(f"Using the reservation table of '{image.path}' for '{path}'")
        return append_reservation_kargs(image, path, append_data, fs, config)
    return append_marker_kargs(image, path, append_data, fs, config)


def new_kargs_reader(
    image: Union[ImageDescriptor, str, Path],
    append_kargs: str,
    fs: Optional[IsoFileSystem] = None,
    config: Optional[KargsConfig] = None,
) -> List[OutputFile]:
    """
    Return the file name and new content of every file in the image that
    carries kernel arguments, with `append_kargs` appended.

    Args:
        image: Image to patch; a bare path picks the architecture from the file name
        append_kargs: Kernel arguments to append
        fs: Access to files inside the image, pycdlib by default
        config: Paths and markers to use, defaults when None

    Returns:
        One OutputFile per boot config, in manifest order. Empty when there
        is nothing to append. The caller must close every returned file.
    """
    if not isinstance(image, ImageDescriptor):
        image = ImageDescriptor.from_path(image)
    fs = fs or PycdlibFileSystem()
    config = config or KargsConfig()

    append_data = normalize_kargs(append_kargs, image.strategy)
    if append_data is None:
        return []

    files = kargs_files(image.path, fs, config)
    log.info(
        f"Appending kargs to {len(files)} file(s) of '{image.path}' "
        f"using the {image.strategy} strategy"
    )

    output: List[OutputFile] = []
    with ExitStack() as stack:
        for f in files:
            data = kargs_file_data(image, f, append_data, fs, config)
            stack.callback(data.close)
            output.append(data)
        stack.pop_all()
    return output
