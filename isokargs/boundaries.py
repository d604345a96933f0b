import logging
import re

from isokargs import PatchRegion
from isokargs.errors import FormatError
from isokargs.iso import ImagePath, IsoFileSystem

log = logging.getLogger(__name__)

DEFAULT_MARKER = "# COREOS_KARG_EMBED_AREA"


def embed_area_pattern(marker: str = DEFAULT_MARKER) -> "re.Pattern[bytes]":
    # The group is the newline plus any run of '#' left by earlier appends.
    return re.compile(rb"(\n#*)" + re.escape(marker.encode()))


def find_embed_area(
    file_offset: int, content: bytes, marker: str = DEFAULT_MARKER
) -> PatchRegion:
    """
    Find the embed area of a boot config.

    Args:
        file_offset: Absolute offset of the boot config in the image
        content: Raw content of the boot config
        marker: Comment that marks the embed area

    Returns:
        The region, in absolute image coordinates, that receives the kernel
        arguments.

    Raises:
        FormatError: If the marker line is not present.
    """
    match = embed_area_pattern(marker).search(content)
    if match is None:
        raise FormatError(
            f"failed to find {marker.lstrip('# ')} in {len(content)} bytes of boot config"
        )
    start, end = match.span(1)
    region = PatchRegion(file_offset + start, end - start)
    log.debug(f"Embed area at relative offset {start}, absolute {region.offset}")
    return region


def embed_area_for(
    fs: IsoFileSystem,
    image_path: ImagePath,
    path: str,
    marker: str = DEFAULT_MARKER,
) -> PatchRegion:
    """Locate `path` in the image and find the embed area inside it."""
    spec = fs.locate(image_path, path)
    content = fs.read_whole(image_path, path)
    region = find_embed_area(spec.offset, content, marker)
    if not region.within(spec):
        raise FormatError(
            f"Embed area at {region.offset} lies outside '{path}' "
            f"({spec.offset}-{spec.end})"
        )
    return region
