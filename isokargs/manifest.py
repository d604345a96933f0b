import json
import logging
from typing import List, Optional

from isokargs import KargsManifest, ManifestEntry
from isokargs.config import KargsConfig
from isokargs.errors import FormatError, NotFoundError
from isokargs.iso import ImagePath, IsoFileSystem

log = logging.getLogger(__name__)


def _load_json(data: bytes, source: str):
    try:
        return json.loads(data)
    except (ValueError, UnicodeDecodeError) as e:
        raise FormatError(f"Malformed kargs manifest {source}: {e}") from e


def _str_or(value, default: str) -> str:
    return default if value is None else str(value)


def parse_manifest(data: bytes, source: str = "") -> KargsManifest:
    """
    Parse the extended manifest form:
    `{"default": ..., "files": [{"path", "offset", "end", "pad"}], "size": ...}`.
    Entries without a path are skipped.
    """
    raw = _load_json(data, source)
    if not isinstance(raw, dict):
        raise FormatError(
            f"Malformed kargs manifest {source}: expected an object, got {type(raw).__name__}"
        )

    try:
        entries = []
        for item in raw.get("files") or []:
            if item.get("path") is None:
                continue
            entries.append(
                ManifestEntry(
                    path=str(item["path"]),
                    offset=int(item.get("offset") or 0),
                    end=_str_or(item.get("end"), "\n"),
                    pad=_str_or(item.get("pad"), "#"),
                )
            )
        return KargsManifest(
            default=str(raw.get("default") or ""),
            files=entries,
            size=int(raw.get("size") or 0),
        )
    except (AttributeError, TypeError, ValueError) as e:
        raise FormatError(f"Malformed kargs manifest {source}: {e}") from e


def kargs_files(
    image_path: ImagePath,
    fs: IsoFileSystem,
    config: Optional[KargsConfig] = None,
) -> List[str]:
    """
    Return the paths of the boot configs that carry kernel arguments, in
    manifest order. Images that predate the manifest get the default grub
    and isolinux configs.
    """
    config = config or KargsConfig()
    try:
        data = fs.read_whole(image_path, config.manifest_path)
    except NotFoundError:
        log.debug(
            f"No {config.manifest_path} in '{image_path}', using default boot configs"
        )
        return config.default_targets()

    source = f"'{config.manifest_path}' in '{image_path}'"
    paths: List[str] = []
    for path in parse_manifest(data, source).paths():
        if path in paths:
            log.warning(f"Duplicate entry '{path}' in kargs config {source}, ignoring")
            continue
        paths.append(path)
    return paths


def load_manifest(
    image_path: ImagePath,
    fs: IsoFileSystem,
    config: Optional[KargsConfig] = None,
) -> KargsManifest:
    config = config or KargsConfig()
    source = f"'{config.manifest_path}' in '{image_path}'"
    try:
        data = fs.read_whole(image_path, config.manifest_path)
    except NotFoundError as e:
        raise NotFoundError(f"failed to read kargs config {source}: {e}") from e
    manifest = parse_manifest(data, source)
    log.debug(f"Kargs config: {manifest}")
    return manifest
