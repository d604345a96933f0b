import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import List, Optional, Union

import yaml

from isokargs.errors import FormatError, NotFoundError

log = logging.getLogger(__name__)


@dataclass
class KargsConfig:
    # grub config patched when the image has no kargs manifest
    grub_path: str = "/EFI/redhat/grub.cfg"

    # isolinux config patched when the image has no kargs manifest
    isolinux_path: str = "/isolinux/isolinux.cfg"

    # Manifest listing the files that carry kernel arguments
    manifest_path: str = "/coreos/kargs.json"

    # Comment marking the embed area in boot configs
    embed_marker: str = "# COREOS_KARG_EMBED_AREA"

    # Prefix of the scratch directory an image is extracted to
    scratch_prefix: str = "coreos-s390x-iso-"

    # Parent of the scratch directory, None for the system temp dir
    scratch_dir: Optional[Path] = None

    @classmethod
    def kebab_fields(cls) -> List[str]:
        """Return a list of fields in kebab-case."""
        return [f.name.replace("_", "-") for f in fields(cls)]

    def __post_init__(self):
        # Update scratch_dir to be a Path object if it's a string
        if isinstance(self.scratch_dir, str):
            self.scratch_dir = Path(self.scratch_dir)

    def default_targets(self) -> List[str]:
        return [self.grub_path, self.isolinux_path]


def load_config(path: Optional[Union[str, Path]] = None) -> KargsConfig:
    """
    Load a KargsConfig from a YAML file. Keys may be kebab-case or
    snake_case field names; missing keys keep their defaults.

    Args:
        path: Path of the YAML file, None for the default configuration

    Raises:
        NotFoundError: If the file does not exist.
        FormatError: If the file is not a YAML mapping of known fields.
    """
    if path is None:
        return KargsConfig()

    path = Path(path)
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise NotFoundError(f"Config file '{path}' does not exist") from e
    except yaml.YAMLError as e:
        raise FormatError(f"Config file '{path}' is not valid YAML: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise FormatError(
            f"Config file '{path}' must contain a mapping, got {type(data).__name__}"
        )

    known = KargsConfig.kebab_fields()
    kwargs = {}
    for key, value in data.items():
        name = str(key).replace("_", "-")
        if name not in known:
            raise FormatError(
                f"Unknown key '{key}' in config file '{path}', expected one of {known}"
            )
        kwargs[name.replace("-", "_")] = value

    log.debug(f"Loaded config from {path}: {kwargs}")
    return KargsConfig(**kwargs)
