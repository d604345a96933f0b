import json
import logging
from dataclasses import asdict, dataclass
from enum import Enum
from typing import List

from isokargs.errors import FormatError, ValidationError

log = logging.getLogger(__name__)


class Operation(Enum):
    APPEND = "append"
    REPLACE = "replace"
    DELETE = "delete"

    def __str__(self) -> str:
        return self.value


@dataclass
class KernelArgument:
    # The operation to apply on the kernel argument
    operation: Operation

    # Kernel argument of the form <parameter> or <parameter>=<value>, e.g.
    #   rd.net.timeout.carrier=60
    #   isolcpus=1,2,10-20,100-2000:2/25
    #   quiet
    value: str

    def to_dict(self) -> dict:
        data = asdict(self)
        data["operation"] = self.operation.value
        return data


def kargs_to_str(args: List[str]) -> str:
    """Serialize kernel arguments as a JSON array of append operations."""
    kargs = [KernelArgument(Operation.APPEND, arg).to_dict() for arg in args]
    try:
        return json.dumps(kargs)
    except (TypeError, ValueError) as e:
        raise FormatError(f"failed to marshal kernel arguments {args}: {e}") from e


def str_to_kargs(kargs_str: str) -> List[str]:
    """
    Deserialize a JSON array of kernel arguments. Only the 'append'
    operation is accepted.

    Raises:
        FormatError: If the JSON is malformed or not an array of objects.
        ValidationError: If any record carries another operation.
    """
    try:
        kargs = json.loads(kargs_str)
    except (TypeError, ValueError) as e:
        raise FormatError(f"failed to unmarshal kernel arguments: {e}") from e

    if kargs is None:
        return []
    if not isinstance(kargs, list):
        raise FormatError(
            f"failed to unmarshal kernel arguments: expected an array, got {type(kargs).__name__}"
        )

    args = []
    for karg in kargs:
        if karg is None:
            karg = {}
        if not isinstance(karg, dict):
            raise FormatError(
                f"failed to unmarshal kernel arguments: expected an object, got {karg!r}"
            )
        operation = karg.get("operation", "")
        if operation != Operation.APPEND.value:
            raise ValidationError(
                f"only 'append' operation is allowed.  got {operation}"
            )
        value = karg.get("value", "")
        if not isinstance(value, str):
            raise FormatError(
                f"failed to unmarshal kernel arguments: value {value!r} is not a string"
            )
        args.append(value)
    log.debug(f"Decoded {len(args)} kernel arguments")
    return args
