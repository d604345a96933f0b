class KargsError(Exception):
    """Base class for every error raised while injecting kernel arguments."""


class NotFoundError(KargsError, FileNotFoundError):
    """A path or manifest entry does not exist inside the image."""


class FormatError(KargsError, ValueError):
    """Malformed manifest, malformed argument JSON or a missing embed marker."""


class ValidationError(KargsError, ValueError):
    """Well-formed input carrying a value that is not accepted."""


class ImageIOError(KargsError, OSError):
    """Seeking, reading, writing, syncing or extracting failed."""
