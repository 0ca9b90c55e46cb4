"""Exception types raised by the tag evaluator and backup pipelines."""

from typing import List, Optional


class BtaggerError(Exception):
    """Base class for all btagger errors."""


class ConfigurationError(BtaggerError):
    """Configuration file or flag values could not be used."""


class ClockAdjustmentError(BtaggerError):
    """Instant arithmetic left the representable datetime range."""


class ScheduleParseError(BtaggerError):
    """A period's schedule expression was rejected by the cron evaluator."""

    def __init__(self, expression: str, reason: str = ""):
        self.expression = expression
        self.reason = reason
        message = f"Invalid schedule expression '{expression}'"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class ExternalProcessError(BtaggerError):
    """An external command was missing, failed to start, or exited non-zero."""

    def __init__(self, stage: str, argv: List[str],
                 returncode: Optional[int] = None, stderr: str = ""):
        self.stage = stage
        self.argv = list(argv)
        self.returncode = returncode
        self.stderr = stderr

        if returncode is None:
            message = f"{stage} failed to start ({argv[0] if argv else '?'})"
        else:
            message = f"{stage} exited with status {returncode}"
        if stderr.strip():
            message += f": {stderr.strip()}"
        super().__init__(message)


class ListParseError(BtaggerError):
    """Object listing output was not UTF-8 or not the expected JSON shape."""


class TaggingError(BtaggerError):
    """Applying a tag set to one object key failed."""

    def __init__(self, key: str, returncode: Optional[int] = None, stderr: str = ""):
        self.key = key
        self.returncode = returncode
        self.stderr = stderr
        message = f"Tagging failed for '{key}'"
        if returncode is not None:
            message += f" (status {returncode})"
        if stderr.strip():
            message += f": {stderr.strip()}"
        super().__init__(message)
