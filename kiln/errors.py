# kiln/errors.py
"""
Error kinds raised by the lifecycle engine.

Every fatal condition is a KilnError; the CLI reports it on stderr and exits
non-zero. Errors carry the package they concern and the lifecycle stage the
package had reached when the error was raised.
"""

from __future__ import annotations

from typing import Optional


class KilnError(Exception):
    """Base class for every error kiln reports to the operator."""

    def __init__(self, message: str, package: Optional[str] = None):
        super().__init__(message)
        self.package = package
        self.stage = None  # set by the engine (lifecycle.Stage)


class ValidationError(KilnError):
    """Descriptor is missing a required field or callback, or is malformed."""


class FetchError(KilnError):
    """Source could not be fetched or its locator is invalid."""


class IntegrityError(KilnError):
    """Checksum mismatch on a source or on a build archive."""


class ArchiveError(KilnError):
    """The archive codec refused or failed to pack/unpack."""


class StateError(KilnError):
    """Operation precondition not met (not built, not installed)."""


class CallbackError(KilnError):
    """A lifecycle callback completed with a non-zero status."""

    def __init__(self, message: str, package: Optional[str] = None, callback: Optional[str] = None,
                 log_path: Optional[str] = None, returncode: Optional[int] = None):
        super().__init__(message, package=package)
        self.callback = callback
        self.log_path = log_path
        self.returncode = returncode
