# sheetsync/core/exceptions.py


class SheetSyncError(Exception):
    """Base class for all errors raised by the sync backend"""


class ConfigurationError(SheetSyncError):
    """The backend itself is misconfigured (missing sheet, broken schema, unset APP_CODE)"""


class SecurityError(SheetSyncError):
    """The request did not carry a valid secret"""


class StoreBusyError(SheetSyncError):
    """The write lock could not be acquired within the configured wait"""


class ValidationError(SheetSyncError):
    """A request parameter is out of range or malformed"""
