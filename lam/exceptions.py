"""
Project-wide custom exception hierarchy.
All modules raise subclasses of LamError — never bare Exception.
"""

__all__ = [
    "LamError",
    "ScriptError",
    "ScriptCompileError",
    "ScriptRuntimeError",
    "ValueConversionError",
    "ScriptTimeoutError",
    "StoreError",
    "StoreLockTimeoutError",
    "MigrationError",
    "CapabilityError",
    "UnknownModuleError",
    "ReadFormatError",
    "HTTPFetchError",
    "JSONCodecError",
    "CryptoError",
]


class LamError(Exception):
    """Root exception for all lam errors."""


# ── Script ────────────────────────────────────────────────────────────────────

class ScriptError(LamError):
    """Base class for failures of the script itself."""


class ScriptCompileError(ScriptError):
    """Raised when the script source fails to parse."""


class ScriptRuntimeError(ScriptError):
    """Raised when the script fails while running (outside a Lua error)."""


class ValueConversionError(ScriptRuntimeError):
    """Raised when a Lua object has no Value representation (function, cycle, …)."""


class ScriptTimeoutError(ScriptError):
    """Raised when an invocation runs past its deadline. Not catchable by scripts."""


# ── Store ─────────────────────────────────────────────────────────────────────

class StoreError(LamError):
    """Raised on SQLite / store I/O errors and invalid store operations."""


class StoreLockTimeoutError(StoreError):
    """Raised when a key lock cannot be acquired within the lock timeout."""


class MigrationError(StoreError):
    """Raised when a schema migration fails to apply."""


# ── Capability modules ────────────────────────────────────────────────────────

class CapabilityError(LamError):
    """Base class for errors raised by a host capability at its call site."""


class UnknownModuleError(CapabilityError):
    """Raised when require() names something other than a virtual module."""


class ReadFormatError(CapabilityError):
    """Raised when read() receives a format it does not understand."""


class HTTPFetchError(CapabilityError):
    """Raised when an outbound request fails at the transport level."""


class JSONCodecError(CapabilityError):
    """Raised when a value cannot be encoded to or decoded from JSON."""


class CryptoError(CapabilityError):
    """Raised on unsupported algorithms, bad key/IV lengths or undecodable input."""
