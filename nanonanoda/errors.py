from __future__ import annotations


class NanonanodaError(Exception):
    """Base error for the nanonanoda library."""


class InvalidConfigError(NanonanodaError):
    """Raised when a window, chip or converter setting cannot be used."""


class UnsupportedInputError(NanonanodaError):
    """Raised when an input waveform or container cannot be decoded."""


class MappingOverflowError(NanonanodaError):
    """Raised when a register write falls outside its chip's address or data range."""


class SerializationError(NanonanodaError):
    """Raised when a finalized stream cannot be encoded or written."""
