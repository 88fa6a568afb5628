"""Exception hierarchy for the biometrics app."""


class BiometricsError(Exception):
    """Base class for errors raised by the biometrics package."""


class InvalidDescriptorError(BiometricsError, ValueError):
    """Raised when a face descriptor is not exactly 128 finite floats."""


class SessionStateError(BiometricsError, RuntimeError):
    """Raised when a verification session is driven out of order."""


class ReferenceDataError(BiometricsError):
    """Raised when a stored reference descriptor cannot be decoded."""
