"""Error taxonomy shared by the retargeting pipeline."""


class RetargetError(Exception):
    """Base class for errors raised by the retargeting pipeline."""


class ConfigurationError(RetargetError, ValueError):
    """Invalid parameters: unknown filter kind, bad window size, bad axis order."""


class GeometryError(RetargetError, ArithmeticError):
    """Degenerate geometry: invalid basis, zero-length axis, non-finite rotation."""


class NotBoundError(RetargetError):
    """A bone hierarchy is required but none has been bound yet."""
