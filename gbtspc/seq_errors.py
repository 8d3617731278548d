"""
Exception types raised while converting an SPC sequence.
"""


class SpcSequenceError(ValueError):
    """Base class for conversion failures."""


class FormatUnrecognizedError(SpcSequenceError):
    """The memory image does not hold a supported driver or sequence."""


class HeaderFormatError(FormatUnrecognizedError):
    """The sequence header table has an unsupported layout or no tracks."""


class StructuralBoundsError(SpcSequenceError):
    """A computed address falls outside the memory image."""


class PatchFixError(SpcSequenceError):
    """A patch-fix configuration could not be read."""
