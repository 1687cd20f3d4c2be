"""
Errors raised by the OMR grading pipeline.
"""


class OMRError(ValueError):
    """Base class for unusable input to the grading pipeline"""


class InvalidAnswerKey(OMRError):
    """Answer key cannot be graded against (bad structure or zero max marks)"""


class InvalidPixelBuffer(OMRError):
    """Image data is empty, malformed or could not be decoded"""
