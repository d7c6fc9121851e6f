"""
Error types raised by the photo slicer pipeline.

Only conditions that make a result impossible are raised. Recoverable
input problems (empty images, out-of-range color counts, non-positive
transmission distances, missing thumbnails) are normalized where they
are detected and reported through logging instead.
"""


class PhotoSlicerError(Exception):
    """Base class for all photo slicer errors."""


class LayerStackError(PhotoSlicerError, ValueError):
    """A layer stack is malformed or an edit would break its invariants."""


class DegenerateGeometryError(PhotoSlicerError, ValueError):
    """A mesh cannot be closed into a valid solid."""
