"""
Error types raised by the field-to-geometry pipeline.

None of these are transient: they describe a problem with the current input
or configuration, so callers should not retry.
"""

from __future__ import annotations


class FieldGeomError(RuntimeError):
    pass


class ConfigError(FieldGeomError):
    """Invalid binning parameters or pipeline settings."""


class DomainError(FieldGeomError):
    """A field value outside the valid domain of the binning scheme."""

    def __init__(self, message: str, *, elem_id: int | None = None, value: float | None = None):
        super().__init__(message)
        self.elem_id = elem_id
        self.value = value


class TopologyError(FieldGeomError):
    """Mesh topology the pipeline cannot turn into closed volumes."""


class SinkWriteError(FieldGeomError):
    """The geometry sink rejected an entity set or tag write."""


class PipelineBusyError(FieldGeomError):
    pass
