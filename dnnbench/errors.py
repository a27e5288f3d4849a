"""Exception hierarchy for benchmark setup and execution.

Every failure aborts the current benchmark run; nothing here is retried.
Errors raised on behalf of a layer carry its name and id so a chain of
layers reports which one broke and in which call.
"""

from __future__ import annotations

from typing import Optional


class DNNBenchError(RuntimeError):
    """Base exception for all dnnbench errors.

    Attributes:
        call: Operation that failed ('create_buffer', 'setup', 'forward', ...)
        layer_name: Name of the layer the call was made for, if any
        layer_id: Numeric id of that layer, if any
    """

    def __init__(
        self,
        message: str,
        *,
        call: Optional[str] = None,
        layer_name: Optional[str] = None,
        layer_id: Optional[int] = None,
    ):
        self.message = message
        self.call = call
        self.layer_name = layer_name
        self.layer_id = layer_id
        super().__init__(self._decorate(message))

    def with_layer(self, layer_name: str, layer_id: int, call: Optional[str] = None) -> "DNNBenchError":
        """Record the layer (and call) this error surfaced in, unless already set."""
        if self.layer_name is None:
            self.layer_name = layer_name
            self.layer_id = layer_id
        if self.call is None:
            self.call = call
        self.args = (self._decorate(self.message),)
        return self

    def _decorate(self, message: str) -> str:
        where = []
        if self.layer_name is not None:
            where.append(f"layer '{self.layer_name}'")
        if self.layer_id is not None:
            where.append(f"id={self.layer_id}")
        if self.call:
            where.append(f"in {self.call}()")
        if not where:
            return message
        return f"[{' '.join(where)}] {message}"


class OutOfDeviceMemory(DNNBenchError):
    """The backend could not satisfy an allocation request.

    Attributes:
        requested: Number of elements requested
    """

    def __init__(self, message: str, requested: int, **kwargs):
        self.requested = requested
        super().__init__(message, **kwargs)


class InvalidHandle(DNNBenchError):
    """A buffer handle was released or never issued."""

    def __init__(self, message: str, handle: int, **kwargs):
        self.handle = handle
        super().__init__(message, **kwargs)


class AlgorithmSelectionFailed(DNNBenchError):
    """The backend produced no forward algorithm for the given shapes."""


class WorkspaceQueryFailed(DNNBenchError):
    """The backend could not size the workspace of the selected algorithm."""


class ShapeInferenceInvalid(DNNBenchError):
    """A derived output dimension is zero or negative."""


class InvalidShape(DNNBenchError, ValueError):
    """A ShapeDescriptor is neither all-zero nor all-positive."""


class BackendUnavailable(DNNBenchError):
    """The requested backend cannot be initialized on this machine."""


class LayerStateError(DNNBenchError):
    """A lifecycle method was called in the wrong state."""


class NotReady(LayerStateError):
    """Propagation was requested before setup() finished or inputs were bound."""


class NotConfigured(LayerStateError):
    """setup() was called before an input was assigned."""


class AlreadySetUp(LayerStateError):
    """setup() was called a second time."""


class ChainError(DNNBenchError):
    """A layer chain cannot be wired (unknown predecessor, duplicate name)."""


__all__ = [
    "DNNBenchError",
    "OutOfDeviceMemory",
    "InvalidHandle",
    "AlgorithmSelectionFailed",
    "WorkspaceQueryFailed",
    "ShapeInferenceInvalid",
    "InvalidShape",
    "BackendUnavailable",
    "LayerStateError",
    "NotReady",
    "NotConfigured",
    "AlreadySetUp",
    "ChainError",
]
