"""
Flow compiler exceptions.

Structural and configuration problems are reported as Diagnostic values by the
validator and are never raised. The classes here cover the remaining failure
modes: malformed input, editing operations that cannot apply, internal
generator defects, and collaborator failures.
"""

from typing import Optional, Any, Dict


class FlowError(Exception):
    """Base exception for all flow compiler errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            'error': self.message,
            'type': type(self).__name__,
            'details': self.details,
        }


class GraphError(FlowError):
    """Raised when a graph or one of its parts cannot be constructed."""
    pass


class GraphMutationError(FlowError):
    """Raised when an editing operation cannot be applied to a graph."""

    def __init__(self, message: str, operation: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.operation = operation


class GenerationError(FlowError):
    """Raised when the code generator hits an internal invariant violation.

    This signals a defect in the generator itself. Validated input never
    produces it.
    """

    def __init__(self, message: str, node_id: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.node_id = node_id


class SchedulingError(GenerationError):
    """Raised when the scheduler is handed a graph it cannot linearize."""
    pass


class DeploymentError(FlowError):
    """Raised when the external publisher fails to publish a manifest."""

    def __init__(self, message: str, endpoint_id: Optional[str] = None,
                 retryable: bool = True, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.endpoint_id = endpoint_id
        self.retryable = retryable


class PersistenceError(FlowError):
    """Raised when a flow cannot be saved or loaded."""
    pass


class FlowNotFoundError(PersistenceError):
    """Raised when a flow id is not known to the store."""

    def __init__(self, flow_id: str):
        super().__init__(f"Flow not found: {flow_id}", {'flow_id': flow_id})
        self.flow_id = flow_id
