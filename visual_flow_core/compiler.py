"""
Flow compile pipeline: validate, schedule, generate.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .code_generator import Artifact, CodeGenerator
from .models import Graph, Node
from .scheduler import schedule
from .validator import StructuralValidator, ValidationResult


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompileResult:
    """Everything one compile produced. ``artifact`` is None when invalid."""
    validation: ValidationResult
    order: Optional[List[Node]] = None
    artifact: Optional[Artifact] = None

    @property
    def success(self) -> bool:
        return self.artifact is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'validation': self.validation.to_dict(),
            'order': [n.id for n in self.order] if self.order is not None else None,
            'artifact': self.artifact.to_dict() if self.artifact else None,
        }


class FlowCompiler:
    """Runs a graph through validation, scheduling and code generation."""

    def __init__(self, validator: Optional[StructuralValidator] = None,
                 generator: Optional[CodeGenerator] = None):
        self.validator = validator or StructuralValidator()
        self.generator = generator or CodeGenerator()

    def compile(self, graph: Graph) -> CompileResult:
        """Compile a graph. Scheduling and generation only run on valid graphs.

        GenerationError and SchedulingError propagate; they signal defects,
        not problems with the user's flow.
        """
        validation = self.validator.validate(graph)
        if not validation.is_valid:
            logger.debug(f"Compile stopped: {len(validation.errors)} validation errors")
            return CompileResult(validation=validation)

        order = schedule(graph)
        artifact = self.generator.generate(order)
        return CompileResult(validation=validation, order=order, artifact=artifact)


def compile_graph(graph: Graph) -> CompileResult:
    """Compile a graph with the default validator and generator."""
    return FlowCompiler().compile(graph)
