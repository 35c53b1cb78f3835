"""
Preview Synchronizer - keeps the code preview in step with an edited graph.

Every submitted graph gets the next generation epoch. Regeneration runs
validate -> schedule -> generate and its result is published only if its epoch
is still the current one when it finishes; results of superseded epochs are
dropped rather than cancelled, because the work is pure and has no visible
effect until publication.

    submit(g1) -> epoch 1 ─┐
    submit(g2) -> epoch 2 ─┼─> run(1) finishes: epoch 1 != 2, discarded
                           └─> run(2) finishes: epoch 2 current, published
"""

import logging
import threading
from concurrent.futures import Executor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

from .code_generator import Artifact, CodeGenerator
from .exceptions import GenerationError
from .models import Graph
from .scheduler import schedule
from .validator import Diagnostic, StructuralValidator


class PreviewState(Enum):
    """Where the latest epoch's regeneration currently is."""
    IDLE = "idle"
    VALIDATING = "validating"
    INVALID = "invalid"
    SCHEDULING = "scheduling"
    GENERATING = "generating"
    PUBLISHED = "published"
    FAILED = "failed"


@dataclass(frozen=True)
class PreviewResult:
    """What the preview surface shows for one epoch."""
    epoch: int
    state: PreviewState
    artifact: Optional[Artifact] = None
    diagnostics: Tuple[Diagnostic, ...] = field(default_factory=tuple)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'epoch': self.epoch,
            'state': self.state.value,
            'artifact': self.artifact.to_dict() if self.artifact else None,
            'diagnostics': [d.to_dict() for d in self.diagnostics],
            'error': self.error,
        }


PublishCallback = Callable[[int, PreviewResult], None]


class PreviewSynchronizer:
    """Single-flight regeneration with supersession by epoch."""

    def __init__(self, on_published: Optional[PublishCallback] = None,
                 executor: Optional[Executor] = None,
                 validator: Optional[StructuralValidator] = None,
                 generator: Optional[CodeGenerator] = None):
        """
        Args:
            on_published: Called with (epoch, result) for every published result.
            executor: Runs regenerations in the background. When None, each
                submit regenerates inline before returning.
        """
        self.logger = logging.getLogger(__name__)
        self.on_published = on_published
        self.executor = executor
        self.validator = validator or StructuralValidator()
        self.generator = generator or CodeGenerator()

        self._lock = threading.Lock()
        self._publish_lock = threading.Lock()
        self._epoch = 0
        self._state = PreviewState.IDLE
        self._latest: Optional[PreviewResult] = None
        self.discarded_count = 0

    @property
    def epoch(self) -> int:
        with self._lock:
            return self._epoch

    @property
    def state(self) -> PreviewState:
        with self._lock:
            return self._state

    @property
    def latest(self) -> Optional[PreviewResult]:
        """The last published result, if any."""
        with self._lock:
            return self._latest

    def is_current(self, epoch: int) -> bool:
        with self._lock:
            return epoch == self._epoch

    def submit(self, graph: Graph) -> int:
        """Start regenerating the preview for ``graph`` and return its epoch."""
        with self._lock:
            self._epoch += 1
            epoch = self._epoch
            self._state = PreviewState.VALIDATING

        if self.executor is None:
            self.run(epoch, graph)
        else:
            self.executor.submit(self.run, epoch, graph)
        return epoch

    def run(self, epoch: int, graph: Graph) -> bool:
        """Regenerate for one epoch. Returns True if the result was published."""
        try:
            validation = self.validator.validate(graph)
            if not validation.is_valid:
                result = PreviewResult(epoch, PreviewState.INVALID, diagnostics=validation.diagnostics)
            else:
                self._advance(epoch, PreviewState.SCHEDULING)
                order = schedule(graph)
                self._advance(epoch, PreviewState.GENERATING)
                artifact = self.generator.generate(order)
                result = PreviewResult(epoch, PreviewState.PUBLISHED, artifact=artifact,
                                       diagnostics=validation.diagnostics)
        except GenerationError as e:
            self.logger.exception(f"Code generation defect in epoch {epoch}: {e.message}")
            result = PreviewResult(epoch, PreviewState.FAILED,
                                   error="Code generation failed due to an internal error")
        except Exception as e:
            self.logger.exception(f"Unexpected preview failure in epoch {epoch}: {e}")
            result = PreviewResult(epoch, PreviewState.FAILED,
                                   error="Preview failed due to an internal error")

        return self._publish(result)

    def _advance(self, epoch: int, state: PreviewState):
        with self._lock:
            if epoch == self._epoch:
                self._state = state

    def _publish(self, result: PreviewResult) -> bool:
        with self._publish_lock:
            with self._lock:
                if result.epoch != self._epoch:
                    self.discarded_count += 1
                    self.logger.debug(
                        f"Discarded preview for epoch {result.epoch}; current epoch is {self._epoch}")
                    return False
                self._latest = result
                self._state = result.state

            self.logger.info(f"Published preview for epoch {result.epoch} ({result.state.value})")
            if self.on_published:
                self.on_published(result.epoch, result)
            return True
