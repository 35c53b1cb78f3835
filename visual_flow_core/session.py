"""
Editing Session - owns the graph being edited and wires it to the preview
synchronizer, the deployer and the flow store.
"""

import logging
import threading
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .compiler import CompileResult, FlowCompiler
from .exceptions import DeploymentError, PersistenceError
from .flow_store import FlowStore
from .models import Graph, graph_to_dict
from .mutations import Operation, mutate, new_graph, operation_from_dict
from .packager import Deployer, DeploymentRecord
from .preview_sync import PreviewResult, PreviewSynchronizer
from .validator import ValidationResult


class EditingSession:
    """One user editing one flow.

    Every change to the graph goes through ``apply`` or ``replace_graph``,
    which submit the new graph for preview regeneration.
    """

    def __init__(self, synchronizer: Optional[PreviewSynchronizer] = None,
                 deployer: Optional[Deployer] = None,
                 store: Optional[FlowStore] = None,
                 graph: Optional[Graph] = None,
                 compiler: Optional[FlowCompiler] = None):
        self.logger = logging.getLogger(__name__)
        self.synchronizer = synchronizer or PreviewSynchronizer()
        self.deployer = deployer
        self.store = store
        self.compiler = compiler or FlowCompiler()

        self._lock = threading.RLock()
        self._graph = graph if graph is not None else new_graph()
        self.flow_id: Optional[str] = None
        self.flow_name: Optional[str] = None
        self.deployments: List[DeploymentRecord] = []

    @property
    def graph(self) -> Graph:
        with self._lock:
            return self._graph

    @property
    def preview(self) -> Optional[PreviewResult]:
        return self.synchronizer.latest

    def apply(self, operation: Operation) -> Tuple[Graph, int]:
        """Apply one editing operation.

        Returns:
            The new graph and the preview epoch submitted for it.

        Raises:
            GraphMutationError: If the operation cannot apply. The graph is
                left unchanged and no epoch is consumed.
        """
        with self._lock:
            self._graph = mutate(self._graph, operation)
            graph = self._graph
            epoch = self.synchronizer.submit(graph)
        self.logger.debug(f"Applied {type(operation).__name__}; preview epoch {epoch}")
        return graph, epoch

    def apply_payload(self, payload: Mapping[str, Any]) -> Tuple[Graph, int]:
        """Decode an editor operation payload and apply it."""
        with self._lock:
            operation = operation_from_dict(payload, self._graph)
            return self.apply(operation)

    def replace_graph(self, graph: Graph) -> int:
        """Swap in a whole new graph, e.g. after import or load."""
        with self._lock:
            self._graph = graph
            return self.synchronizer.submit(graph)

    def refresh(self) -> int:
        """Regenerate the preview for the current graph."""
        with self._lock:
            return self.synchronizer.submit(self._graph)

    def validate(self) -> ValidationResult:
        return self.compiler.validator.validate(self.graph)

    def compile(self) -> CompileResult:
        return self.compiler.compile(self.graph)

    def deploy(self, new_version: bool = False) -> DeploymentRecord:
        """Compile the current graph and hand it to the deployer.

        Compiles synchronously instead of trusting the last preview, so a
        deploy never ships code for a graph other than the current one.

        Raises:
            DeploymentError: If no deployer is configured, the graph is
                invalid (not retryable; diagnostics in ``details``), or the
                publisher fails.
        """
        if self.deployer is None:
            raise DeploymentError("No publisher configured for this session", retryable=False)

        graph = self.graph
        result = self.compiler.compile(graph)
        if not result.success:
            raise DeploymentError(
                "Flow is not valid; fix the reported problems before deploying",
                retryable=False,
                details={'diagnostics': [d.to_dict() for d in result.validation.diagnostics]},
            )

        record = self.deployer.deploy(result.artifact, graph, new_version=new_version)
        with self._lock:
            self.deployments.append(record)
        return record

    # ─────────────────────────────────────────────────────────────────
    # Persistence
    # ─────────────────────────────────────────────────────────────────

    def save(self, name: Optional[str] = None, description: str = '') -> str:
        """Save the current graph, overwriting the flow this session came from."""
        store = self._require_store()
        with self._lock:
            name = name or self.flow_name or 'Untitled flow'
            self.flow_id = store.save_flow(name, self._graph, flow_id=self.flow_id,
                                           description=description)
            self.flow_name = name
            return self.flow_id

    def load(self, flow_id: str) -> int:
        """Load a saved flow into the session. Returns the preview epoch."""
        store = self._require_store()
        graph = store.load_flow(flow_id)
        name = next((f['name'] for f in store.list_flows() if f['id'] == flow_id), None)
        with self._lock:
            self.flow_id = flow_id
            self.flow_name = name
            return self.replace_graph(graph)

    def _require_store(self) -> FlowStore:
        if self.store is None:
            raise PersistenceError("No flow store configured for this session")
        return self.store

    def to_dict(self) -> Dict[str, Any]:
        preview = self.preview
        return {
            'flowId': self.flow_id,
            'flowName': self.flow_name,
            'epoch': self.synchronizer.epoch,
            'graph': graph_to_dict(self.graph),
            'preview': preview.to_dict() if preview else None,
        }
