"""
Visual Flow Core - compiles visual endpoint flows into deployable handler code.

A flow is a graph of typed nodes (Trigger, Database, Transform, Validate,
Response). The core validates its structure, schedules it into a linear
execution order, generates a Flask handler module from it, keeps a live
preview in step with edits and packages the result for deployment.
"""

__version__ = "0.1.0"
__author__ = "Visual Flow Development Team"

from .models import (
    Node, Edge, Graph, NodeKind, HttpMethod, ResponseFormat,
    TriggerConfig, DatabaseConfig, TransformConfig, ValidateConfig, ResponseConfig,
    graph_from_dict, graph_to_dict, graph_hash,
)
from .exceptions import (
    FlowError, GraphError, GraphMutationError, GenerationError, SchedulingError,
    DeploymentError, PersistenceError, FlowNotFoundError,
)
from .mutations import AddNode, UpdateNodeConfig, DeleteNode, AddEdge, DeleteEdge, mutate, new_graph
from .validator import Diagnostic, Severity, DiagnosticCategory, StructuralValidator, ValidationResult, validate
from .scheduler import schedule
from .code_generator import Artifact, CodeGenerator, generate
from .compiler import CompileResult, FlowCompiler, compile_graph
from .preview_sync import PreviewResult, PreviewState, PreviewSynchronizer
from .packager import Manifest, DeploymentRecord, DeploymentPackager, Deployer
from .publishers import Publisher, InMemoryPublisher, DirectoryPublisher, HttpPublisher
from .flow_store import FlowStore, InMemoryFlowStore, SQLiteFlowStore
from .session import EditingSession
from .config import FlowConfig

__all__ = [
    "Node",
    "Edge",
    "Graph",
    "NodeKind",
    "HttpMethod",
    "ResponseFormat",
    "TriggerConfig",
    "DatabaseConfig",
    "TransformConfig",
    "ValidateConfig",
    "ResponseConfig",
    "graph_from_dict",
    "graph_to_dict",
    "graph_hash",
    # Errors
    "FlowError",
    "GraphError",
    "GraphMutationError",
    "GenerationError",
    "SchedulingError",
    "DeploymentError",
    "PersistenceError",
    "FlowNotFoundError",
    # Editing
    "AddNode",
    "UpdateNodeConfig",
    "DeleteNode",
    "AddEdge",
    "DeleteEdge",
    "mutate",
    "new_graph",
    "EditingSession",
    # Compile pipeline
    "Diagnostic",
    "Severity",
    "DiagnosticCategory",
    "StructuralValidator",
    "ValidationResult",
    "validate",
    "schedule",
    "Artifact",
    "CodeGenerator",
    "generate",
    "CompileResult",
    "FlowCompiler",
    "compile_graph",
    "PreviewResult",
    "PreviewState",
    "PreviewSynchronizer",
    # Deployment and persistence
    "Manifest",
    "DeploymentRecord",
    "DeploymentPackager",
    "Deployer",
    "Publisher",
    "InMemoryPublisher",
    "DirectoryPublisher",
    "HttpPublisher",
    "FlowStore",
    "InMemoryFlowStore",
    "SQLiteFlowStore",
    "FlowConfig",
]
