"""
Editing operations on a flow graph.

Each operation is a small immutable value. ``mutate`` applies one of them to a
graph and returns a new graph; the input graph is never modified. Structural
rules (dangling edges, cycles, reachability) are left to the validator so the
editor can pass through invalid intermediate states.
"""

from dataclasses import dataclass, replace
from typing import Any, Mapping, Optional, Union

from .exceptions import GraphError, GraphMutationError
from .models import (
    Graph, Node, Edge, NodeKind, NodeConfig, TriggerConfig,
    node_from_dict, edge_from_dict, config_from_dict, parse_node_kind,
)


DEFAULT_TRIGGER_ID = "trigger"


@dataclass(frozen=True)
class AddNode:
    """Insert a new node."""
    node: Node


@dataclass(frozen=True)
class UpdateNodeConfig:
    """Replace a node's config and optionally its label."""
    node_id: str
    config: NodeConfig
    label: Optional[str] = None


@dataclass(frozen=True)
class DeleteNode:
    """Remove a node together with every edge touching it."""
    node_id: str


@dataclass(frozen=True)
class AddEdge:
    """Insert a directed edge."""
    edge: Edge


@dataclass(frozen=True)
class DeleteEdge:
    """Remove an edge by id."""
    edge_id: str


Operation = Union[AddNode, UpdateNodeConfig, DeleteNode, AddEdge, DeleteEdge]


def new_graph(method: str = "GET", path: str = "/") -> Graph:
    """Create the graph a fresh editing session starts from: one Trigger node."""
    trigger = Node(
        id=DEFAULT_TRIGGER_ID,
        kind=NodeKind.TRIGGER,
        label="Trigger",
        config=TriggerConfig(method=method, path=path),
    )
    return Graph(nodes=(trigger,))


def mutate(graph: Graph, operation: Operation) -> Graph:
    """Apply a single editing operation and return the resulting graph."""
    if isinstance(operation, AddNode):
        if graph.get_node(operation.node.id) is not None:
            raise GraphMutationError(
                f"Node already exists: {operation.node.id}", 'addNode',
                {'node_id': operation.node.id})
        return Graph(nodes=graph.nodes + (operation.node,), edges=graph.edges)

    if isinstance(operation, UpdateNodeConfig):
        node = graph.get_node(operation.node_id)
        if node is None:
            raise GraphMutationError(
                f"Unknown node: {operation.node_id}", 'updateNodeConfig',
                {'node_id': operation.node_id})
        changes = {'config': operation.config}
        if operation.label is not None:
            changes['label'] = operation.label
        updated = replace(node, **changes)
        nodes = tuple(updated if n.id == node.id else n for n in graph.nodes)
        return Graph(nodes=nodes, edges=graph.edges)

    if isinstance(operation, DeleteNode):
        if graph.get_node(operation.node_id) is None:
            raise GraphMutationError(
                f"Unknown node: {operation.node_id}", 'deleteNode',
                {'node_id': operation.node_id})
        nodes = tuple(n for n in graph.nodes if n.id != operation.node_id)
        edges = tuple(
            e for e in graph.edges
            if e.source != operation.node_id and e.target != operation.node_id
        )
        return Graph(nodes=nodes, edges=edges)

    if isinstance(operation, AddEdge):
        if graph.get_edge(operation.edge.id) is not None:
            raise GraphMutationError(
                f"Edge already exists: {operation.edge.id}", 'addEdge',
                {'edge_id': operation.edge.id})
        return Graph(nodes=graph.nodes, edges=graph.edges + (operation.edge,))

    if isinstance(operation, DeleteEdge):
        if graph.get_edge(operation.edge_id) is None:
            raise GraphMutationError(
                f"Unknown edge: {operation.edge_id}", 'deleteEdge',
                {'edge_id': operation.edge_id})
        edges = tuple(e for e in graph.edges if e.id != operation.edge_id)
        return Graph(nodes=graph.nodes, edges=edges)

    raise GraphMutationError(f"Unsupported operation: {type(operation).__name__}")


def operation_from_dict(payload: Mapping[str, Any], graph: Optional[Graph] = None) -> Operation:
    """Decode an editing operation sent by the editor.

    Payloads look like ``{"op": "addNode", "node": {...}}``. ``graph`` is
    needed to decode ``updateNodeConfig``, whose config type depends on the
    existing node's kind.
    """
    if not isinstance(payload, Mapping):
        raise GraphMutationError("Operation payload must be an object")
    op = payload.get('op')

    try:
        if op == 'addNode':
            return AddNode(node=node_from_dict(payload.get('node') or {}))
        if op == 'updateNodeConfig':
            node_id = str(payload.get('nodeId') or '')
            node = graph.get_node(node_id) if graph is not None else None
            if node is None and payload.get('kind'):
                kind = parse_node_kind(payload.get('kind'))
            elif node is not None:
                kind = node.kind
            else:
                raise GraphMutationError(f"Unknown node: {node_id}", op, {'node_id': node_id})
            return UpdateNodeConfig(
                node_id=node_id,
                config=config_from_dict(kind, payload.get('config')),
                label=payload.get('label'),
            )
        if op == 'deleteNode':
            return DeleteNode(node_id=str(payload.get('nodeId') or ''))
        if op == 'addEdge':
            return AddEdge(edge=edge_from_dict(payload.get('edge') or {}))
        if op == 'deleteEdge':
            return DeleteEdge(edge_id=str(payload.get('edgeId') or ''))
    except GraphError as e:
        raise GraphMutationError(e.message, op, e.details)

    raise GraphMutationError(f"Unknown operation: {op!r}", op)
