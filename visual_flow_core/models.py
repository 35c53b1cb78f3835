"""
Core data models for the flow compiler.

This module defines the intermediate representation the editor produces: typed
nodes, directed edges between them, and the immutable Graph value that the
validator, scheduler and code generator all consume.
"""

from dataclasses import dataclass, field, asdict
from typing import Dict, List, Any, Tuple, Optional, Union, Mapping
from enum import Enum
import hashlib
import json
from urllib.parse import quote

from .exceptions import GraphError


class NodeKind(Enum):
    """Closed set of node kinds a flow can contain."""
    TRIGGER = "trigger"
    DATABASE = "database"
    TRANSFORM = "transform"
    VALIDATE = "validate"
    RESPONSE = "response"


class HttpMethod(Enum):
    """HTTP methods a Trigger node may declare."""
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"


class ResponseFormat(Enum):
    """Serialization formats a Response node may declare."""
    JSON = "json"
    XML = "xml"


# Type descriptors accepted in a Validate node's schema. A trailing '?' marks
# the field as optional.
SCHEMA_TYPES = ('string', 'integer', 'number', 'boolean', 'object', 'array')


@dataclass(frozen=True)
class TriggerConfig:
    """Entry point configuration: the HTTP route the endpoint answers."""
    method: Optional[str] = None
    path: Optional[str] = None


@dataclass(frozen=True)
class DatabaseConfig:
    """Query step configuration."""
    table: Optional[str] = None
    filter: Optional[str] = None
    limit: Optional[int] = None


@dataclass(frozen=True)
class TransformConfig:
    """User supplied function body applied to the previous step's output."""
    code: Optional[str] = None


@dataclass(frozen=True)
class ValidateConfig:
    """Field name to type descriptor mapping checked against the payload."""
    schema: Optional[Mapping[str, str]] = None


@dataclass(frozen=True)
class ResponseConfig:
    """Exit point configuration: output serialization and status."""
    format: Optional[str] = None
    status_code: Optional[int] = None


NodeConfig = Union[TriggerConfig, DatabaseConfig, TransformConfig, ValidateConfig, ResponseConfig]

CONFIG_TYPES: Dict[NodeKind, type] = {
    NodeKind.TRIGGER: TriggerConfig,
    NodeKind.DATABASE: DatabaseConfig,
    NodeKind.TRANSFORM: TransformConfig,
    NodeKind.VALIDATE: ValidateConfig,
    NodeKind.RESPONSE: ResponseConfig,
}

# Wire (camelCase) key -> dataclass field name
_CONFIG_KEY_ALIASES = {
    'statusCode': 'status_code',
}
_CONFIG_KEY_WIRE = {v: k for k, v in _CONFIG_KEY_ALIASES.items()}


@dataclass(frozen=True)
class Node:
    """A typed computation node in a flow."""
    id: str
    kind: NodeKind
    label: str = ""
    config: NodeConfig = None

    def __post_init__(self):
        if not self.id:
            raise GraphError("Node id must be a non-empty string")
        if self.config is None:
            object.__setattr__(self, 'config', CONFIG_TYPES[self.kind]())
        if not self.label:
            object.__setattr__(self, 'label', self.kind.value.capitalize())

    @property
    def is_trigger(self) -> bool:
        return self.kind == NodeKind.TRIGGER

    @property
    def is_response(self) -> bool:
        return self.kind == NodeKind.RESPONSE


@dataclass(frozen=True)
class Edge:
    """A directed edge; the target consumes the source's output."""
    source: str
    target: str
    source_handle: Optional[str] = None
    target_handle: Optional[str] = None
    id: str = field(default="", compare=False)

    def __post_init__(self):
        if not self.id:
            object.__setattr__(self, 'id', make_edge_id(
                self.source, self.target, self.source_handle, self.target_handle))


def make_edge_id(source: str, target: str,
                 source_handle: Optional[str] = None,
                 target_handle: Optional[str] = None) -> str:
    """Derive the deterministic id of an edge from its endpoints and handles.

    Each part is percent-encoded, so ``:`` and ``>`` only ever appear as
    separators and distinct edges never share an id.
    """
    def part(value: str) -> str:
        return quote(str(value), safe='')

    left = f"{part(source)}:{part(source_handle)}" if source_handle else part(source)
    right = f"{part(target)}:{part(target_handle)}" if target_handle else part(target)
    return f"{left}->{right}"


@dataclass(frozen=True)
class Graph:
    """
    An immutable flow graph.

    Nodes and edges live in flat tuples and reference each other by id only.
    Every traversal builds the index it needs on demand.
    """
    nodes: Tuple[Node, ...] = ()
    edges: Tuple[Edge, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, 'nodes', tuple(self.nodes))
        object.__setattr__(self, 'edges', tuple(self.edges))

        seen = set()
        for node in self.nodes:
            if node.id in seen:
                raise GraphError(f"Duplicate node id: {node.id}", {'node_id': node.id})
            seen.add(node.id)

    def node_map(self) -> Dict[str, Node]:
        """Index nodes by id."""
        return {node.id: node for node in self.nodes}

    def get_node(self, node_id: str) -> Optional[Node]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def get_edge(self, edge_id: str) -> Optional[Edge]:
        for edge in self.edges:
            if edge.id == edge_id:
                return edge
        return None

    def nodes_of_kind(self, kind: NodeKind) -> List[Node]:
        return [node for node in self.nodes if node.kind == kind]

    def adjacency(self) -> Dict[str, List[str]]:
        """Build a successor list for every node, skipping dangling edges."""
        adjacency: Dict[str, List[str]] = {node.id: [] for node in self.nodes}
        for edge in self.edges:
            if edge.source in adjacency and edge.target in adjacency:
                adjacency[edge.source].append(edge.target)
        return adjacency

    def outgoing_edges(self, node_id: str) -> List[Edge]:
        return [edge for edge in self.edges if edge.source == node_id]

    def incoming_edges(self, node_id: str) -> List[Edge]:
        return [edge for edge in self.edges if edge.target == node_id]


# =============================================================================
# SERIALIZATION
# =============================================================================

def config_from_dict(kind: NodeKind, data: Optional[Mapping[str, Any]]) -> NodeConfig:
    """Build the config dataclass for a node kind from an editor payload.

    Unknown keys are ignored so older or newer editors can round-trip flows.
    """
    config_type = CONFIG_TYPES[kind]
    if data is None:
        return config_type()
    if not isinstance(data, Mapping):
        raise GraphError(f"Config for {kind.value} node must be an object")

    allowed = set(config_type.__dataclass_fields__)
    values = {}
    for key, value in data.items():
        name = _CONFIG_KEY_ALIASES.get(key, key)
        if name in allowed:
            values[name] = value
    if kind == NodeKind.VALIDATE and isinstance(values.get('schema'), Mapping):
        values['schema'] = dict(values['schema'])
    return config_type(**values)


def config_to_dict(config: NodeConfig) -> Dict[str, Any]:
    """Convert a config dataclass to its wire form, dropping unset fields."""
    out = {}
    for name, value in asdict(config).items():
        if value is None:
            continue
        out[_CONFIG_KEY_WIRE.get(name, name)] = value
    return out


def node_to_dict(node: Node) -> Dict[str, Any]:
    return {
        'id': node.id,
        'kind': node.kind.value,
        'label': node.label,
        'config': config_to_dict(node.config),
    }


def node_from_dict(data: Mapping[str, Any]) -> Node:
    """Decode a single node payload."""
    if not isinstance(data, Mapping):
        raise GraphError("Node payload must be an object")
    node_id = str(data.get('id') or '').strip()
    if not node_id:
        raise GraphError("Node payload missing required 'id'")
    kind = parse_node_kind(data.get('kind') or data.get('type'))
    return Node(
        id=node_id,
        kind=kind,
        label=str(data.get('label') or ''),
        config=config_from_dict(kind, data.get('config')),
    )


def edge_to_dict(edge: Edge) -> Dict[str, Any]:
    out = {'id': edge.id, 'source': edge.source, 'target': edge.target}
    if edge.source_handle:
        out['sourceHandle'] = edge.source_handle
    if edge.target_handle:
        out['targetHandle'] = edge.target_handle
    return out


def edge_from_dict(data: Mapping[str, Any]) -> Edge:
    """Decode a single edge payload."""
    if not isinstance(data, Mapping):
        raise GraphError("Edge payload must be an object")
    source = str(data.get('source') or '').strip()
    target = str(data.get('target') or '').strip()
    if not source or not target:
        raise GraphError("Edge payload requires 'source' and 'target'")
    return Edge(
        source=source,
        target=target,
        source_handle=data.get('sourceHandle') or None,
        target_handle=data.get('targetHandle') or None,
    )


def graph_to_dict(graph: Graph) -> Dict[str, Any]:
    """Convert a graph to the editor's JSON shape."""
    return {
        'nodes': [node_to_dict(node) for node in graph.nodes],
        'edges': [edge_to_dict(edge) for edge in graph.edges],
    }


def graph_from_dict(data: Mapping[str, Any]) -> Graph:
    """Decode a graph from the editor's JSON shape."""
    if not isinstance(data, Mapping):
        raise GraphError("Graph payload must be an object")
    nodes = [node_from_dict(n) for n in data.get('nodes') or []]
    edges = [edge_from_dict(e) for e in data.get('edges') or []]
    return Graph(nodes=tuple(nodes), edges=tuple(edges))


def parse_node_kind(value: Any) -> NodeKind:
    if isinstance(value, NodeKind):
        return value
    try:
        return NodeKind(str(value or '').strip().lower())
    except ValueError:
        raise GraphError(f"Unknown node kind: {value!r}", {'kind': value})


def graph_hash(graph: Graph) -> str:
    """SHA-256 of the graph's canonical JSON (order of nodes/edges ignored)."""
    payload = graph_to_dict(graph)
    payload['nodes'] = sorted(payload['nodes'], key=lambda n: n['id'])
    payload['edges'] = sorted(payload['edges'], key=lambda e: e['id'])
    canonical = json.dumps(payload, sort_keys=True, separators=(',', ':'), default=str)
    return hashlib.sha256(canonical.encode('utf-8')).hexdigest()
