"""
Scheduler: linearizes a validated flow graph into an execution order.
"""

import heapq
import logging
from typing import Dict, List, Tuple

from .exceptions import SchedulingError
from .models import Graph, Node


logger = logging.getLogger(__name__)


def schedule(graph: Graph) -> List[Node]:
    """Return the graph's nodes in deterministic topological order.

    Kahn's algorithm over the dependency relation where an edge
    ``source -> target`` means the target consumes the source's output.
    Nodes whose dependencies are all satisfied are released in ascending id
    order, so independent branches always come out the same way. Edges that
    leave a Response node are dead code and are ignored.

    Only defined for graphs that passed validation. A graph that cannot be
    fully ordered raises SchedulingError.
    """
    node_map = graph.node_map()
    in_degree: Dict[str, int] = {node_id: 0 for node_id in node_map}
    successors: Dict[str, List[str]] = {node_id: [] for node_id in node_map}

    for edge in graph.edges:
        if edge.source not in node_map or edge.target not in node_map:
            continue
        if node_map[edge.source].is_response:
            continue
        successors[edge.source].append(edge.target)
        in_degree[edge.target] += 1

    # The trigger always sorts ahead of any other released node.
    def priority(node_id: str) -> Tuple[bool, str]:
        return (not node_map[node_id].is_trigger, node_id)

    ready = [priority(node_id) for node_id, degree in in_degree.items() if degree == 0]
    heapq.heapify(ready)
    order: List[Node] = []

    while ready:
        _, node_id = heapq.heappop(ready)
        order.append(node_map[node_id])
        for successor in successors[node_id]:
            in_degree[successor] -= 1
            if in_degree[successor] == 0:
                heapq.heappush(ready, priority(successor))

    if len(order) != len(node_map):
        stuck = sorted(node_id for node_id, degree in in_degree.items() if degree > 0)
        raise SchedulingError(
            "Graph cannot be scheduled; it contains a cycle",
            details={'unscheduled': stuck})

    logger.debug(f"Scheduled {len(order)} nodes: {[n.id for n in order]}")
    return order
