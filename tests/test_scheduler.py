"""
Unit tests for the scheduler.
"""

import pytest
from hypothesis import given, strategies as st

from visual_flow_core.exceptions import SchedulingError
from visual_flow_core.models import Graph, Node, Edge, NodeKind, TriggerConfig, TransformConfig
from visual_flow_core.scheduler import schedule


def _ids(nodes):
    return [n.id for n in nodes]


def _node(node_id, kind=NodeKind.TRANSFORM):
    config = TriggerConfig(method="GET", path="/") if kind == NodeKind.TRIGGER else None
    if kind == NodeKind.TRANSFORM:
        config = TransformConfig(code="return previous_result")
    return Node(node_id, kind, config=config)


class TestSchedule:
    """Test cases for topological ordering."""

    def test_linear_pipeline(self, users_graph):
        assert _ids(schedule(users_graph)) == ["trigger", "db", "out"]

    def test_trigger_first_even_when_sorted_later(self):
        graph = Graph(
            nodes=(_node("z_trigger", NodeKind.TRIGGER), _node("a"), _node("b", NodeKind.RESPONSE)),
            edges=(Edge("z_trigger", "a"), Edge("a", "b")),
        )
        assert _ids(schedule(graph))[0] == "z_trigger"

    def test_diamond_branches_in_stable_order(self):
        """Trigger -> {A, B} -> Response puts both branches between the ends."""
        graph = Graph(
            nodes=(_node("trigger", NodeKind.TRIGGER), _node("B"), _node("A"), _node("out", NodeKind.RESPONSE)),
            edges=(Edge("trigger", "B"), Edge("trigger", "A"), Edge("A", "out"), Edge("B", "out")),
        )
        order = _ids(schedule(graph))
        assert order == ["trigger", "A", "B", "out"]
        assert _ids(schedule(graph)) == order

    def test_response_outgoing_edges_ignored(self):
        graph = Graph(
            nodes=(_node("trigger", NodeKind.TRIGGER), _node("out", NodeKind.RESPONSE), _node("a_after")),
            edges=(Edge("trigger", "out"), Edge("out", "a_after")),
        )
        order = _ids(schedule(graph))
        assert order[0] == "trigger"
        assert set(order) == {"trigger", "out", "a_after"}

    def test_dependencies_respected(self):
        graph = Graph(
            nodes=(_node("trigger", NodeKind.TRIGGER), _node("a"), _node("b"), _node("c"),
                   _node("out", NodeKind.RESPONSE)),
            edges=(Edge("trigger", "c"), Edge("c", "a"), Edge("a", "b"), Edge("b", "out")),
        )
        assert _ids(schedule(graph)) == ["trigger", "c", "a", "b", "out"]

    def test_cycle_raises(self):
        graph = Graph(
            nodes=(_node("trigger", NodeKind.TRIGGER), _node("a"), _node("b")),
            edges=(Edge("trigger", "a"), Edge("a", "b"), Edge("b", "a")),
        )
        with pytest.raises(SchedulingError) as exc_info:
            schedule(graph)
        assert exc_info.value.details['unscheduled'] == ["a", "b"]


# Property-based tests
@given(st.lists(st.integers(min_value=0, max_value=50), min_size=1, max_size=15, unique=True), st.randoms())
def test_fan_out_schedule_is_deterministic(suffixes, rnd):
    """Property test: node declaration order never changes the schedule."""
    middle = [_node(f"n{s:02d}") for s in suffixes]
    nodes = [_node("trigger", NodeKind.TRIGGER)] + middle + [_node("out", NodeKind.RESPONSE)]
    edges = [Edge("trigger", n.id) for n in middle] + [Edge(n.id, "out") for n in middle]

    baseline = _ids(schedule(Graph(nodes=tuple(nodes), edges=tuple(edges))))
    rnd.shuffle(nodes)
    rnd.shuffle(edges)
    shuffled = _ids(schedule(Graph(nodes=tuple(nodes), edges=tuple(edges))))

    assert shuffled == baseline
    assert baseline[0] == "trigger"
    assert baseline[-1] == "out"
    assert baseline[1:-1] == sorted(n.id for n in middle)
