"""
Shared fixtures for the flow compiler tests.
"""

import pytest

from visual_flow_core.models import (
    Graph, Node, Edge, NodeKind,
    TriggerConfig, DatabaseConfig, ResponseConfig,
)


@pytest.fixture
def users_graph():
    """Trigger(POST /users) -> Database(users) -> Response(json)."""
    return Graph(
        nodes=(
            Node("trigger", NodeKind.TRIGGER, config=TriggerConfig(method="POST", path="/users")),
            Node("db", NodeKind.DATABASE, config=DatabaseConfig(table="users")),
            Node("out", NodeKind.RESPONSE, config=ResponseConfig(format="json")),
        ),
        edges=(Edge("trigger", "db"), Edge("db", "out")),
    )
