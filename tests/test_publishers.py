"""
Unit tests for the publisher adapters.
"""

import json
from unittest.mock import Mock

import pytest
import requests

from visual_flow_core.exceptions import DeploymentError
from visual_flow_core.packager import Manifest
from visual_flow_core.publishers import DirectoryPublisher, HttpPublisher, InMemoryPublisher


@pytest.fixture
def manifest():
    return Manifest(
        endpoint_id="ep-0123456789abcdef",
        source="def handle_get_root(**path_params):\n    return None\n",
        created_from_graph_hash="f" * 64,
        method="GET",
        path="/",
        handler_name="handle_get_root",
        created_at=1700000000.0,
    )


class TestInMemoryPublisher:
    """Test cases for the in-memory publisher."""

    def test_publish(self, manifest):
        publisher = InMemoryPublisher(base_url="memory://hosted/")
        url = publisher.publish(manifest)
        assert url == "memory://hosted/ep-0123456789abcdef"
        assert publisher.manifests[manifest.endpoint_id] is manifest


class TestDirectoryPublisher:
    """Test cases for the directory publisher."""

    def test_writes_source_and_metadata(self, tmp_path, manifest):
        publisher = DirectoryPublisher(str(tmp_path / "endpoints"))
        url = publisher.publish(manifest)

        source_file = tmp_path / "endpoints" / "ep-0123456789abcdef.py"
        meta = json.loads((tmp_path / "endpoints" / "ep-0123456789abcdef.json").read_text())
        assert source_file.read_text() == manifest.source
        assert meta['sourceFile'] == "ep-0123456789abcdef.py"
        assert meta['endpointId'] == manifest.endpoint_id
        assert 'source' not in meta
        assert url.startswith("file://")
        assert publisher.list_endpoint_ids() == ["ep-0123456789abcdef"]

    def test_no_temp_files_left(self, tmp_path, manifest):
        publisher = DirectoryPublisher(str(tmp_path))
        publisher.publish(manifest)
        publisher.publish(manifest)
        assert sorted(p.name for p in tmp_path.iterdir()) == [
            "ep-0123456789abcdef.json", "ep-0123456789abcdef.py",
        ]

    def test_unwritable_root_raises(self, tmp_path, manifest):
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")
        with pytest.raises(DeploymentError) as exc_info:
            DirectoryPublisher(str(blocker / "sub")).publish(manifest)
        assert exc_info.value.endpoint_id == manifest.endpoint_id

    def test_list_missing_root(self, tmp_path):
        assert DirectoryPublisher(str(tmp_path / "absent")).list_endpoint_ids() == []


class TestHttpPublisher:
    """Test cases for the HTTP publisher."""

    def _response(self, status_code, payload=None):
        response = Mock()
        response.status_code = status_code
        response.text = json.dumps(payload or {})
        response.json.return_value = payload or {}
        return response

    def test_posts_with_idempotency_key(self, manifest):
        session = Mock()
        session.post.return_value = self._response(201, {'url': 'https://api.example.com/live/ep'})
        publisher = HttpPublisher("https://deploy.example.com/", session=session, api_token="secret")

        url = publisher.publish(manifest)

        assert url == 'https://api.example.com/live/ep'
        args, kwargs = session.post.call_args
        assert args[0] == "https://deploy.example.com/endpoints"
        assert kwargs['headers']['Idempotency-Key'] == manifest.endpoint_id
        assert kwargs['headers']['Authorization'] == "Bearer secret"
        assert kwargs['json']['endpointId'] == manifest.endpoint_id

    def test_default_url_when_body_has_none(self, manifest):
        session = Mock()
        session.post.return_value = self._response(200)
        url = HttpPublisher("https://deploy.example.com", session=session).publish(manifest)
        assert url == "https://deploy.example.com/endpoints/ep-0123456789abcdef"

    def test_connection_error_is_retryable(self, manifest):
        session = Mock()
        session.post.side_effect = requests.ConnectionError("refused")
        with pytest.raises(DeploymentError) as exc_info:
            HttpPublisher("https://deploy.example.com", session=session).publish(manifest)
        assert exc_info.value.retryable is True

    def test_client_error_not_retryable(self, manifest):
        session = Mock()
        session.post.return_value = self._response(422, {'error': 'bad manifest'})
        with pytest.raises(DeploymentError) as exc_info:
            HttpPublisher("https://deploy.example.com", session=session).publish(manifest)
        assert exc_info.value.retryable is False
        assert exc_info.value.details['status_code'] == 422

    def test_server_error_retryable(self, manifest):
        session = Mock()
        session.post.return_value = self._response(503)
        with pytest.raises(DeploymentError) as exc_info:
            HttpPublisher("https://deploy.example.com", session=session).publish(manifest)
        assert exc_info.value.retryable is True
