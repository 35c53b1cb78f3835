"""
Unit tests for configuration loading.
"""

import os

from visual_flow_core.config import FlowConfig


class TestFlowConfig:
    """Test cases for FlowConfig.from_env."""

    def test_defaults(self):
        config = FlowConfig.from_env(environ={})
        assert config == FlowConfig()

    def test_reads_prefixed_variables(self):
        config = FlowConfig.from_env(environ={
            'VISUAL_FLOW_DB_PATH': '/var/lib/flows.db',
            'VISUAL_FLOW_PREVIEW_WORKERS': '0',
            'VISUAL_FLOW_LOG_LEVEL': 'debug',
            'VISUAL_FLOW_PUBLISHER_URL': 'https://deploy.example.com',
        })
        assert config.db_path == '/var/lib/flows.db'
        assert config.preview_workers == 0
        assert config.log_level == 'DEBUG'
        assert config.publisher_url == 'https://deploy.example.com'

    def test_invalid_worker_count_falls_back(self):
        config = FlowConfig.from_env(environ={'VISUAL_FLOW_PREVIEW_WORKERS': 'many'})
        assert config.preview_workers == FlowConfig().preview_workers

    def test_env_file(self, tmp_path, monkeypatch):
        env_file = tmp_path / ".env"
        env_file.write_text("VISUAL_FLOW_PUBLISH_DIR=/srv/endpoints\n")
        monkeypatch.delenv("VISUAL_FLOW_PUBLISH_DIR", raising=False)
        config = FlowConfig.from_env(env_file=str(env_file))
        assert config.publish_dir == '/srv/endpoints'
        os.environ.pop("VISUAL_FLOW_PUBLISH_DIR", None)
