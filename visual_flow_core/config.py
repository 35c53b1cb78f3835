"""
Configuration for the flow compiler services.

Values come from the environment (a ``.env`` file at the repo root is loaded
first) and fall back to hard-coded defaults. Settings stored in the flow
database override both where ``SQLiteFlowStore.resolve_setting`` is used.
"""

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv


ENV_PREFIX = 'VISUAL_FLOW_'
DEFAULT_ENV_FILE = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), '.env')


@dataclass
class FlowConfig:
    """Settings shared by the CLI and the web interface."""
    db_path: str = 'flows.db'
    publish_dir: str = 'published_endpoints'
    publisher_url: str = ''
    preview_workers: int = 2
    log_level: str = 'INFO'
    secret_key: str = 'visual-flow-dev-key'

    @classmethod
    def from_env(cls, env_file: Optional[str] = DEFAULT_ENV_FILE,
                 environ: Optional[Mapping[str, str]] = None) -> 'FlowConfig':
        """Build a config from ``VISUAL_FLOW_*`` environment variables.

        Args:
            env_file: ``.env`` file to load before reading; None skips it.
                Variables already set in the environment win.
            environ: Mapping to read instead of ``os.environ``.
        """
        if env_file and environ is None:
            load_dotenv(env_file, override=False)
        env = os.environ if environ is None else environ
        defaults = cls()

        def get(name: str, default: str) -> str:
            value = env.get(ENV_PREFIX + name, '').strip()
            return value or default

        workers_raw = get('PREVIEW_WORKERS', str(defaults.preview_workers))
        try:
            preview_workers = max(0, int(workers_raw))
        except ValueError:
            logging.getLogger(__name__).warning(
                f"Ignoring invalid {ENV_PREFIX}PREVIEW_WORKERS={workers_raw!r}")
            preview_workers = defaults.preview_workers

        return cls(
            db_path=get('DB_PATH', defaults.db_path),
            publish_dir=get('PUBLISH_DIR', defaults.publish_dir),
            publisher_url=get('PUBLISHER_URL', defaults.publisher_url),
            preview_workers=preview_workers,
            log_level=get('LOG_LEVEL', defaults.log_level).upper(),
            secret_key=get('SECRET_KEY', defaults.secret_key),
        )
