"""
Publishers - hand deployment manifests to whatever hosts the live routes.

The core only depends on the Publisher interface. The adapters here cover the
development setups: keeping manifests in memory, writing them to a directory
a hosting process watches, and posting them to a hosting service over HTTP.
"""

import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional

import requests

from .exceptions import DeploymentError
from .packager import Manifest


class Publisher(ABC):
    """Interface to the external hosting layer."""

    @abstractmethod
    def publish(self, manifest: Manifest) -> str:
        """Publish a manifest and return the url of the live endpoint.

        Raises:
            DeploymentError: If the hosting layer rejects or cannot be reached.
        """
        pass


class InMemoryPublisher(Publisher):
    """Keeps published manifests in a dict."""

    def __init__(self, base_url: str = "memory://endpoints"):
        self.base_url = base_url.rstrip('/')
        self.manifests: Dict[str, Manifest] = {}
        self.publish_count = 0
        self._lock = threading.Lock()

    def publish(self, manifest: Manifest) -> str:
        with self._lock:
            self.manifests[manifest.endpoint_id] = manifest
            self.publish_count += 1
        return f"{self.base_url}/{manifest.endpoint_id}"


class DirectoryPublisher(Publisher):
    """Writes ``<endpoint_id>.py`` and ``<endpoint_id>.json`` into a directory.

    Files are written to a temp name and renamed into place, so a watcher
    never sees a half-written handler. Republishing the same manifest
    rewrites identical content.
    """

    def __init__(self, root: str):
        self.logger = logging.getLogger(__name__)
        self.root = Path(root)

    def publish(self, manifest: Manifest) -> str:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            source_path = self.root / f"{manifest.endpoint_id}.py"
            self._write_atomic(source_path, manifest.source)
            meta = manifest.to_dict()
            meta.pop('source')
            meta['sourceFile'] = source_path.name
            self._write_atomic(self.root / f"{manifest.endpoint_id}.json",
                               json.dumps(meta, indent=2, sort_keys=True))
        except OSError as e:
            raise DeploymentError(
                f"Could not write endpoint files to {self.root}: {e}",
                endpoint_id=manifest.endpoint_id) from e

        self.logger.info(f"Wrote endpoint {manifest.endpoint_id} to {source_path}")
        return source_path.resolve().as_uri()

    def list_endpoint_ids(self) -> List[str]:
        if not self.root.exists():
            return []
        return sorted(p.stem for p in self.root.glob('*.json'))

    def _write_atomic(self, path: Path, content: str):
        tmp_path = path.with_name(path.name + '.tmp')
        with open(tmp_path, 'w', encoding='utf-8') as f:
            f.write(content)
        os.replace(tmp_path, path)


class HttpPublisher(Publisher):
    """Posts manifests to a hosting service.

    The endpoint id doubles as the ``Idempotency-Key`` header so a retried
    request after a timeout never creates a second endpoint.
    """

    def __init__(self, base_url: str, timeout: float = 10.0,
                 session: Optional[requests.Session] = None,
                 api_token: Optional[str] = None):
        self.logger = logging.getLogger(__name__)
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()
        self.api_token = api_token

    def publish(self, manifest: Manifest) -> str:
        headers = {
            'Content-Type': 'application/json',
            'Idempotency-Key': manifest.endpoint_id,
        }
        if self.api_token:
            headers['Authorization'] = f"Bearer {self.api_token}"

        try:
            response = self.session.post(
                f"{self.base_url}/endpoints",
                json=manifest.to_dict(),
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise DeploymentError(
                f"Publisher unreachable: {e}", endpoint_id=manifest.endpoint_id) from e

        if response.status_code >= 400:
            raise DeploymentError(
                f"Publisher rejected {manifest.endpoint_id}: HTTP {response.status_code}",
                endpoint_id=manifest.endpoint_id,
                retryable=response.status_code >= 500 or response.status_code == 429,
                details={'status_code': response.status_code, 'body': response.text[:2000]},
            )

        try:
            data = response.json()
        except ValueError:
            data = {}
        url = data.get('url') if isinstance(data, dict) else None
        url = url or f"{self.base_url}/endpoints/{manifest.endpoint_id}"
        self.logger.info(f"Published {manifest.endpoint_id} to {url}")
        return url
