"""
Deployment Packager - wraps generated handler source into a publishable manifest.

The endpoint id is derived from a content hash of the source, so deploying an
unchanged flow twice yields the same id and the same live endpoint. The
packager itself does no I/O; the Deployer hands manifests to a publisher.
"""

import hashlib
import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .code_generator import Artifact
from .exceptions import DeploymentError
from .models import Graph, graph_hash


ENDPOINT_ID_PREFIX = "ep-"
ENDPOINT_HASH_LENGTH = 16


@dataclass(frozen=True)
class Manifest:
    """Deployment metadata handed to the external publisher."""
    endpoint_id: str
    source: str
    created_from_graph_hash: str
    method: str = ""
    path: str = ""
    handler_name: str = ""
    created_at: float = field(default=0.0, compare=False)

    @property
    def source_hash(self) -> str:
        return hashlib.sha256(self.source.encode('utf-8')).hexdigest()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'endpointId': self.endpoint_id,
            'source': self.source,
            'createdFromGraphHash': self.created_from_graph_hash,
            'method': self.method,
            'path': self.path,
            'handlerName': self.handler_name,
            'sourceHash': self.source_hash,
            'createdAt': self.created_at,
        }


@dataclass(frozen=True)
class DeploymentRecord:
    """A manifest together with the url the publisher returned for it."""
    manifest: Manifest
    url: str
    reused: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'manifest': self.manifest.to_dict(),
            'url': self.url,
            'reused': self.reused,
        }


class DeploymentPackager:
    """Builds manifests and remembers which endpoint ids are taken."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self._manifests: Dict[str, Manifest] = {}
        self._latest_by_source: Dict[str, str] = {}
        self._lock = threading.Lock()

    def package(self, artifact: Artifact, graph: Graph, new_version: bool = False) -> Manifest:
        """
        Build the manifest for a generated artifact.

        Args:
            artifact: Output of the code generator.
            graph: The graph the artifact was generated from.
            new_version: Force a fresh endpoint id even if the source is unchanged.

        Returns:
            Manifest: Reuses the existing manifest when the same source was
            packaged before.
        """
        content_hash = artifact.content_hash
        base_id = ENDPOINT_ID_PREFIX + content_hash[:ENDPOINT_HASH_LENGTH]

        with self._lock:
            if not new_version and content_hash in self._latest_by_source:
                return self._manifests[self._latest_by_source[content_hash]]

            endpoint_id = base_id
            if base_id in self._manifests:
                endpoint_id = self._disambiguate(base_id)

            manifest = Manifest(
                endpoint_id=endpoint_id,
                source=artifact.source,
                created_from_graph_hash=graph_hash(graph),
                method=artifact.method,
                path=artifact.path,
                handler_name=artifact.handler_name,
                created_at=time.time(),
            )
            self._manifests[endpoint_id] = manifest
            self._latest_by_source[content_hash] = endpoint_id

        self.logger.info(f"Packaged {artifact.method} {artifact.path} as {endpoint_id}")
        return manifest

    def get(self, endpoint_id: str) -> Optional[Manifest]:
        with self._lock:
            return self._manifests.get(endpoint_id)

    def _disambiguate(self, base_id: str) -> str:
        while True:
            candidate = f"{base_id}-{uuid.uuid4().hex[:6]}"
            if candidate not in self._manifests:
                return candidate


class Deployer:
    """Packages artifacts and publishes each endpoint id at most once.

    A publisher failure raises DeploymentError and records nothing, so the
    caller can simply retry.
    """

    def __init__(self, publisher, packager: Optional[DeploymentPackager] = None):
        self.logger = logging.getLogger(__name__)
        self.publisher = publisher
        self.packager = packager or DeploymentPackager()
        self._published: Dict[str, DeploymentRecord] = {}
        self._lock = threading.Lock()

    def deploy(self, artifact: Artifact, graph: Graph, new_version: bool = False) -> DeploymentRecord:
        manifest = self.packager.package(artifact, graph, new_version=new_version)

        with self._lock:
            record = self._published.get(manifest.endpoint_id)
            if record is not None:
                self.logger.info(f"Endpoint {manifest.endpoint_id} already published at {record.url}")
                return DeploymentRecord(manifest=record.manifest, url=record.url, reused=True)

            try:
                url = self.publisher.publish(manifest)
            except DeploymentError:
                self.logger.warning(f"Publishing {manifest.endpoint_id} failed")
                raise
            except Exception as e:
                self.logger.error(f"Publisher raised unexpectedly for {manifest.endpoint_id}: {e}")
                raise DeploymentError(
                    f"Publisher failed: {e}", endpoint_id=manifest.endpoint_id) from e

            record = DeploymentRecord(manifest=manifest, url=url)
            self._published[manifest.endpoint_id] = record

        self.logger.info(f"Deployed {manifest.endpoint_id} to {url}")
        return record

    def get_record(self, endpoint_id: str) -> Optional[DeploymentRecord]:
        with self._lock:
            return self._published.get(endpoint_id)
