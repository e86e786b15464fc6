"""Per-target requests handed to the cpuset resolver."""

import os
from dataclasses import dataclass, field
from typing import Dict, Optional

from .extension import CGROUP_BASE_ROOT, HostApplicationSpec, QoSClass


class UnsupportedConfigError(ValueError):
    """Raised for a target whose configuration the agent cannot manage."""


@dataclass
class PodMeta:
    """A pod from the informer cache with its cgroup directory."""
    pod: object
    cgroup_dir: str
    sandbox_id: Optional[str] = None

    @property
    def key(self) -> str:
        return f"{self.pod.metadata.namespace}/{self.pod.metadata.name}"


@dataclass
class ContainerMeta:
    name: str = ""
    id: str = ""


@dataclass
class ContainerRequest:
    pod_meta: Optional[PodMeta] = None
    container_meta: ContainerMeta = field(default_factory=ContainerMeta)
    pod_labels: Dict[str, str] = field(default_factory=dict)
    pod_annotations: Dict[str, str] = field(default_factory=dict)
    cgroup_parent: str = ""

    @classmethod
    def from_pod(cls, pod_meta: PodMeta, container: ContainerMeta, cgroup_parent: str) -> "ContainerRequest":
        metadata = pod_meta.pod.metadata
        return cls(
            pod_meta=pod_meta,
            container_meta=container,
            pod_labels=dict(metadata.labels or {}),
            pod_annotations=dict(metadata.annotations or {}),
            cgroup_parent=cgroup_parent,
        )


@dataclass
class HostAppRequest:
    name: str
    qos_class: QoSClass = QoSClass.NONE
    cgroup_parent: str = ""

    @classmethod
    def from_spec(cls, app: HostApplicationSpec) -> "HostAppRequest":
        """
        Build a request for a host application.

        Raises:
            UnsupportedConfigError: If the app has no cgroup path or its base
                is not the cgroup root
        """
        path = app.cgroup_path
        if path is None:
            raise UnsupportedConfigError(f"host application {app.name} has no cgroup path")
        if path.base and path.base != CGROUP_BASE_ROOT:
            raise UnsupportedConfigError(
                f"host application {app.name}: only {CGROUP_BASE_ROOT} base is supported, got {path.base}"
            )
        # relative to the cgroup root, never outside it
        cgroup_parent = os.path.normpath(os.path.join(path.parent_dir.lstrip("/"), path.relative_path.lstrip("/")))
        if cgroup_parent in (".", "..") or cgroup_parent.startswith("../"):
            raise UnsupportedConfigError(
                f"host application {app.name}: cgroup path {path.parent_dir!r}/{path.relative_path!r} is outside the cgroup root"
            )
        return cls(name=app.name, qos_class=app.qos, cgroup_parent=cgroup_parent)
