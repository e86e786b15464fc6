"""Cgroup directory layout for pods, containers and host applications."""

import logging
import os
from typing import Iterable, Optional, Tuple

from .config import (
    CGROUP_DRIVER_CGROUPFS,
    CGROUP_DRIVER_SYSTEMD,
    CGROUP_ROOT_DIR,
    CPUSET_CPUS_FILE,
)

logger = logging.getLogger(__name__)

KUBE_QOS_GUARANTEED = "Guaranteed"
KUBE_QOS_BURSTABLE = "Burstable"
KUBE_QOS_BESTEFFORT = "BestEffort"

# runtime type -> systemd scope prefix
RUNTIME_SCOPE_PREFIXES = {
    "containerd": "cri-containerd-",
    "docker": "docker-",
    "cri-o": "crio-",
}


class CgroupPathError(ValueError):
    """Raised when a cgroup path cannot be derived for a target."""


def parse_container_id(container_id: str) -> Tuple[str, str]:
    """
    Split a container status ID into runtime type and ID.

    Examples:
        "containerd://abc" -> ("containerd", "abc")
    """
    runtime, sep, cid = (container_id or "").partition("://")
    if not sep or not runtime or not cid:
        raise CgroupPathError(f"invalid container id {container_id!r}")
    if runtime not in RUNTIME_SCOPE_PREFIXES:
        raise CgroupPathError(f"unsupported runtime {runtime!r} in container id {container_id!r}")
    return runtime, cid


def get_pod_kube_qos(pod) -> str:
    """Kubernetes QoS class of a pod, computed from its containers when status lacks it."""
    if pod.status is not None and pod.status.qos_class:
        return pod.status.qos_class

    containers = list(pod.spec.containers or []) + list(pod.spec.init_containers or [])
    has_any = False
    guaranteed = True
    for container in containers:
        resources = container.resources
        requests = (resources.requests if resources else None) or {}
        limits = (resources.limits if resources else None) or {}
        if requests or limits:
            has_any = True
        for name in ("cpu", "memory"):
            if name not in limits or requests.get(name, limits[name]) != limits[name]:
                guaranteed = False
    if not has_any:
        return KUBE_QOS_BESTEFFORT
    return KUBE_QOS_GUARANTEED if guaranteed else KUBE_QOS_BURSTABLE


def get_kube_qos_by_cgroup_parent(cgroup_parent: str) -> str:
    if "besteffort" in cgroup_parent:
        return KUBE_QOS_BESTEFFORT
    if "burstable" in cgroup_parent:
        return KUBE_QOS_BURSTABLE
    return KUBE_QOS_GUARANTEED


class CgroupLayout:
    """Maps pods and containers to cgroup directories and cpuset files."""

    def __init__(
        self,
        root: str = CGROUP_ROOT_DIR,
        driver: str = CGROUP_DRIVER_CGROUPFS,
        cgroup_v2: bool = False,
    ):
        """
        Initialize the layout.

        Args:
            root: Mount point of the cgroup filesystem
            driver: Kubelet cgroup driver, "cgroupfs" or "systemd"
            cgroup_v2: True for the unified hierarchy
        """
        if driver not in (CGROUP_DRIVER_CGROUPFS, CGROUP_DRIVER_SYSTEMD):
            raise ValueError(f"unknown cgroup driver {driver!r}")
        self.root = root
        self.driver = driver
        self.cgroup_v2 = cgroup_v2

    def pod_cgroup_dir(self, pod) -> str:
        """Pod cgroup directory relative to the cgroup root."""
        uid = pod.metadata.uid
        if not uid:
            raise CgroupPathError(f"pod {pod.metadata.name} has no uid")
        qos = get_pod_kube_qos(pod)

        if self.driver == CGROUP_DRIVER_SYSTEMD:
            escaped = uid.replace("-", "_")
            if qos == KUBE_QOS_GUARANTEED:
                return f"kubepods.slice/kubepods-pod{escaped}.slice"
            tier = qos.lower()
            return f"kubepods.slice/kubepods-{tier}.slice/kubepods-{tier}-pod{escaped}.slice"

        if qos == KUBE_QOS_GUARANTEED:
            return f"kubepods/pod{uid}"
        return f"kubepods/{qos.lower()}/pod{uid}"

    def container_dir_name(self, container_id: str) -> str:
        runtime, cid = parse_container_id(container_id)
        if self.driver == CGROUP_DRIVER_SYSTEMD:
            return f"{RUNTIME_SCOPE_PREFIXES[runtime]}{cid}.scope"
        return cid

    def container_cgroup_dir(self, pod_cgroup_dir: str, container_id: str) -> str:
        return os.path.join(pod_cgroup_dir, self.container_dir_name(container_id))

    def absolute_dir(self, cgroup_dir: str) -> str:
        if self.cgroup_v2:
            return os.path.join(self.root, cgroup_dir)
        return os.path.join(self.root, "cpuset", cgroup_dir)

    def cpuset_file(self, cgroup_dir: str) -> str:
        """Absolute path of the cpuset.cpus file of a cgroup directory."""
        return os.path.join(self.absolute_dir(cgroup_dir), CPUSET_CPUS_FILE)

    def find_sandbox_dir(self, pod_cgroup_dir: str, container_ids: Iterable[str]) -> Optional[str]:
        """
        Locate the sandbox cgroup of a pod.

        The sandbox is the only child directory of the pod cgroup that does
        not belong to a known container.

        Returns:
            The sandbox cgroup directory relative to the root, or None
        """
        known = set()
        for container_id in container_ids:
            try:
                known.add(self.container_dir_name(container_id))
            except CgroupPathError:
                continue

        pod_dir = self.absolute_dir(pod_cgroup_dir)
        try:
            entries = sorted(
                e.name for e in os.scandir(pod_dir) if e.is_dir() and e.name not in known
            )
        except FileNotFoundError:
            logger.debug(f"Pod cgroup {pod_dir} does not exist")
            return None

        if len(entries) != 1:
            if entries:
                logger.debug(f"Ambiguous sandbox cgroup under {pod_dir}: {entries}")
            return None
        return os.path.join(pod_cgroup_dir, entries[0])


def read_cgroup_file(path: str) -> str:
    with open(path, "r", encoding="utf-8") as f:
        return f.read().strip()


def write_cgroup_file(path: str, content: str) -> None:
    if not isinstance(content, str):
        raise TypeError(f"cgroup content must be str, got {type(content).__name__}")
    # encode before the file is opened, opening truncates it
    data = content.encode("utf-8")
    # cgroup files must exist already; never create them
    if not os.path.isfile(path):
        raise FileNotFoundError(f"cgroup file {path} does not exist")
    with open(path, "wb") as f:
        f.write(data)
