"""Typed view of the QoS labels and resource annotations the agent consumes."""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .config import (
    ANNOTATION_KUBELET_CPU_MANAGER_POLICY,
    ANNOTATION_NODE_BE_CPU_SHARED_POOLS,
    ANNOTATION_NODE_CPU_SHARED_POOLS,
    ANNOTATION_NODE_SYSTEM_QOS_RESOURCE,
    ANNOTATION_RESOURCE_STATUS,
    LABEL_POD_QOS,
    LABEL_SCHEDULER_NAME,
    RESOURCE_BATCH_CPU,
    RESOURCE_CPU,
)
from .utils import parse_cpu, parse_cpuset

logger = logging.getLogger(__name__)

KUBELET_CPU_MANAGER_POLICY_NONE = "none"
KUBELET_CPU_MANAGER_POLICY_STATIC = "static"

CGROUP_BASE_ROOT = "CgroupRoot"


class AnnotationFormatError(ValueError):
    """Raised when a policy or status annotation cannot be decoded."""


class QoSClass(str, Enum):
    LSE = "LSE"
    LSR = "LSR"
    LS = "LS"
    BE = "BE"
    SYSTEM = "SYSTEM"
    NONE = ""

    @classmethod
    def parse(cls, value: Optional[str]) -> "QoSClass":
        try:
            return cls(value or "")
        except ValueError:
            return cls.NONE


def get_pod_qos_class(labels: Optional[Dict[str, str]]) -> QoSClass:
    """Return the QoS class carried by the pod label, NONE when unset."""
    return QoSClass.parse((labels or {}).get(LABEL_POD_QOS))


def get_scheduler_name(pod) -> str:
    """Scheduler name of a pod; the scheduler-name label overrides spec.schedulerName."""
    labels = pod.metadata.labels or {}
    if LABEL_SCHEDULER_NAME in labels:
        return labels[LABEL_SCHEDULER_NAME]
    return pod.spec.scheduler_name


def _check_cpuset(cpuset: str, source: str) -> str:
    try:
        parse_cpuset(cpuset)
    except ValueError as e:
        raise AnnotationFormatError(f"bad cpuset {cpuset!r} in {source}: {e}") from e
    return cpuset


def _load_json(annotations: Optional[Dict[str, str]], key: str) -> Any:
    raw = (annotations or {}).get(key)
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        raise AnnotationFormatError(f"annotation {key} is not valid JSON: {e}") from e


@dataclass(frozen=True)
class CPUSharedPool:
    """A node-wide CPU range shared by non-pinned workloads on one NUMA node."""
    socket: int = 0
    node: int = 0
    cpuset: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CPUSharedPool":
        if not isinstance(data, dict):
            raise AnnotationFormatError(f"share pool must be an object, got {data!r}")
        try:
            pool = cls(
                socket=int(data.get("socket", 0)),
                node=int(data.get("node", 0)),
                cpuset=str(data.get("cpuset", "")),
            )
        except (TypeError, ValueError) as e:
            raise AnnotationFormatError(f"bad share pool {data!r}: {e}") from e
        _check_cpuset(pool.cpuset, "share pool")
        return pool

    def to_dict(self) -> Dict[str, Any]:
        return {"socket": self.socket, "node": self.node, "cpuset": self.cpuset}


@dataclass(frozen=True)
class KubeletCPUManagerPolicy:
    policy: str = ""
    reserved_cpus: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KubeletCPUManagerPolicy":
        if not isinstance(data, dict):
            raise AnnotationFormatError(f"cpu manager policy must be an object, got {data!r}")
        return cls(
            policy=str(data.get("policy", "")),
            reserved_cpus=_check_cpuset(str(data.get("reservedCPUs", "")), "cpu manager policy"),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {"policy": self.policy}
        if self.reserved_cpus:
            data["reservedCPUs"] = self.reserved_cpus
        return data


@dataclass(frozen=True)
class SystemQOSResource:
    cpuset: str = ""
    cpuset_exclusive: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SystemQOSResource":
        if not isinstance(data, dict):
            raise AnnotationFormatError(f"system qos resource must be an object, got {data!r}")
        return cls(
            cpuset=_check_cpuset(str(data.get("cpuset", "")), "system qos resource"),
            cpuset_exclusive=bool(data.get("cpusetExclusive", False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"cpuset": self.cpuset, "cpusetExclusive": self.cpuset_exclusive}


@dataclass
class NUMANodeResource:
    node: int
    resources: Dict[str, Any] = field(default_factory=dict)

    def cpu_bound(self) -> bool:
        """True if a positive cpu or batch-cpu quantity is bound to this node."""
        for name in (RESOURCE_CPU, RESOURCE_BATCH_CPU):
            if name not in self.resources:
                continue
            try:
                if parse_cpu(self.resources[name]) > 0:
                    return True
            except ValueError as e:
                raise AnnotationFormatError(
                    f"bad quantity {self.resources[name]!r} for {name} on NUMA node {self.node}"
                ) from e
        return False


@dataclass
class ResourceStatus:
    """Pod-level allocation result written by the scheduler."""
    cpuset: str = ""
    numa_node_resources: List[NUMANodeResource] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResourceStatus":
        if not isinstance(data, dict):
            raise AnnotationFormatError(f"resource status must be an object, got {data!r}")
        numa_nodes = []
        for item in data.get("numaNodeResources") or []:
            if not isinstance(item, dict):
                raise AnnotationFormatError(f"bad NUMA node resource {item!r}")
            try:
                numa_nodes.append(NUMANodeResource(
                    node=int(item.get("node", 0)),
                    resources=dict(item.get("resources") or {}),
                ))
            except (TypeError, ValueError) as e:
                raise AnnotationFormatError(f"bad NUMA node resource {item!r}: {e}") from e
        return cls(
            cpuset=_check_cpuset(str(data.get("cpuset", "")), "resource status"),
            numa_node_resources=numa_nodes,
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        if self.cpuset:
            data["cpuset"] = self.cpuset
        if self.numa_node_resources:
            data["numaNodeResources"] = [
                {"node": n.node, "resources": n.resources} for n in self.numa_node_resources
            ]
        return data

    def cpu_numa_nodes(self) -> List[int]:
        """NUMA nodes carrying CPU, in allocation order, without duplicates."""
        nodes = []
        for numa_node in self.numa_node_resources:
            if numa_node.cpu_bound() and numa_node.node not in nodes:
                nodes.append(numa_node.node)
        return nodes


@dataclass(frozen=True)
class CgroupPath:
    base: str = ""
    parent_dir: str = ""
    relative_path: str = ""


@dataclass(frozen=True)
class HostApplicationSpec:
    """A non-pod workload declared in NodeSLO spec.hostApplications."""
    name: str
    qos: QoSClass = QoSClass.NONE
    cgroup_path: Optional[CgroupPath] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HostApplicationSpec":
        """
        Decode one hostApplications entry.

        Raises:
            AnnotationFormatError: If the entry or its cgroupPath is malformed
        """
        if not isinstance(data, dict):
            raise AnnotationFormatError(f"host application must be an object, got {data!r}")
        name = data.get("name", "")
        qos = data.get("qos")
        if not isinstance(name, str) or not (qos is None or isinstance(qos, str)):
            raise AnnotationFormatError(f"bad host application {data!r}")

        cgroup_path = None
        raw_path = data.get("cgroupPath")
        if raw_path:
            if not isinstance(raw_path, dict):
                raise AnnotationFormatError(f"host application {name}: cgroupPath must be an object, got {raw_path!r}")
            fields = {key: raw_path.get(key, "") for key in ("base", "parentDir", "relativePath")}
            if not all(isinstance(v, str) for v in fields.values()):
                raise AnnotationFormatError(f"host application {name}: bad cgroupPath {raw_path!r}")
            cgroup_path = CgroupPath(
                base=fields["base"],
                parent_dir=fields["parentDir"],
                relative_path=fields["relativePath"],
            )
        return cls(name=name, qos=QoSClass.parse(qos), cgroup_path=cgroup_path)


def get_resource_status(annotations: Optional[Dict[str, str]]) -> ResourceStatus:
    """Decode the resource-status annotation; an absent one gives an empty status."""
    data = _load_json(annotations, ANNOTATION_RESOURCE_STATUS)
    if data is None:
        return ResourceStatus()
    return ResourceStatus.from_dict(data)


def get_kubelet_cpu_manager_policy(annotations: Optional[Dict[str, str]]) -> KubeletCPUManagerPolicy:
    data = _load_json(annotations, ANNOTATION_KUBELET_CPU_MANAGER_POLICY)
    if data is None:
        return KubeletCPUManagerPolicy()
    return KubeletCPUManagerPolicy.from_dict(data)


def _get_share_pools(annotations: Optional[Dict[str, str]], key: str) -> Tuple[CPUSharedPool, ...]:
    data = _load_json(annotations, key)
    if data is None:
        return ()
    if not isinstance(data, list):
        raise AnnotationFormatError(f"annotation {key} must be a list, got {type(data).__name__}")
    return tuple(CPUSharedPool.from_dict(item) for item in data)


def get_node_cpu_share_pools(annotations: Optional[Dict[str, str]]) -> Tuple[CPUSharedPool, ...]:
    return _get_share_pools(annotations, ANNOTATION_NODE_CPU_SHARED_POOLS)


def get_node_be_cpu_share_pools(annotations: Optional[Dict[str, str]]) -> Tuple[CPUSharedPool, ...]:
    return _get_share_pools(annotations, ANNOTATION_NODE_BE_CPU_SHARED_POOLS)


def get_system_qos_resource(annotations: Optional[Dict[str, str]]) -> Optional[SystemQOSResource]:
    data = _load_json(annotations, ANNOTATION_NODE_SYSTEM_QOS_RESOURCE)
    if data is None:
        return None
    return SystemQOSResource.from_dict(data)


def get_host_applications(node_slo: Optional[Dict[str, Any]]) -> List[HostApplicationSpec]:
    """Host applications declared in a NodeSLO object, skipping unnamed entries."""
    if not node_slo:
        return []
    spec = node_slo.get("spec") or {}
    items = spec.get("hostApplications") if isinstance(spec, dict) else None
    if not isinstance(items, list):
        if items:
            logger.warning(f"Ignoring malformed hostApplications: {items!r}")
        return []
    apps = []
    for item in items:
        if not isinstance(item, dict) or not item.get("name"):
            logger.warning(f"Ignoring malformed host application entry: {item!r}")
            continue
        try:
            apps.append(HostApplicationSpec.from_dict(item))
        except AnnotationFormatError as e:
            logger.warning(f"Ignoring host application: {e}")
    return apps
