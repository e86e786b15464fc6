"""Computes the target cpuset of containers and host applications."""

from typing import Iterable, List, Optional, Sequence

from .cgroup import KUBE_QOS_BESTEFFORT, get_kube_qos_by_cgroup_parent
from .extension import (
    KUBELET_CPU_MANAGER_POLICY_STATIC,
    CPUSharedPool,
    QoSClass,
    get_pod_qos_class,
    get_resource_status,
)
from .protocol import ContainerRequest, HostAppRequest
from .rule import CpusetRule


class UnsupportedQoSError(ValueError):
    """Raised for a host application whose QoS class is not managed."""


def join_share_pools(pools: Sequence[CPUSharedPool], numa_nodes: Optional[Iterable[int]] = None) -> str:
    """
    Join the cpusets of share pools in listed order.

    Args:
        pools: Ordered share pools
        numa_nodes: Only pools on these NUMA nodes; all pools if None
    """
    wanted = None if numa_nodes is None else set(numa_nodes)
    cpusets: List[str] = []
    for pool in pools:
        if wanted is not None and pool.node not in wanted:
            continue
        if pool.cpuset:
            cpusets.append(pool.cpuset)
    return ",".join(cpusets)


def get_container_cpuset(
    rule: CpusetRule,
    request: Optional[ContainerRequest],
    be_cpu_manager_enabled: bool = False,
) -> Optional[str]:
    """
    Resolve the cpuset of one container or sandbox.

    Returns:
        The cpuset to write, "" to clear any constraint, or None to leave
        the cgroup alone

    Raises:
        AnnotationFormatError: If the pod resource-status annotation is malformed
    """
    if request is None:
        return None

    pod_alloc = get_resource_status(request.pod_annotations)
    if pod_alloc.cpuset:
        return pod_alloc.cpuset

    qos = get_pod_qos_class(request.pod_labels)
    numa_nodes = pod_alloc.cpu_numa_nodes()

    if numa_nodes:
        if qos == QoSClass.BE and be_cpu_manager_enabled:
            cpuset = join_share_pools(rule.be_share_pools, numa_nodes)
            if cpuset:
                return cpuset
        cpuset = join_share_pools(rule.share_pools, numa_nodes)
        if cpuset:
            return cpuset

    if qos == QoSClass.SYSTEM and rule.system_qos_cpuset:
        return rule.system_qos_cpuset

    if qos == QoSClass.LS:
        return join_share_pools(rule.share_pools)

    # kubernetes QoS is read back from the cgroupfs or systemd dir names CgroupLayout builds
    if qos == QoSClass.BE or get_kube_qos_by_cgroup_parent(request.cgroup_parent) == KUBE_QOS_BESTEFFORT:
        return ""

    if rule.kubelet_policy.policy == KUBELET_CPU_MANAGER_POLICY_STATIC:
        # kubelet cpu manager owns these cpusets
        return None
    return join_share_pools(rule.share_pools)


def get_host_app_cpuset(
    rule: CpusetRule,
    request: Optional[HostAppRequest],
    be_cpu_manager_enabled: bool = False,
) -> Optional[str]:
    """
    Resolve the cpuset of a host application by its QoS class.

    Raises:
        UnsupportedQoSError: For QoS classes other than LS, BE and SYSTEM;
            those apps are pinned by hand
    """
    if request is None:
        return None

    qos = request.qos_class
    if qos == QoSClass.LS:
        return join_share_pools(rule.share_pools)
    if qos == QoSClass.BE:
        if be_cpu_manager_enabled and rule.be_share_pools:
            return join_share_pools(rule.be_share_pools)
        return ""
    if qos == QoSClass.SYSTEM:
        return rule.system_qos_cpuset or join_share_pools(rule.share_pools)
    raise UnsupportedQoSError(
        f"qos {qos.value or 'none'} of host application {request.name} is not supported"
    )
