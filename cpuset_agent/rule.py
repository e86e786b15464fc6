"""In-memory store for the node cpuset rule."""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from .config import (
    ANNOTATION_KUBELET_CPU_MANAGER_POLICY,
    ANNOTATION_NODE_BE_CPU_SHARED_POOLS,
    ANNOTATION_NODE_CPU_SHARED_POOLS,
    ANNOTATION_NODE_SYSTEM_QOS_RESOURCE,
    NODE_TOPOLOGY_KIND,
)
from .extension import (
    AnnotationFormatError,
    CPUSharedPool,
    KubeletCPUManagerPolicy,
    SystemQOSResource,
    get_kubelet_cpu_manager_policy,
    get_node_be_cpu_share_pools,
    get_node_cpu_share_pools,
    get_system_qos_resource,
)
from .utils import RWLock, dump_json

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CpusetRule:
    """Parsed cpuset policy of a node."""
    kubelet_policy: KubeletCPUManagerPolicy = KubeletCPUManagerPolicy()
    share_pools: Tuple[CPUSharedPool, ...] = ()
    be_share_pools: Tuple[CPUSharedPool, ...] = ()
    system_qos_cpuset: str = ""

    @classmethod
    def from_node_topology(cls, node_topo: Any) -> "CpusetRule":
        """
        Build a rule from a NodeResourceTopology object.

        Every annotation is decoded before the rule is built, so a single
        bad annotation rejects the whole snapshot.

        Raises:
            AnnotationFormatError: If the object or any annotation is malformed
        """
        if not isinstance(node_topo, dict) or node_topo.get("kind", NODE_TOPOLOGY_KIND) != NODE_TOPOLOGY_KIND:
            raise AnnotationFormatError(
                f"expected a {NODE_TOPOLOGY_KIND} object, got {type(node_topo).__name__}"
            )
        annotations = (node_topo.get("metadata") or {}).get("annotations") or {}

        kubelet_policy = get_kubelet_cpu_manager_policy(annotations)
        share_pools = get_node_cpu_share_pools(annotations)
        be_share_pools = get_node_be_cpu_share_pools(annotations)
        system_qos = get_system_qos_resource(annotations)

        return cls(
            kubelet_policy=kubelet_policy,
            share_pools=share_pools,
            be_share_pools=be_share_pools,
            system_qos_cpuset=system_qos.cpuset if system_qos else "",
        )

    def to_annotations(self) -> Dict[str, str]:
        """Encode the rule back into node-topology annotations."""
        annotations = {}
        if self.kubelet_policy != KubeletCPUManagerPolicy():
            annotations[ANNOTATION_KUBELET_CPU_MANAGER_POLICY] = dump_json(self.kubelet_policy.to_dict())
        if self.share_pools:
            annotations[ANNOTATION_NODE_CPU_SHARED_POOLS] = dump_json(
                [p.to_dict() for p in self.share_pools])
        if self.be_share_pools:
            annotations[ANNOTATION_NODE_BE_CPU_SHARED_POOLS] = dump_json(
                [p.to_dict() for p in self.be_share_pools])
        if self.system_qos_cpuset:
            annotations[ANNOTATION_NODE_SYSTEM_QOS_RESOURCE] = dump_json(
                SystemQOSResource(cpuset=self.system_qos_cpuset).to_dict())
        return annotations


class RuleStore:
    """Thread-safe holder of the current CpusetRule."""

    def __init__(self, rule: Optional[CpusetRule] = None):
        self._rule = rule if rule is not None else CpusetRule()
        self._lock = RWLock()

    def get(self) -> CpusetRule:
        with self._lock.read_locked():
            return self._rule

    def update(self, rule: CpusetRule) -> bool:
        """
        Replace the rule if it differs from the current one.

        Returns:
            True if the stored rule changed
        """
        with self._lock.write_locked():
            if rule == self._rule:
                return False
            self._rule = rule
        logger.info(f"Updated cpuset rule: {rule}")
        return True

    def parse_rule(self, node_topo: Any) -> bool:
        """
        Parse a node topology snapshot into the store.

        Returns:
            True if the rule changed

        Raises:
            AnnotationFormatError: If the snapshot is malformed; the store is
                left untouched
        """
        return self.update(CpusetRule.from_node_topology(node_topo))
