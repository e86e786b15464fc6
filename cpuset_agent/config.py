"""Configuration settings for the cpuset agent."""

from dataclasses import dataclass

# Extension API keys
DOMAIN_PREFIX = "koordinator.sh"
NODE_DOMAIN_PREFIX = "node.koordinator.sh"
SCHEDULING_DOMAIN_PREFIX = "scheduling.koordinator.sh"
KUBELET_DOMAIN_PREFIX = "kubelet.koordinator.sh"

LABEL_POD_QOS = f"{DOMAIN_PREFIX}/qosClass"
LABEL_SCHEDULER_NAME = f"{SCHEDULING_DOMAIN_PREFIX}/scheduler-name"

ANNOTATION_KUBELET_CPU_MANAGER_POLICY = f"{KUBELET_DOMAIN_PREFIX}/cpu-manager-policy"
ANNOTATION_NODE_CPU_SHARED_POOLS = f"{NODE_DOMAIN_PREFIX}/cpu-shared-pools"
ANNOTATION_NODE_BE_CPU_SHARED_POOLS = f"{NODE_DOMAIN_PREFIX}/be-cpu-shared-pools"
ANNOTATION_NODE_SYSTEM_QOS_RESOURCE = f"{NODE_DOMAIN_PREFIX}/system-qos-resource"
ANNOTATION_RESOURCE_STATUS = f"{SCHEDULING_DOMAIN_PREFIX}/resource-status"

# Resource names that bind CPU to a NUMA node
RESOURCE_CPU = "cpu"
RESOURCE_BATCH_CPU = "kubernetes.io/batch-cpu"

# CRD Settings (group, version, plural)
NODE_TOPOLOGY_CRD = ("topology.node.k8s.io", "v1alpha1", "noderesourcetopologies")
NODE_SLO_CRD = ("slo.koordinator.sh", "v1alpha1", "nodeslos")
NODE_METRIC_CRD = ("slo.koordinator.sh", "v1alpha1", "nodemetrics")
NODE_TOPOLOGY_KIND = "NodeResourceTopology"

# Watch settings
WATCH_TIMEOUT_SECONDS = 300
WATCH_RETRY_DELAY_SECONDS = 5
RECONCILE_INTERVAL_SECONDS = 30
INFORMER_SYNC_TIMEOUT_SECONDS = 60
POD_RESOURCES_POLL_SECONDS = 10

# Cgroup settings
CGROUP_ROOT_DIR = "/sys/fs/cgroup"
CGROUP_DRIVER_CGROUPFS = "cgroupfs"
CGROUP_DRIVER_SYSTEMD = "systemd"
CPUSET_CPUS_FILE = "cpuset.cpus"
KUBELET_CPU_MANAGER_STATE_FILE = "/var/lib/kubelet/cpu_manager_state"

# Executor settings
EXECUTOR_POLL_SECONDS = 0.2
EXECUTOR_UPDATE_TIMEOUT_SECONDS = 10


@dataclass
class AgentConfig:
    """Runtime options for one agent process."""
    node_name: str
    cgroup_root: str = CGROUP_ROOT_DIR
    cgroup_driver: str = CGROUP_DRIVER_CGROUPFS
    cgroup_v2: bool = False
    be_cpu_manager_enabled: bool = False
    reconcile_interval: float = RECONCILE_INTERVAL_SECONDS
    kubelet_cpu_manager_state: str = KUBELET_CPU_MANAGER_STATE_FILE
    dry_run: bool = False
