"""Unit tests for the cpuset resolver."""

import json

import pytest

from cpuset_agent.config import ANNOTATION_RESOURCE_STATUS, LABEL_POD_QOS
from cpuset_agent.extension import (
    AnnotationFormatError,
    CPUSharedPool,
    KubeletCPUManagerPolicy,
    QoSClass,
)
from cpuset_agent.protocol import ContainerRequest, HostAppRequest
from cpuset_agent.resolver import (
    UnsupportedQoSError,
    get_container_cpuset,
    get_host_app_cpuset,
    join_share_pools,
)
from cpuset_agent.rule import CpusetRule

SHARE_POOLS = (CPUSharedPool(0, 0, "0-7"), CPUSharedPool(1, 1, "8-15"))
LS_POOLS = (CPUSharedPool(0, 0, "1-7"), CPUSharedPool(1, 1, "9-15"))
BE_POOLS = (CPUSharedPool(0, 0, "0-7"), CPUSharedPool(1, 1, "8-15"))

BURSTABLE_PARENT = "kubepods/burstable/podtest-pod/test-container"
BESTEFFORT_PARENT = "kubepods/besteffort/podtest-pod/test-container"
SYSTEMD_BESTEFFORT_PARENT = (
    "kubepods.slice/kubepods-besteffort.slice/kubepods-besteffort-podtest_pod.slice/cri-containerd-test.scope"
)


def request(qos=None, alloc=None, cgroup_parent=BURSTABLE_PARENT, annotations=None):
    labels = {LABEL_POD_QOS: qos} if qos is not None else {}
    annotations = dict(annotations or {})
    if alloc is not None:
        annotations[ANNOTATION_RESOURCE_STATUS] = json.dumps(alloc)
    return ContainerRequest(pod_labels=labels, pod_annotations=annotations, cgroup_parent=cgroup_parent)


def numa_alloc(*nodes):
    return {"numaNodeResources": [{"node": n, "resources": r} for n, r in nodes]}


@pytest.mark.parametrize(
    "rule, req, be_enabled, want",
    [
        pytest.param(
            CpusetRule(share_pools=LS_POOLS, be_share_pools=BE_POOLS),
            request(qos="BE", alloc=numa_alloc((0, {"cpu": "2"}))),
            True, "0-7",
            id="be pod uses be share pool of its numa node",
        ),
        pytest.param(
            CpusetRule(share_pools=SHARE_POOLS),
            request(alloc=numa_alloc((0, {"cpu": "2"}))),
            False, "0-7",
            id="share pool of allocated numa node",
        ),
        pytest.param(
            CpusetRule(share_pools=SHARE_POOLS),
            request(qos="LS"),
            False, "0-7,8-15",
            id="all share pools for ls pod",
        ),
        pytest.param(
            CpusetRule(share_pools=SHARE_POOLS),
            request(qos="LS", alloc=numa_alloc((0, {"hugepages-1Gi": "2Gi"}))),
            False, "0-7,8-15",
            id="all share pools for ls pod without cpu numa allocation",
        ),
        pytest.param(
            CpusetRule(kubelet_policy=KubeletCPUManagerPolicy(policy="none"), share_pools=SHARE_POOLS),
            request(),
            False, "0-7,8-15",
            id="all share pools for burstable pod under none policy",
        ),
        pytest.param(
            CpusetRule(share_pools=SHARE_POOLS),
            request(),
            False, "0-7,8-15",
            id="all share pools for burstable pod with unset policy",
        ),
        pytest.param(
            CpusetRule(kubelet_policy=KubeletCPUManagerPolicy(policy="static"), share_pools=SHARE_POOLS),
            request(),
            False, None,
            id="nothing for burstable pod under static policy",
        ),
        pytest.param(
            CpusetRule(share_pools=SHARE_POOLS),
            request(cgroup_parent=BESTEFFORT_PARENT),
            False, "",
            id="empty string for besteffort pod",
        ),
        pytest.param(
            CpusetRule(share_pools=SHARE_POOLS),
            request(cgroup_parent=SYSTEMD_BESTEFFORT_PARENT),
            False, "",
            id="empty string for besteffort pod under systemd driver",
        ),
        pytest.param(
            CpusetRule(share_pools=SHARE_POOLS, be_share_pools=BE_POOLS),
            request(qos="BE", cgroup_parent=BESTEFFORT_PARENT, alloc=numa_alloc((1, {"cpu": "2"}))),
            False, "8-15",
            id="be pod falls back to share pool when be cpu manager is off",
        ),
        pytest.param(
            CpusetRule(share_pools=LS_POOLS, be_share_pools=BE_POOLS),
            request(qos="LS", alloc=numa_alloc((1, {"cpu": "2"}))),
            False, "9-15",
            id="ls pod uses share pool of its numa node",
        ),
        pytest.param(
            CpusetRule(share_pools=LS_POOLS, be_share_pools=BE_POOLS),
            request(qos="BE", cgroup_parent=BESTEFFORT_PARENT,
                    alloc=numa_alloc((1, {"kubernetes.io/batch-cpu": 2000}))),
            True, "8-15",
            id="be pod with batch cpu on numa node",
        ),
        pytest.param(
            CpusetRule(share_pools=(CPUSharedPool(0, 0, "4-7"), CPUSharedPool(1, 1, "9-15")),
                       be_share_pools=(CPUSharedPool(0, 0, "4-7"), CPUSharedPool(1, 1, "8-15")),
                       system_qos_cpuset="0-3"),
            request(qos="SYSTEM", alloc=numa_alloc((1, {"hugepages-1Gi": "2Gi"}))),
            False, "0-3",
            id="system qos cpuset",
        ),
        pytest.param(
            CpusetRule(share_pools=SHARE_POOLS),
            request(qos="LS", alloc=numa_alloc((1, {"cpu": "1"}), (0, {"cpu": "1"}))),
            False, "0-7,8-15",
            id="multiple numa nodes joined in pool order",
        ),
        pytest.param(
            CpusetRule(share_pools=SHARE_POOLS),
            request(qos="LS", alloc=numa_alloc((3, {"cpu": "1"}))),
            False, "0-7,8-15",
            id="numa node without pool falls back to qos default",
        ),
        pytest.param(
            CpusetRule(share_pools=SHARE_POOLS),
            request(qos="BE"),
            True, "",
            id="be pod without numa allocation is cleared",
        ),
    ],
)
def test_get_container_cpuset(rule, req, be_enabled, want):
    assert get_container_cpuset(rule, req, be_cpu_manager_enabled=be_enabled) == want


def test_container_cpuset_bad_annotation():
    req = request(annotations={ANNOTATION_RESOURCE_STATUS: "bad-alloc-fmt"})
    with pytest.raises(AnnotationFormatError):
        get_container_cpuset(CpusetRule(share_pools=SHARE_POOLS), req)


@pytest.mark.parametrize("qos", ["LS", "BE", "SYSTEM", None])
@pytest.mark.parametrize("policy", ["none", "static"])
def test_pod_cpuset_annotation_wins(qos, policy):
    rule = CpusetRule(
        kubelet_policy=KubeletCPUManagerPolicy(policy=policy),
        share_pools=SHARE_POOLS,
        be_share_pools=BE_POOLS,
        system_qos_cpuset="0-1",
    )
    req = request(qos=qos, alloc={"cpuset": "2-4", **numa_alloc((1, {"cpu": "2"}))})
    assert get_container_cpuset(rule, req, be_cpu_manager_enabled=True) == "2-4"


def test_nil_container_request():
    assert get_container_cpuset(CpusetRule(), None) is None


class TestHostAppCpuset:
    def test_nil_request(self):
        assert get_host_app_cpuset(CpusetRule(), None) is None

    def test_lsr_not_supported(self):
        req = HostAppRequest(name="test-app", qos_class=QoSClass.LSR)
        with pytest.raises(UnsupportedQoSError):
            get_host_app_cpuset(CpusetRule(share_pools=SHARE_POOLS), req)

    def test_ls_gets_all_share_pools(self):
        req = HostAppRequest(name="test-app", qos_class=QoSClass.LS)
        rule = CpusetRule(share_pools=(CPUSharedPool(0, 0, "0-7"), CPUSharedPool(1, 0, "8-15")))
        assert get_host_app_cpuset(rule, req) == "0-7,8-15"

    def test_be(self):
        req = HostAppRequest(name="test-app", qos_class=QoSClass.BE)
        rule = CpusetRule(share_pools=LS_POOLS, be_share_pools=BE_POOLS)
        assert get_host_app_cpuset(rule, req) == ""
        assert get_host_app_cpuset(rule, req, be_cpu_manager_enabled=True) == "0-7,8-15"

    def test_system(self):
        req = HostAppRequest(name="test-app", qos_class=QoSClass.SYSTEM)
        assert get_host_app_cpuset(CpusetRule(share_pools=SHARE_POOLS, system_qos_cpuset="0-1"), req) == "0-1"
        assert get_host_app_cpuset(CpusetRule(share_pools=SHARE_POOLS), req) == "0-7,8-15"


def test_join_share_pools_skips_empty():
    pools = (CPUSharedPool(0, 0, "0-3"), CPUSharedPool(0, 1, ""), CPUSharedPool(1, 1, "8-11"))
    assert join_share_pools(pools) == "0-3,8-11"
    assert join_share_pools(pools, [1]) == "8-11"
    assert join_share_pools(pools, []) == ""
