"""Unit tests for the cgroup layout."""

import os

import pytest
from kubernetes import client

from cpuset_agent.cgroup import (
    CgroupLayout,
    CgroupPathError,
    get_kube_qos_by_cgroup_parent,
    get_pod_kube_qos,
    parse_container_id,
    write_cgroup_file,
)


def pod_with(qos_class=None, resources=None):
    return client.V1Pod(
        metadata=client.V1ObjectMeta(name="p", uid="1234-abcd"),
        spec=client.V1PodSpec(containers=[client.V1Container(name="c", resources=resources)]),
        status=client.V1PodStatus(qos_class=qos_class),
    )


class TestContainerId:
    def test_parse(self):
        assert parse_container_id("containerd://abc") == ("containerd", "abc")
        assert parse_container_id("cri-o://abc") == ("cri-o", "abc")

    @pytest.mark.parametrize("bad", ["", "abc", "containerd://", "rkt://abc"])
    def test_invalid(self, bad):
        with pytest.raises(CgroupPathError):
            parse_container_id(bad)


class TestKubeQoS:
    def test_from_status(self):
        assert get_pod_kube_qos(pod_with("Guaranteed")) == "Guaranteed"

    def test_computed_from_resources(self):
        assert get_pod_kube_qos(pod_with()) == "BestEffort"
        equal = client.V1ResourceRequirements(
            requests={"cpu": "1", "memory": "1Gi"}, limits={"cpu": "1", "memory": "1Gi"}
        )
        assert get_pod_kube_qos(pod_with(resources=equal)) == "Guaranteed"
        assert get_pod_kube_qos(pod_with(resources=client.V1ResourceRequirements(requests={"cpu": "1"}))) == "Burstable"

    def test_from_cgroup_parent(self):
        assert get_kube_qos_by_cgroup_parent("kubepods/besteffort/podx/c") == "BestEffort"
        assert get_kube_qos_by_cgroup_parent("kubepods.slice/kubepods-burstable.slice/x") == "Burstable"
        assert get_kube_qos_by_cgroup_parent("kubepods/podx/c") == "Guaranteed"


class TestLayout:
    @pytest.mark.parametrize(
        "qos, want",
        [
            ("Guaranteed", "kubepods/pod1234-abcd"),
            ("Burstable", "kubepods/burstable/pod1234-abcd"),
            ("BestEffort", "kubepods/besteffort/pod1234-abcd"),
        ],
    )
    def test_cgroupfs_pod_dir(self, qos, want):
        assert CgroupLayout().pod_cgroup_dir(pod_with(qos)) == want

    @pytest.mark.parametrize(
        "qos, want",
        [
            ("Guaranteed", "kubepods.slice/kubepods-pod1234_abcd.slice"),
            ("Burstable", "kubepods.slice/kubepods-burstable.slice/kubepods-burstable-pod1234_abcd.slice"),
        ],
    )
    def test_systemd_pod_dir(self, qos, want):
        assert CgroupLayout(driver="systemd").pod_cgroup_dir(pod_with(qos)) == want

    def test_pod_without_uid(self):
        pod = pod_with("Burstable")
        pod.metadata.uid = None
        with pytest.raises(CgroupPathError):
            CgroupLayout().pod_cgroup_dir(pod)

    def test_container_dir_names(self):
        assert CgroupLayout().container_dir_name("containerd://abc") == "abc"
        assert CgroupLayout(driver="systemd").container_dir_name("containerd://abc") == "cri-containerd-abc.scope"
        assert CgroupLayout(driver="systemd").container_dir_name("docker://abc") == "docker-abc.scope"

    def test_cpuset_file_v1_and_v2(self):
        assert CgroupLayout(root="/sys/fs/cgroup").cpuset_file("kubepods/podx") == \
            "/sys/fs/cgroup/cpuset/kubepods/podx/cpuset.cpus"
        assert CgroupLayout(root="/sys/fs/cgroup", cgroup_v2=True).cpuset_file("kubepods/podx") == \
            "/sys/fs/cgroup/kubepods/podx/cpuset.cpus"

    def test_unknown_driver(self):
        with pytest.raises(ValueError):
            CgroupLayout(driver="openrc")


class TestFindSandbox:
    def test_single_unknown_dir(self, layout, make_cgroup):
        make_cgroup("kubepods/podx/c1")
        make_cgroup("kubepods/podx/sandbox")
        assert layout.find_sandbox_dir("kubepods/podx", ["containerd://c1"]) == "kubepods/podx/sandbox"

    def test_ambiguous(self, layout, make_cgroup):
        make_cgroup("kubepods/podx/s1")
        make_cgroup("kubepods/podx/s2")
        assert layout.find_sandbox_dir("kubepods/podx", []) is None

    def test_missing_pod_dir(self, layout):
        assert layout.find_sandbox_dir("kubepods/pod-gone", []) is None


def test_write_never_creates_files(tmp_path):
    path = tmp_path / "cpuset.cpus"
    with pytest.raises(FileNotFoundError):
        write_cgroup_file(str(path), "0-3")
    assert not os.path.exists(path)

    path.write_text("0-15")
    write_cgroup_file(str(path), "0-3")
    assert path.read_text() == "0-3"


def test_write_rejects_non_str_without_truncating(tmp_path):
    path = tmp_path / "cpuset.cpus"
    path.write_text("0-3")

    with pytest.raises(TypeError):
        write_cgroup_file(str(path), None)

    assert path.read_text() == "0-3"
