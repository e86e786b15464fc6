import os
import sys
import threading

import pytest
from kubernetes import client

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from cpuset_agent.cgroup import CgroupLayout  # noqa: E402
from cpuset_agent.config import AgentConfig  # noqa: E402
from cpuset_agent.executor import ResourceUpdateExecutor  # noqa: E402


def _container_status(name, container_id):
    return client.V1ContainerStatus(
        name=name,
        container_id=container_id,
        image="busybox",
        image_id="",
        ready=True,
        restart_count=0,
    )


@pytest.fixture
def make_pod():
    """Factory for V1Pod objects; containers are (name, container_id) pairs."""

    def _make_pod(
        uid,
        name=None,
        namespace="default",
        labels=None,
        annotations=None,
        containers=(),
        init_containers=(),
        qos_class="Burstable",
        phase="Running",
        resource_version="1",
    ):
        return client.V1Pod(
            metadata=client.V1ObjectMeta(
                name=name or uid,
                namespace=namespace,
                uid=uid,
                labels=labels,
                annotations=annotations,
                resource_version=resource_version,
            ),
            spec=client.V1PodSpec(
                containers=[client.V1Container(name=n) for n, _ in containers],
                init_containers=[client.V1Container(name=n) for n, _ in init_containers] or None,
            ),
            status=client.V1PodStatus(
                phase=phase,
                qos_class=qos_class,
                container_statuses=[_container_status(n, cid) for n, cid in containers] or None,
                init_container_statuses=[_container_status(n, cid) for n, cid in init_containers] or None,
            ),
        )

    return _make_pod


@pytest.fixture
def layout(tmp_path):
    return CgroupLayout(root=str(tmp_path))


@pytest.fixture
def make_cgroup(layout):
    """Create a cpuset.cpus file for a cgroup dir and return its path."""

    def _make_cgroup(cgroup_dir, content=""):
        path = layout.cpuset_file(cgroup_dir)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write(content)
        return path

    return _make_cgroup


@pytest.fixture
def read_file():
    def _read(path):
        with open(path, "r", encoding="utf-8") as f:
            return f.read()

    return _read


@pytest.fixture
def agent_config(tmp_path):
    return AgentConfig(node_name="test-node", cgroup_root=str(tmp_path))


@pytest.fixture
def executor():
    stop = threading.Event()
    executor = ResourceUpdateExecutor()
    executor.run(stop)
    yield executor
    stop.set()
    executor.wait_for_drain(5)
