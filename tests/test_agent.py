"""Tests for agent wiring with in-memory informer plugins."""

from unittest.mock import MagicMock

from cpuset_agent.agent import CpusetAgent
from cpuset_agent.config import AgentConfig, LABEL_POD_QOS
from cpuset_agent.extension import CPUSharedPool
from cpuset_agent.informer import InformerPlugin, RegisterType
from cpuset_agent.protocol import PodMeta
from cpuset_agent.rule import CpusetRule

RULE = CpusetRule(share_pools=(CPUSharedPool(0, 0, "0-3"), CPUSharedPool(1, 1, "8-11")))


class StaticTopoPlugin(InformerPlugin):
    name = "nodeTopo"

    def __init__(self, topo):
        super().__init__()
        self.topo = topo

    def start(self, stop_event):
        self._synced.set()
        self.ctx.notify(RegisterType.NODE_TOPOLOGY, self.topo)

    def get(self):
        return self.topo


class StaticPodsPlugin(InformerPlugin):
    name = "pods"

    def __init__(self, pods):
        super().__init__()
        self.pods = pods

    def start(self, stop_event):
        self._synced.set()

    def get_all_pods(self):
        return list(self.pods)


def test_agent_applies_rule_on_start(tmp_path, make_pod, make_cgroup, read_file):
    pod = make_pod("uid-1", labels={LABEL_POD_QOS: "LS"}, containers=[("app", "containerd://app-1")])
    pod_dir = "kubepods/burstable/poduid-1"
    container = make_cgroup(f"{pod_dir}/app-1")
    sandbox = make_cgroup(f"{pod_dir}/sandbox-1")
    topo = {"kind": "NodeResourceTopology", "metadata": {"name": "test-node", "annotations": RULE.to_annotations()}}

    agent = CpusetAgent(
        AgentConfig(node_name="test-node", cgroup_root=str(tmp_path), reconcile_interval=60),
        plugins={
            "pods": StaticPodsPlugin([PodMeta(pod=pod, cgroup_dir=pod_dir)]),
            "nodeTopo": StaticTopoPlugin(topo),
        },
        core_v1=MagicMock(),
        custom_api=MagicMock(),
    )
    try:
        agent.start()

        assert agent.reconciler.rule_store.get() == RULE
        assert read_file(container) == "0-3,8-11"
        assert read_file(sandbox) == "0-3,8-11"
    finally:
        agent.stop()

    assert agent.executor.wait_for_drain(1)


def test_reconcile_once_reports_failures(tmp_path, make_pod):
    pod = make_pod("uid-2", containers=[("app", "containerd://gone")])
    agent = CpusetAgent(
        AgentConfig(node_name="test-node", cgroup_root=str(tmp_path)),
        plugins={"pods": StaticPodsPlugin([PodMeta(pod=pod, cgroup_dir="kubepods/burstable/poduid-2")])},
        core_v1=MagicMock(),
        custom_api=MagicMock(),
    )
    agent.reconciler.rule_store.update(RULE)
    agent.executor.run(agent._stop_event)
    try:
        assert agent.reconcile_once() is False
    finally:
        agent.stop()


def test_reconcile_once_survives_unexpected_errors(tmp_path):
    agent = CpusetAgent(
        AgentConfig(node_name="test-node", cgroup_root=str(tmp_path)),
        plugins={},
        core_v1=MagicMock(),
        custom_api=MagicMock(),
    )
    agent.states_informer.get_callback_target = MagicMock(side_effect=RuntimeError("boom"))

    assert agent.reconcile_once() is False
