"""States informer: caches node-local cluster state and fans out change callbacks."""

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from kubernetes import client

from .cgroup import CgroupLayout
from .config import AgentConfig, INFORMER_SYNC_TIMEOUT_SECONDS
from .extension import HostApplicationSpec
from .protocol import PodMeta

logger = logging.getLogger(__name__)

NODE_INFORMER = "node"
PODS_INFORMER = "pods"
NODE_TOPO_INFORMER = "nodeTopo"
NODE_SLO_INFORMER = "nodeSLO"
NODE_METRIC_INFORMER = "nodeMetric"
PVC_INFORMER = "pvc"
POD_RESOURCES_INFORMER = "podResources"


class RegisterType(Enum):
    NODE_SLO_SPEC = "NodeSLOSpec"
    ALL_PODS = "AllPods"
    NODE_TOPOLOGY = "NodeTopology"
    NODE_METADATA = "NodeMetadata"


@dataclass
class CallbackTarget:
    """Current pods and host applications handed to every callback."""
    pods: List[PodMeta] = field(default_factory=list)
    host_applications: List[HostApplicationSpec] = field(default_factory=list)


UpdateCallback = Callable[[RegisterType, Any, CallbackTarget], None]


@dataclass
class _RegisteredCallback:
    name: str
    description: str
    fn: UpdateCallback


@dataclass
class PluginContext:
    """What a plugin needs from the informer that owns it."""
    config: AgentConfig
    layout: CgroupLayout
    core_v1: Any
    custom_api: Any
    notify: Callable[[RegisterType, Any], None]


class InformerPlugin:
    """Base class for one cached view of cluster state."""

    name = ""

    def __init__(self):
        self.ctx: Optional[PluginContext] = None
        self._synced = threading.Event()

    def setup(self, ctx: PluginContext) -> None:
        self.ctx = ctx

    def start(self, stop_event: threading.Event) -> None:
        raise NotImplementedError

    def has_synced(self) -> bool:
        return self._synced.is_set()

    def wait_synced(self, timeout: Optional[float] = None) -> bool:
        return self._synced.wait(timeout)


class StatesInformer:
    """
    Runs a set of informer plugins and dispatches their change callbacks.

    The plugin mapping is passed in by the caller, so tests and extensions
    can run a different set of plugins.
    """

    def __init__(
        self,
        config: AgentConfig,
        layout: CgroupLayout,
        plugins: Dict[str, InformerPlugin],
        core_v1=None,
        custom_api=None,
    ):
        self.config = config
        self.layout = layout
        self.plugins = dict(plugins)
        self._core_v1 = core_v1
        self._custom_api = custom_api
        self._callbacks: Dict[RegisterType, List[_RegisteredCallback]] = {t: [] for t in RegisterType}
        self._lock = threading.RLock()

    def setup(self) -> None:
        if self._core_v1 is None:
            self._core_v1 = client.CoreV1Api()
        if self._custom_api is None:
            self._custom_api = client.CustomObjectsApi()

        ctx = PluginContext(
            config=self.config,
            layout=self.layout,
            core_v1=self._core_v1,
            custom_api=self._custom_api,
            notify=self.send_callback,
        )
        for name, plugin in self.plugins.items():
            logger.debug(f"Setting up informer plugin {name}")
            plugin.setup(ctx)

    def run(self, stop_event: threading.Event, sync_timeout: float = INFORMER_SYNC_TIMEOUT_SECONDS) -> bool:
        """
        Set up and start every plugin, then wait for their first sync.

        Returns:
            True if all plugins synced before the timeout
        """
        self.setup()
        for name, plugin in self.plugins.items():
            logger.info(f"Starting informer plugin {name}")
            plugin.start(stop_event)

        deadline = time.monotonic() + sync_timeout
        synced = True
        for name, plugin in self.plugins.items():
            remaining = max(0.0, deadline - time.monotonic())
            if not plugin.wait_synced(remaining):
                logger.warning(f"Informer plugin {name} not synced after {sync_timeout}s")
                synced = False
        if synced:
            logger.info("All informer plugins synced")
        return synced

    def has_synced(self) -> bool:
        return all(p.has_synced() for p in self.plugins.values())

    def register_callbacks(self, register_type: RegisterType, name: str, description: str, fn: UpdateCallback) -> None:
        with self._lock:
            callbacks = self._callbacks[register_type]
            if any(cb.name == name for cb in callbacks):
                logger.warning(f"Callback {name} already registered for {register_type.value}, skip")
                return
            callbacks.append(_RegisteredCallback(name, description, fn))
        logger.info(f"Registered callback {name} for {register_type.value}: {description}")

    def get_callback_target(self) -> CallbackTarget:
        return CallbackTarget(
            pods=self.get_all_pods(),
            host_applications=self.get_host_applications(),
        )

    def send_callback(self, register_type: RegisterType, obj: Any = None) -> None:
        """Run the callbacks of one type in the calling thread; failures are logged."""
        with self._lock:
            callbacks = list(self._callbacks[register_type])
        if not callbacks:
            return

        try:
            target = self.get_callback_target()
        except Exception as e:
            logger.error(f"Failed to build callback target for {register_type.value}: {e}")
            return
        for cb in callbacks:
            logger.debug(f"Running callback {cb.name} for {register_type.value}")
            try:
                cb.fn(register_type, obj, target)
            except Exception as e:
                logger.error(f"Callback {cb.name} for {register_type.value} failed: {e}")

    def _plugin(self, name: str) -> Optional[InformerPlugin]:
        return self.plugins.get(name)

    def get_node(self):
        plugin = self._plugin(NODE_INFORMER)
        return plugin.get() if plugin else None

    def get_all_pods(self) -> List[PodMeta]:
        plugin = self._plugin(PODS_INFORMER)
        return plugin.get_all_pods() if plugin else []

    def get_node_topology(self) -> Optional[Dict[str, Any]]:
        plugin = self._plugin(NODE_TOPO_INFORMER)
        return plugin.get() if plugin else None

    def get_node_slo(self) -> Optional[Dict[str, Any]]:
        plugin = self._plugin(NODE_SLO_INFORMER)
        return plugin.get() if plugin else None

    def get_host_applications(self) -> List[HostApplicationSpec]:
        plugin = self._plugin(NODE_SLO_INFORMER)
        return plugin.get_host_applications() if plugin else []

    def get_node_metric_spec(self) -> Optional[Dict[str, Any]]:
        plugin = self._plugin(NODE_METRIC_INFORMER)
        return plugin.get_spec() if plugin else None

    def get_volume_name(self, namespace: str, pvc_name: str) -> Optional[str]:
        plugin = self._plugin(PVC_INFORMER)
        return plugin.get_volume_name(namespace, pvc_name) if plugin else None

    def get_container_cpus(self, pod_uid: str, container_name: str) -> Optional[str]:
        plugin = self._plugin(POD_RESOURCES_INFORMER)
        return plugin.get_container_cpus(pod_uid, container_name) if plugin else None
