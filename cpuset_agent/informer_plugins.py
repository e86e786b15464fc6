"""Informer plugins for the node, its pods and the node-scoped custom resources."""

import json
import logging
import threading
from typing import Any, Dict, Iterator, List, Optional, Tuple

from kubernetes import watch
from kubernetes.client.rest import ApiException

from .cgroup import CgroupPathError
from .config import (
    NODE_METRIC_CRD,
    NODE_SLO_CRD,
    NODE_TOPOLOGY_CRD,
    POD_RESOURCES_POLL_SECONDS,
    WATCH_RETRY_DELAY_SECONDS,
    WATCH_TIMEOUT_SECONDS,
)
from .crd_client import ClusterCustomObjectClient
from .extension import HostApplicationSpec, get_host_applications
from .informer import (
    NODE_INFORMER,
    NODE_METRIC_INFORMER,
    NODE_SLO_INFORMER,
    NODE_TOPO_INFORMER,
    POD_RESOURCES_INFORMER,
    PODS_INFORMER,
    PVC_INFORMER,
    InformerPlugin,
    PluginContext,
    RegisterType,
)
from .protocol import PodMeta

logger = logging.getLogger(__name__)

HTTP_GONE = 410
TERMINATED_POD_PHASES = ("Succeeded", "Failed")


def resource_version(obj: Any) -> str:
    if obj is None:
        return ""
    if isinstance(obj, dict):
        return (obj.get("metadata") or {}).get("resourceVersion", "")
    return obj.metadata.resource_version or ""


class WatchInformerPlugin(InformerPlugin):
    """
    List-then-watch loop against the API server.

    Every watch ends after WATCH_TIMEOUT_SECONDS and the plugin re-lists,
    which doubles as its resync cadence.
    """

    def start(self, stop_event: threading.Event) -> None:
        thread = threading.Thread(
            target=self.run,
            args=(stop_event,),
            name=f"{self.name}-informer",
            daemon=True
        )
        thread.start()

    def run(self, stop_event: threading.Event) -> None:
        logger.info(f"Starting {self.name} informer...")

        while not stop_event.is_set():
            try:
                version = self.resync()
                self._synced.set()
                for event in self.watch(version):
                    if stop_event.is_set():
                        break
                    self.handle_event(event["type"], event["object"])

            except ApiException as e:
                if e.status == HTTP_GONE:
                    logger.info(f"{self.name} watch expired, re-listing")
                    continue
                logger.error(f"{self.name} watch error: {e}")
                stop_event.wait(WATCH_RETRY_DELAY_SECONDS)
            except Exception as e:
                logger.error(f"Unexpected error in {self.name} informer: {e}")
                stop_event.wait(WATCH_RETRY_DELAY_SECONDS)

    def list_objects(self) -> Tuple[List[Any], str]:
        raise NotImplementedError

    def watch(self, version: str) -> Iterator[Dict[str, Any]]:
        raise NotImplementedError

    def resync(self) -> str:
        raise NotImplementedError

    def handle_event(self, event_type: str, obj: Any) -> None:
        raise NotImplementedError

    def _stream(self, list_func, version: str, **kwargs) -> Iterator[Dict[str, Any]]:
        w = watch.Watch()
        if version:
            kwargs["resource_version"] = version
        try:
            for event in w.stream(list_func, timeout_seconds=WATCH_TIMEOUT_SECONDS, **kwargs):
                yield event
        finally:
            w.stop()


class SingleObjectInformer(WatchInformerPlugin):
    """Caches the one object named after this node."""

    register_type: Optional[RegisterType] = None

    def __init__(self):
        super().__init__()
        self._obj = None
        self._lock = threading.RLock()

    @property
    def field_selector(self) -> str:
        return f"metadata.name={self.ctx.config.node_name}"

    def get(self):
        with self._lock:
            return self._obj

    def resync(self) -> str:
        items, version = self.list_objects()
        self._set(items[0] if items else None, force=True)
        return version

    def handle_event(self, event_type: str, obj: Any) -> None:
        if event_type in ("ADDED", "MODIFIED"):
            self._set(obj)
        elif event_type == "DELETED":
            self._set(None)

    def _set(self, obj: Any, force: bool = False) -> None:
        with self._lock:
            old = self._obj
            changed = (old is None) != (obj is None) or resource_version(old) != resource_version(obj)
            self._obj = obj
        if changed:
            logger.debug(f"{self.name} object updated to version {resource_version(obj) or 'none'}")
        if (changed or force) and self.register_type is not None:
            self.ctx.notify(self.register_type, obj)


class NodeInformer(SingleObjectInformer):
    name = NODE_INFORMER
    register_type = RegisterType.NODE_METADATA

    def list_objects(self) -> Tuple[List[Any], str]:
        nodes = self.ctx.core_v1.list_node(field_selector=self.field_selector)
        return list(nodes.items), nodes.metadata.resource_version or ""

    def watch(self, version: str) -> Iterator[Dict[str, Any]]:
        return self._stream(self.ctx.core_v1.list_node, version, field_selector=self.field_selector)


class CustomObjectInformer(SingleObjectInformer):
    crd: Tuple[str, str, str] = ("", "", "")

    def setup(self, ctx: PluginContext) -> None:
        super().setup(ctx)
        self.client = ClusterCustomObjectClient(self.crd, custom_api=ctx.custom_api)

    def list_objects(self) -> Tuple[List[Any], str]:
        return self.client.list(field_selector=self.field_selector)

    def watch(self, version: str) -> Iterator[Dict[str, Any]]:
        return self.client.watch(
            field_selector=self.field_selector,
            resource_version=version,
            timeout=WATCH_TIMEOUT_SECONDS
        )


class NodeTopoInformer(CustomObjectInformer):
    name = NODE_TOPO_INFORMER
    crd = NODE_TOPOLOGY_CRD
    register_type = RegisterType.NODE_TOPOLOGY


class NodeSLOInformer(CustomObjectInformer):
    name = NODE_SLO_INFORMER
    crd = NODE_SLO_CRD
    register_type = RegisterType.NODE_SLO_SPEC

    def get_host_applications(self) -> List[HostApplicationSpec]:
        return get_host_applications(self.get())


class NodeMetricInformer(CustomObjectInformer):
    name = NODE_METRIC_INFORMER
    crd = NODE_METRIC_CRD

    def get_spec(self) -> Optional[Dict[str, Any]]:
        obj = self.get()
        return None if obj is None else obj.get("spec") or {}


class PodsInformer(WatchInformerPlugin):
    """Caches the pods bound to this node, keyed by uid."""

    name = PODS_INFORMER

    def __init__(self):
        super().__init__()
        self._pods: Dict[str, PodMeta] = {}
        self._lock = threading.RLock()

    @property
    def field_selector(self) -> str:
        return f"spec.nodeName={self.ctx.config.node_name}"

    def get_all_pods(self) -> List[PodMeta]:
        with self._lock:
            return list(self._pods.values())

    def list_objects(self) -> Tuple[List[Any], str]:
        pods = self.ctx.core_v1.list_pod_for_all_namespaces(field_selector=self.field_selector)
        return list(pods.items), pods.metadata.resource_version or ""

    def watch(self, version: str) -> Iterator[Dict[str, Any]]:
        return self._stream(
            self.ctx.core_v1.list_pod_for_all_namespaces,
            version,
            field_selector=self.field_selector
        )

    def resync(self) -> str:
        items, version = self.list_objects()
        pods = {}
        for pod in items:
            meta = self._pod_meta(pod)
            if meta is not None:
                pods[pod.metadata.uid] = meta
        with self._lock:
            self._pods = pods
        logger.debug(f"Re-listed {len(pods)} pod(s) on node {self.ctx.config.node_name}")
        self.ctx.notify(RegisterType.ALL_PODS, None)
        return version

    def handle_event(self, event_type: str, pod: Any) -> None:
        uid = pod.metadata.uid
        if event_type == "DELETED":
            with self._lock:
                removed = self._pods.pop(uid, None)
            if removed is not None:
                logger.info(f"Pod {removed.key} removed from cache")
                self.ctx.notify(RegisterType.ALL_PODS, pod)
            return

        if event_type not in ("ADDED", "MODIFIED"):
            return

        meta = self._pod_meta(pod)
        with self._lock:
            old = self._pods.get(uid)
            if meta is None:
                self._pods.pop(uid, None)
            else:
                self._pods[uid] = meta
        if meta is None and old is None:
            return
        if old is not None and meta is not None and resource_version(old.pod) == resource_version(pod):
            return
        self.ctx.notify(RegisterType.ALL_PODS, pod)

    def _pod_meta(self, pod: Any) -> Optional[PodMeta]:
        if pod.status is not None and pod.status.phase in TERMINATED_POD_PHASES:
            return None
        try:
            cgroup_dir = self.ctx.layout.pod_cgroup_dir(pod)
        except CgroupPathError as e:
            logger.warning(f"Skipping pod {pod.metadata.namespace}/{pod.metadata.name}: {e}")
            return None
        return PodMeta(pod=pod, cgroup_dir=cgroup_dir)


class PVCInformer(WatchInformerPlugin):
    """Maps namespace/claim to the bound volume name."""

    name = PVC_INFORMER

    def __init__(self):
        super().__init__()
        self._volumes: Dict[str, str] = {}
        self._lock = threading.RLock()

    def get_volume_name(self, namespace: str, pvc_name: str) -> Optional[str]:
        with self._lock:
            return self._volumes.get(f"{namespace}/{pvc_name}")

    def list_objects(self) -> Tuple[List[Any], str]:
        pvcs = self.ctx.core_v1.list_persistent_volume_claim_for_all_namespaces()
        return list(pvcs.items), pvcs.metadata.resource_version or ""

    def watch(self, version: str) -> Iterator[Dict[str, Any]]:
        return self._stream(self.ctx.core_v1.list_persistent_volume_claim_for_all_namespaces, version)

    def resync(self) -> str:
        items, version = self.list_objects()
        volumes = {}
        for pvc in items:
            if pvc.spec is not None and pvc.spec.volume_name:
                volumes[f"{pvc.metadata.namespace}/{pvc.metadata.name}"] = pvc.spec.volume_name
        with self._lock:
            self._volumes = volumes
        return version

    def handle_event(self, event_type: str, pvc: Any) -> None:
        key = f"{pvc.metadata.namespace}/{pvc.metadata.name}"
        with self._lock:
            if event_type == "DELETED" or pvc.spec is None or not pvc.spec.volume_name:
                self._volumes.pop(key, None)
            else:
                self._volumes[key] = pvc.spec.volume_name


class PodResourcesInformer(InformerPlugin):
    """
    Polls the kubelet CPU manager checkpoint for exclusively allocated CPUs.

    Checkpoint format:
        {"policyName": "static", "defaultCpuSet": "0-3",
         "entries": {"<pod uid>": {"<container>": "4-5"}}}
    """

    name = POD_RESOURCES_INFORMER

    def __init__(self, interval: float = POD_RESOURCES_POLL_SECONDS):
        super().__init__()
        self.interval = interval
        self._state: Dict[str, Any] = {}
        self._lock = threading.RLock()

    def start(self, stop_event: threading.Event) -> None:
        thread = threading.Thread(
            target=self.run,
            args=(stop_event,),
            name=f"{self.name}-informer",
            daemon=True
        )
        thread.start()

    def run(self, stop_event: threading.Event) -> None:
        logger.info(f"Starting {self.name} informer (interval: {self.interval}s)")
        while not stop_event.is_set():
            self.sync()
            stop_event.wait(self.interval)

    def sync(self) -> None:
        path = self.ctx.config.kubelet_cpu_manager_state
        try:
            with open(path, "r", encoding="utf-8") as f:
                state = json.load(f)
        except FileNotFoundError:
            logger.debug(f"Kubelet checkpoint {path} not found")
            state = {}
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to read kubelet checkpoint {path}: {e}")
            self._synced.set()
            return

        with self._lock:
            self._state = state if isinstance(state, dict) else {}
        self._synced.set()

    def get_policy_name(self) -> str:
        with self._lock:
            return self._state.get("policyName", "")

    def get_default_cpuset(self) -> str:
        with self._lock:
            return self._state.get("defaultCpuSet", "")

    def get_container_cpus(self, pod_uid: str, container_name: str) -> Optional[str]:
        with self._lock:
            entries = self._state.get("entries") or {}
            return (entries.get(pod_uid) or {}).get(container_name)


def default_plugin_registry() -> Dict[str, InformerPlugin]:
    """A fresh set of the standard informer plugins, keyed by name."""
    plugins = [
        NodeSLOInformer(),
        PVCInformer(),
        NodeTopoInformer(),
        NodeInformer(),
        PodsInformer(),
        PodResourcesInformer(),
        NodeMetricInformer(),
    ]
    return {p.name: p for p in plugins}
