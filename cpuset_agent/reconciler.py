"""Reconciliation logic applying the cpuset rule to containers, sandboxes and host apps."""

import logging
from concurrent.futures import Future, TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional, Tuple

from .cgroup import CgroupLayout, CgroupPathError
from .config import AgentConfig, EXECUTOR_UPDATE_TIMEOUT_SECONDS
from .executor import (
    ExecutorStoppedError,
    ResourceUpdateError,
    ResourceUpdateExecutor,
    ResourceUpdater,
)
from .extension import AnnotationFormatError, HostApplicationSpec
from .informer import CallbackTarget, RegisterType, StatesInformer
from .protocol import (
    ContainerMeta,
    ContainerRequest,
    HostAppRequest,
    PodMeta,
    UnsupportedConfigError,
)
from .resolver import UnsupportedQoSError, get_container_cpuset, get_host_app_cpuset
from .rule import CpusetRule, RuleStore

logger = logging.getLogger(__name__)

RESOLVE_ERRORS = (AnnotationFormatError, CgroupPathError, UnsupportedConfigError, UnsupportedQoSError)


class TargetKind(str, Enum):
    CONTAINER = "container"
    SANDBOX = "sandbox"
    HOST_APP = "host-app"


class TargetStatus(str, Enum):
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"
    DRY_RUN = "dry-run"
    FAILED = "failed"


@dataclass
class TargetResult:
    kind: TargetKind
    name: str
    status: TargetStatus
    cpuset: Optional[str] = None
    message: str = ""


@dataclass
class ReconcileReport:
    """Outcome of one reconciliation pass, one result per target."""
    results: List[TargetResult] = field(default_factory=list)

    def add(self, result: TargetResult) -> None:
        self.results.append(result)

    def by_status(self, status: TargetStatus) -> List[TargetResult]:
        return [r for r in self.results if r.status == status]

    @property
    def failed(self) -> List[TargetResult]:
        return self.by_status(TargetStatus.FAILED)

    def summary(self) -> str:
        counts = {s.value: len(self.by_status(s)) for s in TargetStatus}
        return ", ".join(f"{k}={v}" for k, v in counts.items() if v)


class ReconcileError(Exception):
    """Raised after a pass in which at least one target failed."""

    def __init__(self, report: ReconcileReport):
        failures = "; ".join(f"{r.kind.value} {r.name}: {r.message}" for r in report.failed)
        super().__init__(f"{len(report.failed)} target(s) failed: {failures}")
        self.report = report


class CpusetReconciler:
    """Parses the node cpuset rule and reconciles cgroup cpusets to match it."""

    def __init__(
        self,
        config: AgentConfig,
        layout: CgroupLayout,
        executor: ResourceUpdateExecutor,
        rule_store: Optional[RuleStore] = None,
        update_timeout: float = EXECUTOR_UPDATE_TIMEOUT_SECONDS,
    ):
        """
        Initialize the reconciler.

        Args:
            config: Agent options (BE cpu manager switch, dry run)
            layout: Cgroup layout of the node
            executor: Executor that owns all cgroup writes
            rule_store: Store holding the current rule
            update_timeout: Seconds to wait for the writes of one pass
        """
        self.config = config
        self.layout = layout
        self.executor = executor
        self.rule_store = rule_store if rule_store is not None else RuleStore()
        self.update_timeout = update_timeout

    def register(self, states_informer: StatesInformer) -> None:
        states_informer.register_callbacks(
            RegisterType.NODE_TOPOLOGY, "cpuset-rule",
            "parse cpuset rule from node topology and apply it if changed",
            self.on_node_topology_update,
        )
        states_informer.register_callbacks(
            RegisterType.ALL_PODS, "cpuset-pods",
            "apply cpuset rule to all pods",
            self.on_target_update,
        )
        states_informer.register_callbacks(
            RegisterType.NODE_SLO_SPEC, "cpuset-host-apps",
            "apply cpuset rule to host applications",
            self.on_target_update,
        )

    def parse_rule(self, node_topo: Any) -> bool:
        """
        Parse a node topology snapshot into the rule store.

        Returns:
            True if the rule changed

        Raises:
            AnnotationFormatError: If the snapshot is malformed
        """
        return self.rule_store.parse_rule(node_topo)

    def on_node_topology_update(self, register_type: RegisterType, node_topo: Any, target: CallbackTarget) -> None:
        if node_topo is None:
            logger.debug("Node topology missing, keep current cpuset rule")
            return
        try:
            changed = self.parse_rule(node_topo)
        except AnnotationFormatError as e:
            logger.error(f"Failed to parse cpuset rule, keep last rule: {e}")
            return
        if changed:
            self.rule_update_cb(target)

    def on_target_update(self, register_type: RegisterType, obj: Any, target: CallbackTarget) -> None:
        self.rule_update_cb(target)

    def rule_update_cb(self, target: Optional[CallbackTarget]) -> ReconcileReport:
        """
        Apply the current rule to every container, sandbox and host app.

        Every target is attempted even if some fail.

        Returns:
            The report of the pass

        Raises:
            ReconcileError: If any target failed, after all writes finished
        """
        report = ReconcileReport()
        if target is None:
            logger.warning("Callback target is empty, skip cpuset reconcile")
            return report

        rule = self.rule_store.get()
        pending: List[Tuple[TargetResult, Future]] = []

        for pod_meta in target.pods:
            for result, updater in self._pod_updates(rule, pod_meta):
                self._submit(report, pending, result, updater)

        for app in target.host_applications:
            result, updater = self._host_app_update(rule, app)
            self._submit(report, pending, result, updater)

        self._collect(pending)
        logger.info(f"Cpuset reconcile finished: {report.summary() or 'no targets'}")

        if report.failed:
            raise ReconcileError(report)
        return report

    def _pod_updates(self, rule: CpusetRule, pod_meta: PodMeta):
        pod = pod_meta.pod
        status = pod.status
        container_statuses = list((status.init_container_statuses if status else None) or [])
        container_statuses += list((status.container_statuses if status else None) or [])

        for container_status in container_statuses:
            name = f"{pod_meta.key}/{container_status.name}"
            if not container_status.container_id:
                yield TargetResult(TargetKind.CONTAINER, name, TargetStatus.SKIPPED,
                                   message="container not started"), None
                continue
            try:
                cgroup_dir = self.layout.container_cgroup_dir(pod_meta.cgroup_dir, container_status.container_id)
                request = ContainerRequest.from_pod(
                    pod_meta,
                    ContainerMeta(name=container_status.name, id=container_status.container_id),
                    cgroup_dir,
                )
                cpuset = get_container_cpuset(rule, request, self.config.be_cpu_manager_enabled)
            except RESOLVE_ERRORS as e:
                yield TargetResult(TargetKind.CONTAINER, name, TargetStatus.FAILED, message=str(e)), None
                continue
            yield self._plan(TargetKind.CONTAINER, name, cgroup_dir, cpuset)

        name = pod_meta.key
        try:
            if pod_meta.sandbox_id:
                sandbox_dir = self.layout.container_cgroup_dir(pod_meta.cgroup_dir, pod_meta.sandbox_id)
            else:
                sandbox_dir = self.layout.find_sandbox_dir(
                    pod_meta.cgroup_dir, [s.container_id for s in container_statuses if s.container_id]
                )
            if sandbox_dir is None:
                yield TargetResult(TargetKind.SANDBOX, name, TargetStatus.SKIPPED,
                                   message="sandbox cgroup not found"), None
                return
            request = ContainerRequest.from_pod(pod_meta, ContainerMeta(id=pod_meta.sandbox_id or ""), sandbox_dir)
            cpuset = get_container_cpuset(rule, request, self.config.be_cpu_manager_enabled)
        except RESOLVE_ERRORS as e:
            yield TargetResult(TargetKind.SANDBOX, name, TargetStatus.FAILED, message=str(e)), None
            return
        yield self._plan(TargetKind.SANDBOX, name, sandbox_dir, cpuset)

    def _host_app_update(self, rule: CpusetRule, app: HostApplicationSpec) -> Tuple[TargetResult, Optional[ResourceUpdater]]:
        try:
            request = HostAppRequest.from_spec(app)
            cpuset = get_host_app_cpuset(rule, request, self.config.be_cpu_manager_enabled)
        except RESOLVE_ERRORS as e:
            return TargetResult(TargetKind.HOST_APP, app.name, TargetStatus.FAILED, message=str(e)), None
        return self._plan(TargetKind.HOST_APP, app.name, request.cgroup_parent, cpuset)

    def _plan(self, kind: TargetKind, name: str, cgroup_dir: str,
              cpuset: Optional[str]) -> Tuple[TargetResult, Optional[ResourceUpdater]]:
        if cpuset is None:
            return TargetResult(kind, name, TargetStatus.SKIPPED, message="cpuset managed by kubelet"), None

        path = self.layout.cpuset_file(cgroup_dir)
        result = TargetResult(kind, name, TargetStatus.UNCHANGED, cpuset=cpuset)
        if self.config.dry_run:
            logger.info(f"[DRY-RUN] Would set cpuset of {kind.value} {name} to {cpuset!r} ({path})")
            result.status = TargetStatus.DRY_RUN
            return result, None
        return result, ResourceUpdater.set_value(path, cpuset, owner=f"{kind.value} {name}")

    def _submit(self, report: ReconcileReport, pending: List[Tuple[TargetResult, Future]],
                result: TargetResult, updater: Optional[ResourceUpdater]) -> None:
        report.add(result)
        if result.status == TargetStatus.FAILED:
            logger.warning(f"Failed to resolve cpuset of {result.kind.value} {result.name}: {result.message}")
        if updater is not None:
            pending.append((result, self.executor.update(updater)))

    def _collect(self, pending: List[Tuple[TargetResult, Future]]) -> None:
        for result, future in pending:
            try:
                written = future.result(timeout=self.update_timeout)
            except FutureTimeoutError:
                result.status = TargetStatus.FAILED
                result.message = f"update not applied within {self.update_timeout}s"
                continue
            except (ResourceUpdateError, ExecutorStoppedError) as e:
                result.status = TargetStatus.FAILED
                result.message = str(e)
                continue
            result.status = TargetStatus.UPDATED if written else TargetStatus.UNCHANGED
            if written:
                logger.debug(f"Set cpuset of {result.kind.value} {result.name} to {result.cpuset!r}")
