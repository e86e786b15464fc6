"""Wires the informers, rule store, reconciler and executor into one agent."""

import logging
import threading
from typing import Dict, Optional

from .cgroup import CgroupLayout
from .config import AgentConfig
from .executor import ResourceUpdateExecutor
from .informer import InformerPlugin, StatesInformer
from .informer_plugins import default_plugin_registry
from .reconciler import CpusetReconciler, ReconcileError

logger = logging.getLogger(__name__)

SHUTDOWN_DRAIN_SECONDS = 10


class CpusetAgent:
    """
    Node agent that keeps container and host-app cpusets in line with the
    node cpuset rule.
    """

    def __init__(
        self,
        config: AgentConfig,
        plugins: Optional[Dict[str, InformerPlugin]] = None,
        core_v1=None,
        custom_api=None,
    ):
        """
        Initialize the agent.

        Args:
            config: Agent options
            plugins: Informer plugins to run; the default registry if None
            core_v1: CoreV1Api override
            custom_api: CustomObjectsApi override
        """
        self.config = config
        self.layout = CgroupLayout(
            root=config.cgroup_root,
            driver=config.cgroup_driver,
            cgroup_v2=config.cgroup_v2,
        )
        self.executor = ResourceUpdateExecutor()
        self.states_informer = StatesInformer(
            config,
            self.layout,
            plugins if plugins is not None else default_plugin_registry(),
            core_v1=core_v1,
            custom_api=custom_api,
        )
        self.reconciler = CpusetReconciler(config, self.layout, self.executor)
        self._stop_event = threading.Event()

    def periodic_reconcile(self) -> None:
        """Periodically re-apply the rule to all current targets."""
        interval = self.config.reconcile_interval
        logger.info(f"Starting periodic reconciler (interval: {interval}s)")

        while not self._stop_event.wait(interval):
            logger.debug("Running periodic reconciliation...")
            self.reconcile_once()

    def reconcile_once(self) -> bool:
        """
        Apply the current rule to the cached pods and host applications.

        Returns:
            True if every target succeeded
        """
        try:
            self.reconciler.rule_update_cb(self.states_informer.get_callback_target())
        except ReconcileError as e:
            logger.warning(f"Reconcile incomplete: {e}")
            return False
        except Exception as e:
            logger.error(f"Error during reconcile: {e}")
            return False
        return True

    def start(self) -> None:
        logger.info("=" * 60)
        logger.info("Starting cpuset agent")
        logger.info("=" * 60)
        logger.info(f"Node: {self.config.node_name}")
        logger.info(f"Cgroup: {self.config.cgroup_root} ({self.config.cgroup_driver}, "
                    f"{'v2' if self.config.cgroup_v2 else 'v1'})")
        logger.info(f"BE cpu manager: {self.config.be_cpu_manager_enabled}")
        logger.info(f"Dry run: {self.config.dry_run}")

        self.executor.run(self._stop_event)
        self.reconciler.register(self.states_informer)
        self.states_informer.run(self._stop_event)

        # callbacks fired during the initial sync saw partial caches
        self.reconcile_once()

        reconcile_thread = threading.Thread(
            target=self.periodic_reconcile,
            name="periodic-reconciler",
            daemon=True
        )
        reconcile_thread.start()

    def run(self) -> None:
        """Run the agent until interrupted."""
        self.start()
        logger.info("Agent is running. Press Ctrl+C to stop.")

        try:
            while not self._stop_event.wait(1):
                pass
        except KeyboardInterrupt:
            logger.info("Shutdown requested...")
        finally:
            self.stop()

    def stop(self) -> None:
        """Stop all threads and let queued cgroup writes finish."""
        logger.info("Stopping agent...")
        self._stop_event.set()
        if not self.executor.wait_for_drain(SHUTDOWN_DRAIN_SECONDS):
            logger.warning("Resource executor did not drain before shutdown")
