#!/usr/bin/env python3
"""
Cpuset Agent - Entry Point

A node agent that watches node topology, NodeSLO and pods on its node and
keeps the cgroup cpuset of every container, sandbox and host application in
line with the node's shared CPU pools.

Usage:
    python run.py --node-name NODE [--cgroup-driver systemd] [--enable-be-cpu-manager] [--dry-run] [--in-cluster]
"""

import argparse
import logging
import os
import sys

from kubernetes import config

from cpuset_agent.agent import CpusetAgent
from cpuset_agent.config import (
    AgentConfig,
    CGROUP_DRIVER_CGROUPFS,
    CGROUP_DRIVER_SYSTEMD,
    CGROUP_ROOT_DIR,
    KUBELET_CPU_MANAGER_STATE_FILE,
    RECONCILE_INTERVAL_SECONDS,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Cpuset Agent - Apply shared CPU pools to container cgroups on this node"
    )
    parser.add_argument(
        "--node-name",
        default=os.environ.get("NODE_NAME", ""),
        help="Name of the node this agent runs on (default: $NODE_NAME)"
    )
    parser.add_argument(
        "--cgroup-root",
        default=CGROUP_ROOT_DIR,
        help=f"Cgroup filesystem mount point (default: {CGROUP_ROOT_DIR})"
    )
    parser.add_argument(
        "--cgroup-driver",
        choices=[CGROUP_DRIVER_CGROUPFS, CGROUP_DRIVER_SYSTEMD],
        default=CGROUP_DRIVER_CGROUPFS,
        help="Kubelet cgroup driver"
    )
    parser.add_argument(
        "--cgroup-v2",
        action="store_true",
        help="Cgroup filesystem is the unified (v2) hierarchy"
    )
    parser.add_argument(
        "--enable-be-cpu-manager",
        action="store_true",
        help="Bind BE pods to the BE shared pools of their NUMA nodes"
    )
    parser.add_argument(
        "--reconcile-interval",
        type=float,
        default=RECONCILE_INTERVAL_SECONDS,
        help=f"Seconds between full reconciliations (default: {RECONCILE_INTERVAL_SECONDS})"
    )
    parser.add_argument(
        "--kubelet-cpu-manager-state",
        default=KUBELET_CPU_MANAGER_STATE_FILE,
        help="Path of the kubelet CPU manager checkpoint"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Run in dry-run mode (no cgroup writes)"
    )
    parser.add_argument(
        "--in-cluster",
        action="store_true",
        help="Use in-cluster config (for running inside Kubernetes)"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose/debug logging"
    )
    return parser.parse_args(argv)


def main():
    """Main entry point."""
    args = parse_args()

    # Set log level
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if not args.node_name:
        logger.error("Node name is required (--node-name or NODE_NAME)")
        sys.exit(1)

    # Load Kubernetes configuration
    try:
        if args.in_cluster:
            config.load_incluster_config()
            logger.info("Loaded in-cluster configuration")
        else:
            config.load_kube_config()
            logger.info("Loaded kubeconfig from default location")
    except Exception as e:
        logger.error(f"Failed to load Kubernetes config: {e}")
        sys.exit(1)

    agent = CpusetAgent(AgentConfig(
        node_name=args.node_name,
        cgroup_root=args.cgroup_root,
        cgroup_driver=args.cgroup_driver,
        cgroup_v2=args.cgroup_v2,
        be_cpu_manager_enabled=args.enable_be_cpu_manager,
        reconcile_interval=args.reconcile_interval,
        kubelet_cpu_manager_state=args.kubelet_cpu_manager_state,
        dry_run=args.dry_run,
    ))

    try:
        agent.run()
    except Exception as e:
        logger.error(f"Agent error: {e}")
        agent.stop()
        sys.exit(1)
    logger.info("Agent stopped")


if __name__ == "__main__":
    main()
