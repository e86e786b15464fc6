"""Utility functions for quantity parsing, cpuset lists and locking."""

import json
import threading
from contextlib import contextmanager
from typing import Any, List


def parse_cpu(cpu_string) -> float:
    """
    Parse CPU string to cores (float).

    Examples:
        "100m" -> 0.1
        "1" -> 1.0
        2 -> 2.0
    """
    if cpu_string is None or cpu_string == "":
        return 0.0

    cpu_string = str(cpu_string).strip()

    if cpu_string.endswith('m'):
        return float(cpu_string[:-1]) / 1000
    return float(cpu_string)


def parse_cpuset(cpuset: str) -> List[int]:
    """
    Parse a cpuset range list into a sorted list of CPU ids.

    Examples:
        "0-3,8" -> [0, 1, 2, 3, 8]
        "" -> []

    Raises:
        ValueError: If the text is not a valid range list
    """
    cpus = set()
    cpuset = cpuset.strip()
    if not cpuset:
        return []

    for part in cpuset.split(","):
        part = part.strip()
        if "-" in part:
            start, _, end = part.partition("-")
            low, high = int(start), int(end)
            if low < 0 or high < low:
                raise ValueError(f"invalid cpu range {part!r}")
            cpus.update(range(low, high + 1))
        else:
            cpu = int(part)
            if cpu < 0:
                raise ValueError(f"invalid cpu id {part!r}")
            cpus.add(cpu)

    return sorted(cpus)


def dump_json(obj: Any) -> str:
    """Serialize an object to compact JSON for annotations and logs."""
    return json.dumps(obj, separators=(",", ":"))


class RWLock:
    """Readers-writer lock: many concurrent readers or one writer."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    @contextmanager
    def read_locked(self):
        with self._cond:
            while self._writer:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write_locked(self):
        with self._cond:
            while self._writer or self._readers:
                self._cond.wait()
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()
