"""Assigning test instances and tracking the status they report.

InstanceManager is the contract the orchestration helpers are written
against. LocalInstanceManager implements it in-process: every instance gets
its own worker thread so configuration calls to one instance run one at a
time, and each instance's latest report is kept until it is reset.
"""

import abc
import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Optional, Protocol

logger = logging.getLogger(__name__)


class InstanceManagerError(Exception):
    """Base class for instance manager failures."""


class DuplicateNameError(InstanceManagerError):
    """An instance with this name is already assigned."""


class NoAvailableContainersError(InstanceManagerError):
    """No capacity is left to assign another instance."""


class NoAssignmentError(InstanceManagerError):
    """No instance with this name is assigned."""


class StatusTimeoutError(InstanceManagerError):
    """The instance did not report a status in time."""


class Instance(Protocol):
    def set_reporter(self, reporter: Callable[[str], None]) -> None: ...

    def configure(self, params: str) -> None: ...

    def teardown(self) -> None: ...


InstanceFactory = Callable[[], Instance]


class InstanceManager(abc.ABC):
    """Assigns named instances, relays configuration and collects reports."""

    @abc.abstractmethod
    def assign_instance(
        self, name: str, factory: InstanceFactory, params: str, weight: int
    ) -> None: ...

    @abc.abstractmethod
    def reset_status(self, name: str) -> None: ...

    @abc.abstractmethod
    def reconfigure_instance(self, name: str, params: str) -> None: ...

    @abc.abstractmethod
    def get_status(self, name: str, timeout: float) -> str: ...

    @abc.abstractmethod
    def remove_instance(self, name: str) -> None: ...


@dataclass
class _Assignment:
    instance: Instance
    executor: ThreadPoolExecutor
    weight: int
    status: Optional[str] = None


class LocalInstanceManager(InstanceManager):
    """Runs instances inside this process.

    Args:
        capacity: Total weight that may be assigned at once, or None for no limit.
    """

    def __init__(self, capacity: Optional[int] = None):
        self.capacity = capacity
        self._assignments: dict[str, _Assignment] = {}
        self._condition = threading.Condition()

    def _get(self, name: str) -> _Assignment:
        assignment = self._assignments.get(name)
        if assignment is None:
            raise NoAssignmentError(f"No instance named {name}")
        return assignment

    def _reporter_for(self, name: str) -> Callable[[str], None]:
        def report(status: str) -> None:
            with self._condition:
                assignment = self._assignments.get(name)
                if assignment is None:
                    logger.warning("Dropping report %r from removed instance %s", status, name)
                    return
                assignment.status = status
                self._condition.notify_all()

        return report

    def _run_configure(self, name: str, instance: Instance, params: str) -> None:
        try:
            instance.configure(params)
        except Exception:
            logger.exception("Instance %s failed to handle %r", name, params)

    def assign_instance(
        self, name: str, factory: InstanceFactory, params: str, weight: int
    ) -> None:
        """Create an instance and send it its first configuration.

        Raises:
            DuplicateNameError: if name is already assigned.
            NoAvailableContainersError: if the weight doesn't fit.
        """
        with self._condition:
            if name in self._assignments:
                raise DuplicateNameError(f"{name} is already assigned")
            used = sum(a.weight for a in self._assignments.values())
            if self.capacity is not None and used + weight > self.capacity:
                raise NoAvailableContainersError(
                    f"Can't fit {name} (weight {weight}, {used}/{self.capacity} used)"
                )

            instance = factory()
            executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=name)
            self._assignments[name] = _Assignment(instance, executor, weight)

        instance.set_reporter(self._reporter_for(name))
        logger.info("Assigned %s", name)
        executor.submit(self._run_configure, name, instance, params)

    def reset_status(self, name: str) -> None:
        with self._condition:
            self._get(name).status = None

    def reconfigure_instance(self, name: str, params: str) -> None:
        with self._condition:
            assignment = self._get(name)
        logger.debug("Reconfiguring %s with %r", name, params)
        assignment.executor.submit(self._run_configure, name, assignment.instance, params)

    def get_status(self, name: str, timeout: float) -> str:
        """Wait for the instance to report.

        Args:
            name: Instance name
            timeout: Maximum time to wait in seconds.

        Raises:
            NoAssignmentError: if name isn't assigned (or is removed while waiting).
            StatusTimeoutError: if nothing was reported in time.
        """
        deadline = time.time() + timeout
        with self._condition:
            while True:
                status = self._get(name).status
                if status is not None:
                    return status
                remaining = deadline - time.time()
                if remaining <= 0:
                    raise StatusTimeoutError(
                        f"{name} did not report within {timeout}s"
                    )
                self._condition.wait(timeout=remaining)

    def remove_instance(self, name: str) -> None:
        """Tear an instance down after its pending configuration has run."""
        with self._condition:
            assignment = self._assignments.pop(name, None)
            self._condition.notify_all()
        if assignment is None:
            raise NoAssignmentError(f"No instance named {name}")

        assignment.executor.submit(assignment.instance.teardown).result()
        assignment.executor.shutdown()
        logger.info("Removed %s", name)

    def instance_names(self) -> list[str]:
        with self._condition:
            return sorted(self._assignments)

    def close(self) -> None:
        for name in self.instance_names():
            self.remove_instance(name)

    def __enter__(self) -> "LocalInstanceManager":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
