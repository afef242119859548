"""Idempotent, retrying task lookups on top of the API client."""

import logging
import time
from typing import Callable, Dict, List, Protocol, Sequence, TypeVar, Union

from .errors import FetchError, NotFoundError, TransportError
from .models import Task

log = logging.getLogger(__name__)

T = TypeVar("T")

ChildResult = Union[Task, FetchError]


class TaskClient(Protocol):
    """The part of the API client the repository relies on."""

    def get_task(self, task_id: str) -> Task: ...

    def get_tasks(self, task_ids: Sequence[str]) -> Dict[str, Task]: ...


class TaskRepository:
    """Fetches tasks and their children, retrying transport failures once."""

    def __init__(
        self,
        client: TaskClient,
        retry_delay: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = client
        self.retry_delay = retry_delay
        self._sleep = sleep

    def fetch_root(self, task_id: str) -> Task:
        """Fetch the task a tree starts from."""
        return self._with_retry(f"task T{task_id}", lambda: self.client.get_task(task_id))

    def fetch_children(self, task: Task) -> List[ChildResult]:
        """
        Resolve the children of a task, in the order the parent lists them.

        Each slot holds either the child Task or the FetchError that stopped
        it from resolving, so one bad child never hides its siblings.
        """
        child_ids = list(task.child_ids)
        if not child_ids:
            return []

        if len(child_ids) == 1:
            child_id = child_ids[0]
            try:
                return [self._with_retry(f"task T{child_id}", lambda: self.client.get_task(child_id))]
            except FetchError as e:
                if e.task_id is None:
                    e.task_id = child_id
                return [e]

        try:
            found = self._with_retry(
                f"children of T{task.id}", lambda: self.client.get_tasks(child_ids)
            )
        except FetchError as e:
            return [_for_child(e, child_id) for child_id in child_ids]

        results: List[ChildResult] = []
        for child_id in child_ids:
            if child_id in found:
                results.append(found[child_id])
            else:
                results.append(NotFoundError(f"Could not find task T{child_id}", task_id=child_id))
        return results

    def _with_retry(self, what: str, fetch: Callable[[], T]) -> T:
        try:
            return fetch()
        except TransportError as e:
            log.warning("Fetching %s failed (%s), retrying once", what, e)

        self._sleep(self.retry_delay)
        return fetch()


def _for_child(error: FetchError, child_id: str) -> FetchError:
    """Copy a batch-wide error so every child slot carries its own id."""
    copy = type(error)(error.message, task_id=child_id)
    copy.__cause__ = error
    return copy
