"""Task tree assembly: depth-first resolution of a task and all its subtasks."""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Dict, FrozenSet, Iterable, List, Optional

from .errors import FetchError
from .models import Task, TaskNode, TaskTree
from .repository import ChildResult, TaskRepository

log = logging.getLogger(__name__)

PARTIAL = "partial"
STRICT = "strict"


class VisitedSet:
    """Task ids already placed in the tree, guarded for concurrent readers."""

    def __init__(self, initial: Iterable[str] = ()):
        self._ids = set(initial)
        self._lock = threading.Lock()

    def claim(self, task_id: str) -> bool:
        """Mark a task id as visited. Returns False if it already was."""
        with self._lock:
            if task_id in self._ids:
                return False
            self._ids.add(task_id)
            return True

    def __contains__(self, task_id: str) -> bool:
        with self._lock:
            return task_id in self._ids

    def snapshot(self) -> FrozenSet[str]:
        with self._lock:
            return frozenset(self._ids)


class TreeBuilder:
    """
    Builds a TaskTree from a root task id.

    Children are expanded depth-first in the order their parent lists them.
    A task id that is already in the tree is attached as a cycle marker
    instead of being expanded again, which also keeps cyclic parent/subtask
    links from recursing forever.

    With the ``partial`` failure policy a child that cannot be fetched
    becomes an error node and the build carries on; with ``strict`` the
    first failure aborts the build. A root failure always aborts.

    With ``max_workers > 1`` the children of sibling tasks are prefetched
    on a thread pool. Expansion decisions are still taken on the calling
    thread in depth-first order, so the result does not depend on the
    worker count.
    """

    def __init__(
        self,
        repository: TaskRepository,
        failure_policy: str = PARTIAL,
        max_workers: int = 1,
    ):
        if failure_policy not in (PARTIAL, STRICT):
            raise ValueError(f"Unknown failure policy: {failure_policy}")
        self.repository = repository
        self.failure_policy = failure_policy
        self.max_workers = max(1, max_workers)

    @property
    def strict(self) -> bool:
        return self.failure_policy == STRICT

    def build(self, root_id: str) -> TaskTree:
        """
        Resolve a task and every subtask reachable from it.

        Raises:
            FetchError: If the root task cannot be fetched, or under the
                strict policy if any task cannot be fetched
        """
        root_task = self.repository.fetch_root(root_id)
        run = _BuildRun(self, root_task)
        return run.execute()


class _BuildRun:
    """State of a single build: visited ids and in-flight prefetches."""

    def __init__(self, builder: TreeBuilder, root_task: Task):
        self.builder = builder
        self.repository = builder.repository
        self.root_task = root_task
        self.visited = VisitedSet([root_task.id])
        self.pending: Dict[str, Future] = {}
        self.executor: Optional[ThreadPoolExecutor] = None

    def execute(self) -> TaskTree:
        if self.builder.max_workers > 1:
            self.executor = ThreadPoolExecutor(
                max_workers=self.builder.max_workers, thread_name_prefix="phabtree-fetch"
            )
        try:
            root = self._resolve(self.root_task, 0)
        finally:
            if self.executor is not None:
                self.executor.shutdown(wait=True, cancel_futures=True)

        return TaskTree(root=root, visited=self.visited.snapshot())

    def _resolve(self, task: Task, depth: int) -> TaskNode:
        node = TaskNode(task_id=task.id, depth=depth, task=task)
        children = self._children_of(task)
        self._prefetch(child for child in children if isinstance(child, Task))

        for child_id, child in zip(task.child_ids, children):
            if isinstance(child, FetchError):
                if self.builder.strict:
                    raise child
                log.warning("Subtask T%s of T%s failed: %s: %s", child_id, task.id, child.kind, child)
                node.children.append(TaskNode.from_error(child_id, depth + 1, child))
            elif not self.visited.claim(child.id):
                log.debug("T%s already in the tree, marking under T%s", child.id, task.id)
                node.children.append(TaskNode.cycle_marker(child.id, depth + 1, child))
            else:
                node.children.append(self._resolve(child, depth + 1))

        return node

    def _children_of(self, task: Task) -> List[ChildResult]:
        future = self.pending.pop(task.id, None)
        if future is not None:
            return future.result()
        return self.repository.fetch_children(task)

    def _prefetch(self, tasks: Iterable[Task]) -> None:
        """Start fetching the children of not-yet-visited siblings."""
        if self.executor is None:
            return
        for task in tasks:
            if not task.child_ids or task.id in self.visited or task.id in self.pending:
                continue
            self.pending[task.id] = self.executor.submit(self.repository.fetch_children, task)
