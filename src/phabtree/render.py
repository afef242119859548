"""Text and JSON output for task trees."""

import json
from dataclasses import replace
from typing import Collection, Dict, Iterable, List, Optional

from rich.text import Text

from .models import NodeKind, Task, TaskNode, TaskTree, User

INDENT = "  "
HIDDEN_STATUSES = {"invalid"}


def count_done_tasks(tasks: Iterable[Task], done_statuses: Collection[str]) -> int:
    """Count tasks whose status is one of ``done_statuses``."""
    return sum(1 for task in tasks if task.status in done_statuses)


def visible_nodes(tree: TaskTree, show_invalid: bool = False) -> List[TaskNode]:
    """
    Pre-order nodes to display.

    Subtasks with a hidden status are dropped together with their subtree
    unless ``show_invalid`` is set. The root is always shown.

    A task first expanded under a hidden subtask would otherwise only show
    up as "already shown above" markers; the first such marker is replaced
    by the task's subtree, indented to the marker's depth.
    """
    if show_invalid:
        return list(tree.walk())

    relocatable = _expanded_under_hidden(tree.root)
    nodes: List[TaskNode] = []
    _collect_visible(tree.root, tree.root, 0, relocatable, nodes)
    return nodes


def _is_hidden(node: TaskNode, root: TaskNode) -> bool:
    return node is not root and node.task is not None and node.task.status in HIDDEN_STATUSES


def _expanded_under_hidden(root: TaskNode) -> Dict[str, TaskNode]:
    """Expanded nodes of visible tasks that sit inside a hidden subtree, by id."""
    found: Dict[str, TaskNode] = {}
    for node in root.walk():
        if not _is_hidden(node, root):
            continue
        for inner in node.walk():
            if inner.kind is NodeKind.NORMAL and not _is_hidden(inner, root):
                found.setdefault(inner.task_id, inner)
    return found


def _collect_visible(
    node: TaskNode,
    root: TaskNode,
    depth: int,
    relocatable: Dict[str, TaskNode],
    nodes: List[TaskNode],
) -> None:
    if _is_hidden(node, root):
        return

    if node.kind is NodeKind.CYCLE and node.task_id in relocatable:
        node = relocatable[node.task_id]
    if node.kind is NodeKind.NORMAL:
        relocatable.pop(node.task_id, None)

    nodes.append(node if node.depth == depth else replace(node, depth=depth))
    for child in node.children:
        _collect_visible(child, root, depth + 1, relocatable, nodes)


def format_node(node: TaskNode, users: Optional[Dict[str, User]] = None) -> Text:
    """Format one tree node as a single indented report line."""
    line = Text(INDENT * node.depth)

    if node.kind is NodeKind.ERROR:
        line.append(f"[T{node.task_id}]", style="red")
        line.append(f" error: {node.error_kind}: {node.error_message}", style="red")
        return line

    if node.kind is NodeKind.CYCLE:
        line.append(f"[T{node.task_id}]", style="cyan")
        if node.task is not None:
            line.append(f" {node.task.title}")
        line.append(" (already shown above)", style="dim")
        return line

    task = node.task
    board_name = task.board.name if task.board else "NoBoard"
    points = task.points if task.points is not None else 0
    line.append(f"[T{task.id} {task.status} - {board_name} point: {points}]", style="cyan")
    line.append(f" {task.title}")

    if task.assignee:
        user = (users or {}).get(task.assignee)
        if user is not None:
            line.append(f" (assignee: {user.username})", style="yellow")

    return line


def render_text(
    tree: TaskTree,
    users: Optional[Dict[str, User]] = None,
    show_invalid: bool = False,
    done_statuses: Collection[str] = ("resolved",),
) -> List[Text]:
    """Render the tree as report lines followed by a summary line."""
    nodes = visible_nodes(tree, show_invalid)
    lines = [format_node(node, users) for node in nodes]

    tasks = [node.task for node in nodes if node.kind is NodeKind.NORMAL and node.task]
    done = count_done_tasks(tasks, done_statuses)
    summary = Text(f"{done}/{len(tasks)} tasks done", style="bold")

    failed = sum(1 for node in nodes if node.kind is NodeKind.ERROR)
    if failed:
        summary.append(f", {failed} could not be fetched", style="red")

    lines.append(summary)
    return lines


def render_json(tree: TaskTree) -> str:
    """Render the full tree, including hidden tasks, as JSON."""
    return json.dumps(tree.to_dict(), indent=2)
