"""Tests for text and JSON rendering of task trees."""

import json
import unittest
from dataclasses import replace

from conduit_fakes import FakeTaskClient, make_task

from phabtree.builder import TreeBuilder
from phabtree.errors import UnauthorizedError
from phabtree.models import Board, NodeKind, TaskNode, TaskTree, User
from phabtree.render import count_done_tasks, format_node, render_json, render_text, visible_nodes
from phabtree.repository import TaskRepository


def sample_tree():
    root_task = make_task(100, [101, 102, 103], status="open", title="Ship it", assignee="PHID-USER-ann", points=5)
    root = TaskNode(task_id="100", depth=0, task=root_task)

    done = TaskNode(task_id="101", depth=1, task=make_task(101, status="resolved", title="Write code"))
    invalid = TaskNode(task_id="102", depth=1, task=make_task(102, [104], status="invalid", title="Dup"))
    invalid.children.append(TaskNode(task_id="104", depth=2, task=make_task(104, title="Hidden child")))
    review = TaskNode(task_id="103", depth=1, task=make_task(103, [100], title="Review"))
    review.children.append(TaskNode.cycle_marker("100", 2, root_task))

    root.children.extend([done, invalid, review])
    return TaskTree(root=root, visited=frozenset({"100", "101", "102", "103", "104"}))


def build_tree(graph, invalid):
    """Build a tree from ``graph`` where the ``invalid`` tasks are closed as invalid."""
    tasks = {str(task_id): make_task(task_id, children, status="invalid") for task_id, children in invalid.items()}
    repository = TaskRepository(FakeTaskClient(graph, tasks=tasks), retry_delay=0, sleep=lambda _: None)
    return TreeBuilder(repository).build("1")


class TestTextReport(unittest.TestCase):
    def test_lines_are_indented_by_depth(self):
        users = {"PHID-USER-ann": User(id="1", phid="PHID-USER-ann", username="ann", name="Ann")}

        lines = [line.plain for line in render_text(sample_tree(), users)]

        self.assertEqual(
            lines,
            [
                "[T100 open - NoBoard point: 5] Ship it (assignee: ann)",
                "  [T101 resolved - NoBoard point: 0] Write code",
                "  [T103 open - NoBoard point: 0] Review",
                "    [T100] Ship it (already shown above)",
                "1/3 tasks done",
            ],
        )

    def test_task_first_reached_under_invalid_subtask_is_shown(self):
        tree = build_tree({1: [2, 3], 3: [5], 5: []}, invalid={2: [3]})

        lines = [line.plain for line in render_text(tree)]

        self.assertEqual(
            lines,
            [
                "[T1 open - NoBoard point: 0] Task 1",
                "  [T3 open - NoBoard point: 0] Task 3",
                "    [T5 open - NoBoard point: 0] Task 5",
                "0/3 tasks done",
            ],
        )

    def test_relocated_task_appears_once(self):
        tree = build_tree({1: [2, 4, 3], 4: [3], 3: []}, invalid={2: [3]})

        lines = [line.plain for line in render_text(tree)]

        self.assertEqual(
            lines,
            [
                "[T1 open - NoBoard point: 0] Task 1",
                "  [T4 open - NoBoard point: 0] Task 4",
                "    [T3 open - NoBoard point: 0] Task 3",
                "  [T3] Task 3 (already shown above)",
                "0/3 tasks done",
            ],
        )

    def test_show_invalid_keeps_original_placement(self):
        tree = build_tree({1: [2, 3], 3: []}, invalid={2: [3]})

        lines = [line.plain for line in render_text(tree, show_invalid=True)]

        self.assertEqual(
            lines,
            [
                "[T1 open - NoBoard point: 0] Task 1",
                "  [T2 invalid - NoBoard point: 0] Task 2",
                "    [T3 open - NoBoard point: 0] Task 3",
                "  [T3] Task 3 (already shown above)",
                "0/3 tasks done",
            ],
        )

    def test_show_invalid_includes_subtree(self):
        lines = [line.plain for line in render_text(sample_tree(), show_invalid=True)]

        self.assertIn("  [T102 invalid - NoBoard point: 0] Dup", lines)
        self.assertIn("    [T104 open - NoBoard point: 0] Hidden child", lines)
        self.assertEqual(lines[-1], "1/5 tasks done")

    def test_invalid_root_is_still_shown(self):
        tree = TaskTree(root=TaskNode(task_id="9", depth=0, task=make_task(9, status="invalid")))

        nodes = visible_nodes(tree)

        self.assertEqual([node.task_id for node in nodes], ["9"])

    def test_board_name_is_shown(self):
        task = make_task(5, title="Boarded")
        task = replace(task, board=Board(id=1, phid="PHID-PCOL-1", name="Backlog"))

        line = format_node(TaskNode(task_id="5", depth=0, task=task))

        self.assertEqual(line.plain, "[T5 open - Backlog point: 0] Boarded")

    def test_error_node_line_and_summary(self):
        root = TaskNode(task_id="300", depth=0, task=make_task(300, [301]))
        root.children.append(TaskNode.from_error("301", 1, UnauthorizedError("token rejected")))
        tree = TaskTree(root=root)

        lines = [line.plain for line in render_text(tree)]

        self.assertEqual(lines[1], "  [T301] error: Unauthorized: token rejected")
        self.assertEqual(lines[-1], "0/1 tasks done, 1 could not be fetched")

    def test_unknown_assignee_is_omitted(self):
        line = format_node(TaskNode(task_id="1", depth=0, task=make_task(1, assignee="PHID-USER-x")))

        self.assertNotIn("assignee", line.plain)


class TestCountDone(unittest.TestCase):
    def test_counts_configured_statuses(self):
        tasks = [make_task(1, status="resolved"), make_task(2, status="done"), make_task(3)]

        self.assertEqual(count_done_tasks([], {"resolved"}), 0)
        self.assertEqual(count_done_tasks(tasks, {"resolved", "done"}), 2)


class TestJson(unittest.TestCase):
    def test_json_keeps_every_node(self):
        data = json.loads(render_json(sample_tree()))

        self.assertEqual(data["id"], "100")
        self.assertEqual(data["kind"], "normal")
        self.assertEqual(data["task"]["name"], "Ship it")
        self.assertEqual(data["task"]["child_ids"], ["101", "102", "103"])
        self.assertEqual([child["id"] for child in data["children"]], ["101", "102", "103"])
        self.assertEqual(data["children"][1]["children"][0]["id"], "104")

        marker = data["children"][2]["children"][0]
        self.assertEqual(marker["kind"], NodeKind.CYCLE.value)
        self.assertTrue(marker["already_shown"])
        self.assertEqual(marker["depth"], 2)
        self.assertNotIn("task", marker)


if __name__ == '__main__':
    unittest.main()
