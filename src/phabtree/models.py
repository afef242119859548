"""Task records and the task tree handed to the renderers."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterator, List, Optional, Tuple

from .errors import DecodeError, FetchError


@dataclass(frozen=True)
class Board:
    """Workboard column a task sits in."""

    id: int
    phid: str
    name: str

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "phid": self.phid, "name": self.name}


@dataclass(frozen=True)
class Task:
    """A Maniphest task as returned by the service."""

    id: str
    phid: str
    title: str
    status: str
    priority: str
    assignee: Optional[str] = None
    child_ids: Tuple[str, ...] = ()
    task_type: str = "TASK"
    description: str = ""
    author_phid: str = ""
    points: Optional[int] = None
    project_phids: Tuple[str, ...] = ()
    board: Optional[Board] = None
    created_at: int = 0
    updated_at: int = 0

    @classmethod
    def from_conduit(cls, data: Dict[str, Any], child_ids: Tuple[str, ...] = ()) -> "Task":
        """
        Create a Task from one ``maniphest.search`` result entry.

        Args:
            data: A single item of ``result.data``
            child_ids: Ids of the direct subtasks, oldest first

        Raises:
            DecodeError: If required fields are missing or malformed
        """
        try:
            fields = data["fields"]
            attachments = data.get("attachments") or {}
            project_phids = tuple((attachments.get("projects") or {}).get("projectPHIDs") or [])
            boards = (attachments.get("columns") or {}).get("boards") or {}
            return cls(
                id=str(int(data["id"])),
                phid=data["phid"],
                title=fields["name"],
                status=fields["status"]["value"],
                priority=fields["priority"]["name"],
                assignee=fields.get("ownerPHID"),
                child_ids=tuple(child_ids),
                task_type=data.get("type", "TASK"),
                description=(fields.get("description") or {}).get("raw", ""),
                author_phid=fields.get("authorPHID") or "",
                points=_parse_points(fields.get("points")),
                project_phids=project_phids,
                board=_guess_board(boards, project_phids),
                created_at=int(fields.get("dateCreated") or 0),
                updated_at=int(fields.get("dateModified") or 0),
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise DecodeError(f"Cannot parse task {data!r}: {e}", task_id=_raw_id(data))

    def to_dict(self) -> Dict[str, Any]:
        """Convert Task to dictionary representation."""
        return {
            "id": self.id,
            "phid": self.phid,
            "task_type": self.task_type,
            "name": self.title,
            "description": self.description,
            "author_phid": self.author_phid,
            "assigned_phid": self.assignee,
            "status": self.status,
            "priority": self.priority,
            "point": self.points,
            "project_phids": list(self.project_phids),
            "board": self.board.to_dict() if self.board else None,
            "child_ids": list(self.child_ids),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass(frozen=True)
class User:
    """A Phabricator user, used to show assignee names."""

    id: str
    phid: str
    username: str
    name: str
    created_at: int = 0
    updated_at: int = 0

    @classmethod
    def from_conduit(cls, data: Dict[str, Any]) -> "User":
        try:
            fields = data["fields"]
            return cls(
                id=str(int(data["id"])),
                phid=data["phid"],
                username=fields["username"],
                name=fields.get("realName") or "",
                created_at=int(fields.get("dateCreated") or 0),
                updated_at=int(fields.get("dateModified") or 0),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise DecodeError(f"Cannot parse user {data!r}: {e}")


class NodeKind(str, Enum):
    """What a tree node stands for."""

    NORMAL = "normal"
    CYCLE = "cycle"
    ERROR = "error"


@dataclass
class TaskNode:
    """A task placed in the tree, with its resolved children."""

    task_id: str
    depth: int
    kind: NodeKind = NodeKind.NORMAL
    task: Optional[Task] = None
    children: List["TaskNode"] = field(default_factory=list)
    error_kind: Optional[str] = None
    error_message: Optional[str] = None

    @classmethod
    def cycle_marker(cls, task_id: str, depth: int, task: Optional[Task] = None) -> "TaskNode":
        return cls(task_id=task_id, depth=depth, kind=NodeKind.CYCLE, task=task)

    @classmethod
    def from_error(cls, task_id: str, depth: int, error: FetchError) -> "TaskNode":
        return cls(
            task_id=task_id,
            depth=depth,
            kind=NodeKind.ERROR,
            error_kind=error.kind,
            error_message=error.message,
        )

    @property
    def already_shown(self) -> bool:
        return self.kind is NodeKind.CYCLE

    def walk(self) -> Iterator["TaskNode"]:
        """Yield this node and its descendants in pre-order."""
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.task_id,
            "depth": self.depth,
            "kind": self.kind.value,
        }
        if self.kind is NodeKind.CYCLE:
            data["already_shown"] = True
        if self.kind is NodeKind.ERROR:
            data["error"] = {"kind": self.error_kind, "message": self.error_message}
        if self.task is not None and self.kind is NodeKind.NORMAL:
            data["task"] = self.task.to_dict()
        data["children"] = [child.to_dict() for child in self.children]
        return data


@dataclass
class TaskTree:
    """Result of a tree build: the root node plus every id that was materialized."""

    root: TaskNode
    visited: FrozenSet[str] = frozenset()

    def walk(self) -> Iterator[TaskNode]:
        return self.root.walk()

    def errors(self) -> List[TaskNode]:
        return [node for node in self.walk() if node.kind is NodeKind.ERROR]

    @property
    def has_errors(self) -> bool:
        return bool(self.errors())

    def tasks(self) -> List[Task]:
        """All fully resolved tasks, in pre-order."""
        return [node.task for node in self.walk() if node.kind is NodeKind.NORMAL and node.task]

    def to_dict(self) -> Dict[str, Any]:
        return self.root.to_dict()


def _parse_points(value: Any) -> Optional[int]:
    # Conduit reports story points as a string ("3") or null
    if value is None or value == "":
        return None
    return int(float(value))


def _guess_board(boards: Dict[str, Any], project_phids: Tuple[str, ...]) -> Optional[Board]:
    """Pick the first project that has a workboard and return its first column."""
    if not isinstance(boards, dict):
        return None
    for phid in project_phids:
        board = boards.get(phid)
        if not board:
            continue
        columns = board.get("columns") or []
        if not columns:
            continue
        column = columns[0]
        return Board(id=int(column["id"]), phid=column["phid"], name=column["name"])
    return None


def _raw_id(data: Any) -> Optional[str]:
    if isinstance(data, dict) and data.get("id") is not None:
        return str(data["id"])
    return None
