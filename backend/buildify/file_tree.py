import logging
from enum import Enum
from typing import Any, Iterable, Iterator

from pydantic import BaseModel, Field, PrivateAttr

from buildify.steps import Step, StepStatus, StepType, normalize_path


logger = logging.getLogger("buildify.file_tree")


class NodeType(str, Enum):
    FILE = "file"
    FOLDER = "folder"


class TreeError(Exception):
    """Base class for structural errors raised while folding steps."""

    def __init__(self, message: str, step_id: int | None = None):
        super().__init__(message)
        self.step_id = step_id


class InvalidPathError(TreeError):
    pass


class TreeConflictError(TreeError):
    """A path was upserted with a kind different from the node already there."""

    def __init__(self, path: str, existing: NodeType, requested: NodeType, step_id: int | None = None):
        super().__init__(
            f"{path} already exists as a {existing.value}, cannot create a {requested.value}", step_id
        )
        self.path = path
        self.existing = existing
        self.requested = requested


class FileTreeNode(BaseModel):
    """A file or folder of the synthesized project.

    `content` is only set on files, `children` only on folders.
    """

    name: str
    path: str
    type: NodeType
    content: str | None = None
    children: list["FileTreeNode"] | None = None


class FileTree(BaseModel):
    """Ordered roots plus a path -> node index kept in sync with them."""

    roots: list[FileTreeNode] = Field(default_factory=list)
    _index: dict[str, FileTreeNode] = PrivateAttr(default_factory=dict)

    def model_post_init(self, __context: Any) -> None:
        self._index = {}
        for node in self.walk():
            self._index[node.path] = node

    def get(self, path: str) -> FileTreeNode | None:
        key = normalize_path(path)
        return self._index.get(key) if key else None

    def walk(self) -> Iterator[FileTreeNode]:
        stack = list(reversed(self.roots))
        while stack:
            node = stack.pop()
            yield node
            if node.children:
                stack.extend(reversed(node.children))

    def paths(self) -> list[str]:
        return [n.path for n in self.walk()]

    def files(self) -> dict[str, str]:
        return {n.path: n.content or "" for n in self.walk() if n.type == NodeType.FILE}

    def is_empty(self) -> bool:
        return not self.roots

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FileTree):
            return NotImplemented
        return self.model_dump() == other.model_dump()

    def _siblings(self, parent: FileTreeNode | None) -> list[FileTreeNode]:
        if parent is None:
            return self.roots
        if parent.children is None:
            parent.children = []
        return parent.children

    def _add(self, parent: FileTreeNode | None, node: FileTreeNode) -> FileTreeNode:
        self._siblings(parent).append(node)
        self._index[node.path] = node
        return node


def _prefixes(path: str) -> list[str]:
    segments = path.split("/")
    return ["/".join(segments[: i + 1]) for i in range(len(segments))]


def _check(tree: FileTree, path: str, requested: NodeType, step_id: int) -> None:
    """Validate the whole upsert before touching the tree."""
    prefixes = _prefixes(path)
    for prefix in prefixes[:-1]:
        existing = tree._index.get(prefix)
        if existing is not None and existing.type != NodeType.FOLDER:
            raise TreeConflictError(prefix, existing.type, NodeType.FOLDER, step_id)
    existing = tree._index.get(path)
    if existing is not None and existing.type != requested:
        raise TreeConflictError(path, existing.type, requested, step_id)


def _ensure_folders(tree: FileTree, prefixes: list[str]) -> FileTreeNode | None:
    parent: FileTreeNode | None = None
    for prefix in prefixes:
        node = tree._index.get(prefix)
        if node is None:
            node = tree._add(
                parent,
                FileTreeNode(name=prefix.rsplit("/", 1)[-1], path=prefix, type=NodeType.FOLDER, children=[]),
            )
        parent = node
    return parent


def apply_step(tree: FileTree, step: Step) -> FileTree:
    """Fold one step into `tree` and return it.

    File steps upsert by path (last write wins), folder steps create the folder
    if missing, shell steps leave the tree alone. Missing parent folders are
    created once and reused. On a kind conflict `TreeConflictError` is raised
    and the tree is left exactly as it was.
    """
    if step.type == StepType.RUN_SCRIPT:
        return tree

    path = normalize_path(step.path)
    if path is None:
        raise InvalidPathError(f"step {step.id} has no usable path: {step.path!r}", step.id)

    requested = NodeType.FILE if step.type == StepType.CREATE_FILE else NodeType.FOLDER
    _check(tree, path, requested, step.id)

    prefixes = _prefixes(path)
    if requested == NodeType.FOLDER:
        _ensure_folders(tree, prefixes)
        return tree

    parent = _ensure_folders(tree, prefixes[:-1])
    existing = tree._index.get(path)
    if existing is not None:
        existing.content = step.code or ""
    else:
        tree._add(
            parent,
            FileTreeNode(name=prefixes[-1].rsplit("/", 1)[-1], path=path, type=NodeType.FILE, content=step.code or ""),
        )
    return tree


def apply_steps(tree: FileTree, steps: Iterable[Step]) -> tuple[FileTree, list[TreeError]]:
    """Fold the pending steps of `steps` in order.

    Steps not marked pending are skipped. A rejected step does not stop the fold;
    its error is returned alongside the tree. Step statuses are not changed here.
    """
    errors: list[TreeError] = []
    for step in steps:
        if step.status != StepStatus.PENDING:
            continue
        try:
            apply_step(tree, step)
        except TreeError as e:
            logger.warning("rejected step %d (%s): %s", step.id, step.path, e)
            errors.append(e)
    return tree, errors


def build_tree(steps: Iterable[Step]) -> FileTree:
    tree, _ = apply_steps(FileTree(), steps)
    return tree
