from typing import Any

from buildify.file_tree import FileTree, FileTreeNode, NodeType


MountDescriptor = dict[str, Any]


def _project_node(node: FileTreeNode) -> dict[str, Any]:
    if node.type == NodeType.FOLDER:
        return {"directory": {child.name: _project_node(child) for child in node.children or []}}
    return {"file": {"contents": node.content or ""}}


def project_tree(tree: FileTree) -> MountDescriptor:
    """Convert a FileTree into the nested mount shape the sandbox expects.

    Folders become {"directory": {...}}, files become {"file": {"contents": str}}.
    An empty tree projects to an empty mapping.
    """
    return {node.name: _project_node(node) for node in tree.roots}


def flatten_descriptor(descriptor: MountDescriptor, prefix: str = "") -> tuple[dict[str, str], list[str]]:
    """Return (files, empty_dirs) for a descriptor.

    `files` maps project-relative paths to contents; `empty_dirs` lists folders
    with nothing inside, which a file-based writer would otherwise lose.
    """
    files: dict[str, str] = {}
    empty_dirs: list[str] = []
    for name, entry in descriptor.items():
        path = f"{prefix}{name}"
        if "directory" in entry:
            inner = entry["directory"]
            if not inner:
                empty_dirs.append(path)
                continue
            sub_files, sub_dirs = flatten_descriptor(inner, f"{path}/")
            files.update(sub_files)
            empty_dirs.extend(sub_dirs)
        else:
            files[path] = entry["file"]["contents"]
    return files, empty_dirs


def read_file(descriptor: MountDescriptor, path: str) -> str | None:
    """Look up a file's contents by slash-separated path inside a descriptor."""
    current: Any = descriptor
    segments = [s for s in path.split("/") if s]
    if not segments:
        return None
    for segment in segments[:-1]:
        entry = current.get(segment)
        if not entry or "directory" not in entry:
            return None
        current = entry["directory"]
    entry = current.get(segments[-1])
    if not entry or "file" not in entry:
        return None
    return entry["file"]["contents"]


def changed_paths(previous: MountDescriptor | None, current: MountDescriptor) -> list[str]:
    """Paths whose file contents differ between two descriptors (added, changed or removed)."""
    prev_files, _ = flatten_descriptor(previous or {})
    cur_files, _ = flatten_descriptor(current)
    keys = set(prev_files) | set(cur_files)
    return sorted(p for p in keys if prev_files.get(p) != cur_files.get(p))
