import logging
import re
from enum import Enum

from pydantic import BaseModel


logger = logging.getLogger("buildify.steps")


class StepType(str, Enum):
    CREATE_FILE = "create_file"
    CREATE_FOLDER = "create_folder"
    RUN_SCRIPT = "run_script"


class StepStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    REJECTED = "rejected"


class Step(BaseModel):
    """One build instruction extracted from a model response.

    Attributes:
        id: 1-based position of the step in the document it was parsed from.
        type: Kind of action.
        path: Project-relative target path for file/folder steps.
        code: File content for file steps, command text for shell steps.
        title: Short label for the steps list.
        description: Free text, usually the enclosing artifact title.
        status: Lifecycle tag, owned by the session orchestrator.
    """

    id: int
    type: StepType
    title: str
    description: str = ""
    path: str | None = None
    code: str | None = None
    status: StepStatus = StepStatus.PENDING


# Opening tags of the recognized vocabulary. Anything else is prose.
_OPEN_TAG = re.compile(r"<(file|folder|shell|boltAction|boltArtifact)(?=[\s/>])([^<>]*?)(/?)>")
_ARTIFACT_CLOSE = re.compile(r"</boltArtifact\s*>")
_ATTR = re.compile(r"""([A-Za-z_][\w-]*)\s*=\s*(?:"([^"]*)"|'([^']*)')""")


def _parse_attrs(raw: str) -> dict[str, str]:
    return {m.group(1): m.group(2) if m.group(2) is not None else m.group(3) for m in _ATTR.finditer(raw)}


def normalize_path(path: str | None) -> str | None:
    """Return a canonical project-relative path, or None when unusable.

    Strips leading './' and '/', collapses repeated separators and rejects '..'.
    """
    if path is None:
        return None
    parts = [p for p in path.strip().replace("\\", "/").split("/") if p and p != "."]
    if not parts or any(p == ".." for p in parts):
        return None
    return "/".join(parts)


def _trim_body(body: str) -> str:
    # Only the tag's own layout is removed: the newline after the opening tag
    # and the indentation-only line before the closing tag.
    if body.startswith("\r\n"):
        body = body[2:]
    elif body.startswith("\n"):
        body = body[1:]
    last_nl = body.rfind("\n")
    if last_nl != -1 and body[last_nl + 1 :].strip() == "":
        body = body[:last_nl]
        if body.endswith("\r"):
            body = body[:-1]
    elif last_nl == -1 and body.strip() == "":
        body = ""
    return body


def _find_close(text: str, tag: str, start: int) -> tuple[int, int] | None:
    """Locate the closing tag for `tag`, refusing to cross another recognized opening tag."""
    close = re.compile(rf"</{tag}\s*>").search(text, start)
    if close is None:
        return None
    nested = _OPEN_TAG.search(text, start, close.start())
    if nested is not None and nested.group(1) != "boltArtifact":
        return None
    return close.start(), close.end()


def parse_steps(response: str) -> list[Step]:
    """Extract ordered build steps from a model response.

    Recognized tags are turned into steps in document order. Malformed fragments
    (missing path, unterminated or nested tags, unknown action types) are skipped
    one at a time; the scan resumes right after the offending opening tag so the
    rest of the document is still read.
    """
    steps: list[Step] = []
    artifact_title = ""
    pos = 0
    text = response or ""

    while True:
        m = _OPEN_TAG.search(text, pos)
        if m is None:
            break
        tag, raw_attrs, self_closing = m.group(1), m.group(2), m.group(3) == "/"
        attrs = _parse_attrs(raw_attrs)

        if tag == "boltArtifact":
            artifact_title = attrs.get("title", "")
            pos = m.end()
            continue

        # Drop any artifact scope that closed before this tag.
        closed = _ARTIFACT_CLOSE.search(text, pos, m.start())
        if closed is not None:
            artifact_title = ""

        if self_closing:
            body, next_pos = "", m.end()
        else:
            span = _find_close(text, tag, m.end())
            if span is None:
                logger.debug("skipping unterminated or nested <%s> at offset %d", tag, m.start())
                pos = m.end()
                continue
            body, next_pos = text[m.end() : span[0]], span[1]

        step = _make_step(tag, attrs, body, self_closing, len(steps) + 1, artifact_title)
        if step is None:
            logger.debug("skipping malformed <%s> at offset %d", tag, m.start())
        else:
            steps.append(step)
        pos = next_pos

    return steps


def _make_step(
    tag: str,
    attrs: dict[str, str],
    body: str,
    self_closing: bool,
    step_id: int,
    artifact_title: str,
) -> Step | None:
    kind = tag
    if tag == "boltAction":
        kind = {"file": "file", "shell": "shell", "folder": "folder"}.get(attrs.get("type", ""), "")
        if not kind:
            return None
        raw_path = attrs.get("filePath") or attrs.get("path")
    else:
        raw_path = attrs.get("path")

    if kind == "file":
        path = normalize_path(raw_path)
        if path is None or self_closing:
            return None
        return Step(
            id=step_id,
            type=StepType.CREATE_FILE,
            title=f"Create {path}",
            description=artifact_title,
            path=path,
            code=_trim_body(body),
        )
    if kind == "folder":
        path = normalize_path(raw_path)
        if path is None:
            return None
        return Step(
            id=step_id,
            type=StepType.CREATE_FOLDER,
            title=f"Create folder {path}",
            description=artifact_title,
            path=path,
        )
    command = body.strip()
    if not command:
        return None
    return Step(
        id=step_id,
        type=StepType.RUN_SCRIPT,
        title="Run command",
        description=artifact_title,
        code=command,
    )
