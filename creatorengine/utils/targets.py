from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Any, Optional


POST = "post"
META = "meta"
OPTION = "option"
FILE = "file"


@dataclass(frozen=True)
class TargetRef:
    """Parsed form of a target id (post/12, post/12/meta/_color, option/blogname, file/wp-content/a.css)."""
    kind: str
    object_id: Optional[int] = None
    key: Optional[str] = None


def post_target(post_id: Any) -> str:
    return f"{POST}/{int(post_id)}"


def meta_target(object_id: Any, meta_key: str) -> str:
    return f"{POST}/{int(object_id)}/{META}/{meta_key}"


def option_target(option_name: str) -> str:
    return f"{OPTION}/{option_name}"


def file_path(path: Any) -> str:
    """
    Normalizes a site-relative file path.

    Raises:
        ValueError: If the path is empty, absolute or climbs out with "..".
    """
    raw = str(path or "").strip().replace("\\", "/")
    pure = PurePosixPath(raw)
    if not raw or pure.is_absolute() or ".." in pure.parts:
        raise ValueError(f"Invalid file path: {path!r}")
    return pure.as_posix()


def file_target(path: Any) -> str:
    return f"{FILE}/{file_path(path)}"


def parse_target(target: str) -> TargetRef:
    """
    Resolves a target id back into its parts.

    Raises:
        ValueError: If the target is not one of the known shapes.
    """
    if not isinstance(target, str) or not target:
        raise ValueError(f"Invalid target: {target!r}")

    head, _, rest = target.partition("/")
    if head == OPTION and rest:
        return TargetRef(kind=OPTION, key=rest)

    if head == FILE and rest:
        return TargetRef(kind=FILE, key=file_path(rest))

    if head == POST and rest:
        post_id, _, tail = rest.partition("/")
        if not post_id.isdigit():
            raise ValueError(f"Invalid post id in target: {target}")
        if not tail:
            return TargetRef(kind=POST, object_id=int(post_id))
        marker, _, key = tail.partition("/")
        if marker == META and key:
            return TargetRef(kind=META, object_id=int(post_id), key=key)

    raise ValueError(f"Unknown target shape: {target}")
