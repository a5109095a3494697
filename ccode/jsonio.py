import datetime as _dt
import json
import logging
import os
import re
import shutil
import tempfile
from pathlib import Path
from typing import Any, Optional, Union

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


# String literals are matched first so comment markers and commas inside them survive.
_STRING = r'"(?:\\.|[^"\\\n])*"|\'(?:\\.|[^\'\\\n])*\''
_COMMENT_RE = re.compile("(" + _STRING + r")|//[^\r\n]*|/\*.*?(?:\*/|\Z)", re.DOTALL)
_TRAILING_COMMA_RE = re.compile("(" + _STRING + r")|,(?=\s*[}\]])")


def _keep_string(match: "re.Match") -> str:
    return match.group(1) or ""


def strip_json5_comments(text: str) -> str:
    """Drop // and /* */ comments outside string literals."""
    return _COMMENT_RE.sub(_keep_string, text)


def remove_trailing_commas(text: str) -> str:
    """Drop commas that directly precede a closing brace or bracket."""
    return _TRAILING_COMMA_RE.sub(_keep_string, text)


def loads_relaxed(raw: str) -> Any:
    """Parse strict JSON, falling back to a JSON5-ish relaxed parse.

    Raises json.JSONDecodeError when neither succeeds.
    """
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        pass
    cleaned = remove_trailing_commas(strip_json5_comments(raw))
    return json.loads(cleaned)


def atomic_write_json(path: PathLike, data: Any, indent: int = 2, mode: Optional[int] = None) -> None:
    """Write JSON to a temp file beside `path`, then rename it into place."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{path.stem}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=indent)
            f.write("\n")
        if mode is not None:
            os.chmod(tmp, mode)
        os.replace(tmp, path)
    finally:
        try:
            if os.path.exists(tmp):
                os.remove(tmp)
        except OSError:
            pass


def backup_file(path: PathLike, backup_dir: PathLike) -> Optional[Path]:
    """Copy `path` into `backup_dir` under a timestamped name."""
    path = Path(path)
    if not path.exists():
        return None
    backup_dir = Path(backup_dir)
    backup_dir.mkdir(parents=True, exist_ok=True)
    stamp = _dt.datetime.now().strftime("%Y%m%d_%H%M%S")
    target = backup_dir / f"{path.stem}_backup_{stamp}{path.suffix}"
    counter = 1
    while target.exists():
        target = backup_dir / f"{path.stem}_backup_{stamp}_{counter}{path.suffix}"
        counter += 1
    shutil.copy2(path, target)
    logger.debug("Backed up %s to %s", path, target)
    return target
