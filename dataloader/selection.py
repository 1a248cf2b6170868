"""
File selection — builds the initial FileRecords from a folder or file list.

Relative paths follow the browser folder-picker convention:
``<folder name>/<sub/dirs>/<file name>``.
"""

import math
import os
import uuid
from collections import Counter
from typing import Iterable, Optional

from dataloader.models import FileRecord

# Extensions offered by the individual-file picker
ACCEPTED_EXTENSIONS = frozenset({
    "csv", "xlsx", "xls", "pdf", "docx", "doc", "txt",
    "json", "sql", "png", "jpg", "jpeg", "gif",
})


def file_type(filename: str) -> str:
    """Return the lower-case extension of *filename*, or ``"unknown"``."""
    _, ext = os.path.splitext(filename)
    return ext[1:].lower() if ext else "unknown"


def scan_directory(directory: str, extensions: Optional[Iterable[str]] = None) -> list[str]:
    """
    Recursively list files under *directory*, sorted by relative path.

    Hidden files and directories are skipped. When *extensions* is given only
    files with one of those extensions are returned.
    """
    allowed = {e.lower().lstrip(".") for e in extensions} if extensions else None
    found: list[str] = []
    for dirpath, dirnames, filenames in os.walk(directory):
        dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
        for fname in sorted(filenames):
            if fname.startswith("."):
                continue
            if allowed is not None and file_type(fname) not in allowed:
                continue
            found.append(os.path.join(dirpath, fname))
    return found


def records_from_paths(paths: Iterable[str], root: Optional[str] = None) -> list[FileRecord]:
    """
    Create one selected FileRecord per path.

    If *root* is given, each record's path is relative to the folder's parent
    (so it starts with the folder name); otherwise it is just the file name.
    """
    root = os.path.abspath(root) if root else None
    records = []
    for p in paths:
        abs_path = os.path.abspath(p)
        name = os.path.basename(abs_path)
        if root:
            rel = os.path.join(os.path.basename(root), os.path.relpath(abs_path, root))
            rel = rel.replace(os.sep, "/")
        else:
            rel = name
        records.append(FileRecord(
            id=uuid.uuid4().hex,
            name=name,
            path=rel,
            relative_path=rel,
            size=os.path.getsize(abs_path),
            type=file_type(name),
            source_path=abs_path,
        ))
    return records


def records_from_directory(directory: str, extensions: Optional[Iterable[str]] = None) -> list[FileRecord]:
    if not os.path.isdir(directory):
        raise NotADirectoryError(directory)
    return records_from_paths(scan_directory(directory, extensions), root=directory)


def duplicate_names(records: Iterable[FileRecord]) -> list[str]:
    """Names shared by more than one of *records*, in first-seen order."""
    counts = Counter(r.name for r in records)
    return [name for name, n in counts.items() if n > 1]


def format_size(num_bytes: int) -> str:
    units = ["Bytes", "KB", "MB", "GB"]
    if num_bytes <= 0:
        return "0 Bytes"
    i = min(int(math.floor(math.log(num_bytes, 1024))), len(units) - 1)
    return f"{round(num_bytes / 1024 ** i, 2):g} {units[i]}"
