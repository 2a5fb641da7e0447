"""Discovery of Terraform var files."""

import os
from pathlib import Path
from typing import List, Optional, Tuple, Union

from tfrunner.errors import VarFileDiscoveryError


VAR_FILE_EXTENSIONS = frozenset({".tfvars", ".tf", ".json"})


def is_var_file(path: Union[str, Path]) -> bool:
    """Check whether a file name has an allowed var file extension."""
    return Path(path).suffix in VAR_FILE_EXTENSIONS


def _list_files_recursive(base_path: Path) -> List[Path]:
    files = []

    with os.scandir(base_path) as entries:
        for entry in entries:
            # Regular files only. Mounted config volumes link every file
            # into a real timestamped directory that is walked anyway.
            if entry.is_file(follow_symlinks=False):
                files.append(Path(entry.path))
            elif entry.is_dir(follow_symlinks=False):
                files.extend(_list_files_recursive(Path(entry.path)))

    return files


def discover_var_files(root_dir: Optional[Union[str, Path]]) -> Tuple[Path, ...]:
    """
    Recursively find var files under a directory.

    Files are returned sorted by full path so that override precedence
    (later -var-file arguments win) is the same on every run.

    Args:
        root_dir: Directory to scan. Empty or None means no var files.

    Returns:
        Tuple of var file paths in lexicographic path order

    Raises:
        VarFileDiscoveryError: If the directory (or a subdirectory) cannot be listed
    """
    if not root_dir:
        return ()

    try:
        files = _list_files_recursive(Path(root_dir))
    except OSError as e:
        raise VarFileDiscoveryError(f"failed to list files in {root_dir}: {e}") from e

    return tuple(sorted((f for f in files if is_var_file(f)), key=str))
