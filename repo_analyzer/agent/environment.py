"""Environment preamble prepended to the agent's system prompt."""

import logging
import os
import platform
from datetime import date
from pathlib import Path

logger = logging.getLogger(__name__)

IGNORED_DIRS = {"node_modules", "dist", "build", "__pycache__", "venv", ".venv", "target"}

MAX_DEPTH = 3
MAX_ENTRIES = 200


def build_folder_listing(root: Path, max_depth: int = MAX_DEPTH, max_entries: int = MAX_ENTRIES) -> str:
    """Indented tree of root, skipping hidden and build directories.

    Output is cut off after max_entries lines with a trailing marker.
    """
    lines: list[str] = [f"{root.name or str(root)}/"]
    truncated = False

    def walk(directory: Path, depth: int) -> None:
        nonlocal truncated
        if depth > max_depth or truncated:
            return
        try:
            entries = sorted(directory.iterdir(), key=lambda p: (not p.is_dir(), p.name.lower()))
        except OSError as e:
            logger.debug(f"Cannot list {directory}: {e}")
            return
        for entry in entries:
            if entry.name.startswith(".") or entry.name in IGNORED_DIRS:
                continue
            if len(lines) >= max_entries:
                truncated = True
                return
            indent = "  " * depth
            if entry.is_dir():
                lines.append(f"{indent}{entry.name}/")
                walk(entry, depth + 1)
            else:
                lines.append(f"{indent}{entry.name}")

    walk(root, 1)
    if truncated:
        lines.append("... (listing truncated)")
    return "\n".join(lines)


def build_environment_context(repository_path: Path) -> str:
    """Date, OS, working directory and folder listing for the system prompt."""
    listing = build_folder_listing(repository_path)
    return (
        "This is the environment you are working in.\n"
        f"Today's date: {date.today().isoformat()}\n"
        f"Operating system: {platform.system()} {platform.release()}\n"
        f"Current working directory: {repository_path}\n"
        f"Process directory: {os.getcwd()}\n"
        "Folder structure of the repository "
        f"(hidden and build directories omitted, depth {MAX_DEPTH}):\n"
        f"{listing}"
    )
