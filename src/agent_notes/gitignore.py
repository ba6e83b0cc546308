"""Keep the store file out of version control."""

from pathlib import Path

from agent_notes.config import DEFAULT_CONFIG


def ensure_gitignored(root: str | Path, entry: str = DEFAULT_CONFIG.store_relpath) -> bool:
    """
    Make sure ``entry`` is listed in the workspace .gitignore.

    Creates the file if missing and appends the entry otherwise, keeping the
    existing content intact.

    Returns:
        True if .gitignore was created or modified
    """
    gitignore = Path(root) / ".gitignore"

    if not gitignore.exists():
        gitignore.write_text(f"{entry}\n", encoding="utf-8")
        return True

    content = gitignore.read_text(encoding="utf-8")
    if entry in (line.strip() for line in content.splitlines()):
        return False

    separator = "" if not content or content.endswith("\n") else "\n"
    gitignore.write_text(f"{content}{separator}{entry}\n", encoding="utf-8")
    return True
