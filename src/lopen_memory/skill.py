"""Agent skill file installer.

Copies the packaged SKILL.md into ``<skills_dir>/lopen-memory/`` so agents
that scan a skills directory discover the tool.
"""

from importlib import resources
from pathlib import Path

from lopen_memory.core.errors import StorageError
from lopen_memory.core.logging import get_logger

logger = get_logger("skill")

SKILL_NAME = "lopen-memory"


def skill_content() -> str:
    return resources.files("lopen_memory").joinpath("data", "SKILL.md").read_text(encoding="utf-8")


def install(skills_dir: Path) -> Path:
    """Write SKILL.md under ``skills_dir`` and return its path."""
    target_dir = Path(skills_dir) / SKILL_NAME
    dest = target_dir / "SKILL.md"
    try:
        target_dir.mkdir(parents=True, exist_ok=True)
        dest.write_text(skill_content(), encoding="utf-8")
    except OSError as e:
        logger.error(f"Failed to install skill into {target_dir}: {e}")
        raise StorageError(e) from e
    logger.info(f"Installed skill: {dest}")
    return dest
