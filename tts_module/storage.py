"""Temporary audio artifacts written by synchronous generations."""

import logging
import uuid
from pathlib import Path

from tts_module.config import AUDIO_DIR

logger = logging.getLogger(__name__)


def new_audio_path(suffix: str = ".wav", audio_dir: Path | None = None) -> Path:
    """Return a fresh, absolute path for a generated file, creating the directory."""
    directory = (audio_dir or AUDIO_DIR).resolve()
    directory.mkdir(parents=True, exist_ok=True)
    return directory / f"{uuid.uuid4()}{suffix}"


def clear_audio_files(audio_dir: Path | None = None) -> int:
    """Delete every regular file in the audio directory.

    Files that cannot be removed are logged and skipped.

    Returns:
        The number of files removed.
    """
    directory = audio_dir or AUDIO_DIR
    if not directory.is_dir():
        return 0

    removed = 0
    for path in directory.iterdir():
        if not path.is_file():
            continue
        try:
            path.unlink()
            removed += 1
        except OSError:
            logger.warning("Failed to remove temp file %s", path, exc_info=True)
    logger.info("Cleared %d temp audio file(s) from %s", removed, directory)
    return removed
