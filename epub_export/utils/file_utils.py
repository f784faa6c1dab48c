"""
File helpers for export output
"""
import os
import re
from pathlib import Path

import aiofiles
import aiofiles.os


def get_unique_output_path(output_path):
    """
    Generate a unique output path by adding a number suffix if the file already exists.

    Args:
        output_path (str): Desired output path

    Returns:
        str: Unique output path (original or with numeric suffix)

    Examples:
        book.epub -> book.epub (if doesn't exist)
        book.epub -> book (1).epub (if book.epub exists)
    """
    path = Path(output_path)

    if not path.exists():
        return output_path

    parent = path.parent
    stem = path.stem
    suffix = path.suffix

    counter = 1
    while True:
        new_path = parent / f"{stem} ({counter}){suffix}"
        if not new_path.exists():
            return str(new_path)

        counter += 1
        if counter > 9999:
            raise RuntimeError(f"Could not find unique filename after 9999 attempts for: {output_path}")


def safe_filename(title: str, default: str = "export") -> str:
    """Filesystem-safe file stem from a book title."""
    stem = re.sub(r'[\\/:*?"<>|\x00-\x1f]+', '', title or '').strip().strip('.')
    stem = re.sub(r'\s+', '_', stem)
    return stem[:120] or default


async def write_binary_file(output_path: str, data: bytes) -> str:
    """Write bytes to disk, creating parent directories.

    Returns:
        The path written
    """
    directory = os.path.dirname(output_path)
    if directory:
        await aiofiles.os.makedirs(directory, exist_ok=True)
    async with aiofiles.open(output_path, 'wb') as f:
        await f.write(data)
    return output_path
