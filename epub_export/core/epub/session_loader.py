"""
Builds a chapter store snapshot from a JSON session export.

Two layouts are accepted:

    {"novel": {"title": ...}, "chapters": [{...}, ...]}
    {"chapters": {"<id>": {...}, ...}}
"""

import json
from typing import Any, Dict, Mapping

import aiofiles

from .exceptions import CollectionError
from .models import StoreSnapshot


def _chapter_key(chapter: Mapping[str, Any], index: int) -> str:
    for name in ('id', 'stableId', 'stable_id', 'chapterId', 'chapter_id'):
        value = chapter.get(name)
        if value:
            return str(value)
    return f"chapter-{index}"


def parse_session(payload: Any) -> StoreSnapshot:
    """Convert a decoded session document into a StoreSnapshot.

    Raises:
        CollectionError: if the document has no usable chapter collection
    """
    if not isinstance(payload, Mapping):
        raise CollectionError("Session export must be a JSON object")

    raw_chapters = payload.get('chapters')
    chapters: Dict[str, Any] = {}
    if isinstance(raw_chapters, Mapping):
        chapters = {str(key): value for key, value in raw_chapters.items()}
    elif isinstance(raw_chapters, list):
        for index, chapter in enumerate(raw_chapters, 1):
            if not isinstance(chapter, Mapping):
                raise CollectionError(f"Chapter entry {index} is not an object")
            key = _chapter_key(chapter, index)
            if key in chapters:
                raise CollectionError(f"Duplicate chapter id '{key}'", chapter_id=key)
            chapters[key] = chapter
    else:
        raise CollectionError("Session export has no 'chapters' collection")

    novel = payload.get('novel')
    title = novel.get('title') if isinstance(novel, Mapping) else None
    title = title or payload.get('novelTitle') or payload.get('currentNovelTitle')

    return StoreSnapshot(chapters=chapters, novel_title=title or None)


async def load_session_snapshot(path: str) -> StoreSnapshot:
    """Read a session export file.

    Args:
        path: Path to the JSON session export

    Returns:
        StoreSnapshot of the session's chapters

    Raises:
        CollectionError: if the file cannot be read or parsed
    """
    try:
        async with aiofiles.open(path, 'r', encoding='utf-8') as f:
            text = await f.read()
    except OSError as e:
        raise CollectionError(f"Reading session file '{path}': {e}") from e

    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        raise CollectionError(f"Session file '{path}' is not valid JSON: {e}") from e

    return parse_session(payload)
