"""Attachment store: pre-extracted text segments and their embeddings."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

import aiofiles
import structlog

from src.search.models import FILE_SOURCE, Document

logger = structlog.get_logger(__name__)


@dataclass
class FileSegment:
    """One extracted text segment of an attachment."""

    file_id: str
    title: str
    text: str
    embedding: list[float] | None = None

    def to_document(self) -> Document:
        return Document(
            page_content=self.text,
            metadata={"title": self.title, "url": FILE_SOURCE, "source": FILE_SOURCE, "file_id": self.file_id},
        )


class FileStore(ABC):
    """Source of attachment segments keyed by attachment id."""

    @abstractmethod
    async def load(self, file_ids: list[str]) -> list[FileSegment]:
        pass


class InMemoryFileStore(FileStore):
    """File store backed by a dict; used for tests and embedding callers."""

    def __init__(self, segments: dict[str, list[FileSegment]] | None = None):
        self.segments = segments or {}

    async def load(self, file_ids: list[str]) -> list[FileSegment]:
        loaded: list[FileSegment] = []
        for file_id in file_ids:
            loaded.extend(self.segments.get(file_id, []))
        return loaded


class LocalFileStore(FileStore):
    """Reads ``{id}-extracted.json`` and ``{id}-embeddings.json`` from the uploads directory."""

    def __init__(self, uploads_dir: str | Path):
        self.uploads_dir = Path(uploads_dir)

    async def _read_json(self, path: Path) -> dict | None:
        try:
            async with aiofiles.open(path, "r", encoding="utf-8") as f:
                return json.loads(await f.read())
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning("Attachment file unreadable", path=str(path), error=str(e))
            return None

    async def load(self, file_ids: list[str]) -> list[FileSegment]:
        segments: list[FileSegment] = []
        for file_id in file_ids:
            # Ids are used as file names; reject anything path-like
            if not file_id or Path(file_id).name != file_id:
                logger.warning("Invalid attachment id", file_id=file_id)
                continue

            extracted = await self._read_json(self.uploads_dir / f"{file_id}-extracted.json")
            if extracted is None:
                logger.warning("Attachment not found", file_id=file_id)
                continue
            embedded = await self._read_json(self.uploads_dir / f"{file_id}-embeddings.json") or {}

            contents = extracted.get("contents") or []
            embeddings = embedded.get("embeddings") or []
            title = extracted.get("title") or file_id
            for idx, text in enumerate(contents):
                if not isinstance(text, str) or not text.strip():
                    continue
                vector = embeddings[idx] if idx < len(embeddings) else None
                segments.append(FileSegment(file_id=file_id, title=title, text=text, embedding=vector))

        logger.info("Attachments loaded", files=len(file_ids), segments=len(segments))
        return segments
