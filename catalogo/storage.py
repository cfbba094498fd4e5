from __future__ import annotations

import logging
import uuid

logger = logging.getLogger(__name__)


class DocumentCache:
    """In-memory token store for generated files served by preview/download."""

    def __init__(self) -> None:
        self._files: dict[str, tuple[bytes, str, str]] = {}

    def __len__(self) -> int:
        return len(self._files)

    def __contains__(self, token: object) -> bool:
        return token in self._files

    def save(self, content: bytes, content_type: str, filename: str) -> str:
        token = uuid.uuid4().hex
        self._files[token] = (bytes(content), content_type, filename)
        return token

    def get(self, token: str) -> tuple[bytes, str, str] | None:
        return self._files.get(token)

    def release(self, token: str) -> bool:
        released = self._files.pop(token, None) is not None
        if released:
            logger.debug("Released document %s", token)
        return released

    def replace(
        self, previous_token: str | None, content: bytes, content_type: str, filename: str
    ) -> str:
        if previous_token:
            self.release(previous_token)
        return self.save(content, content_type, filename)


document_cache = DocumentCache()
