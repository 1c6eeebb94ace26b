from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Optional, Sequence

from keksobooking.services.types import AttachmentInfo, OfferDraft

ATTACHMENT_FIELDS = ("avatar", "preview")
DEFAULT_MIMETYPE = "application/octet-stream"


class ByteSourceConsumedError(RuntimeError):
    """Raised when a byte source is read a second time."""


class ByteSource:
    """Single-use handle over the bytes of one uploaded file."""

    def __init__(
        self,
        reader: Callable[[], Awaitable[bytes]],
        *,
        closer: Optional[Callable[[], Awaitable[None]]] = None,
    ) -> None:
        self._reader = reader
        self._closer = closer
        self._consumed = False

    @classmethod
    def from_bytes(cls, content: bytes) -> "ByteSource":
        async def _read() -> bytes:
            return content

        return cls(_read)

    @classmethod
    def from_upload(cls, upload: Any) -> "ByteSource":
        async def _read() -> bytes:
            await upload.seek(0)
            return await upload.read()

        return cls(_read, closer=upload.close)

    @property
    def consumed(self) -> bool:
        return self._consumed

    async def read(self) -> bytes:
        if self._consumed:
            raise ByteSourceConsumedError("byte source has already been consumed")
        self._consumed = True
        try:
            return await self._reader()
        finally:
            if self._closer is not None:
                await self._closer()


@dataclass
class Attachment:
    kind: str
    name: str
    mimetype: str
    source: ByteSource

    @property
    def info(self) -> AttachmentInfo:
        return AttachmentInfo(name=self.name, mimetype=self.mimetype)


@dataclass
class ExtractedAttachments:
    avatar: Optional[Attachment] = None
    preview: Optional[Attachment] = None

    def __iter__(self):
        return iter(item for item in (self.avatar, self.preview) if item is not None)

    def apply_to(self, draft: OfferDraft) -> OfferDraft:
        """Copy attachment metadata (never the bytes) onto ``draft``."""

        if self.avatar is not None:
            draft.avatar = self.avatar.info
        if self.preview is not None:
            draft.preview = self.preview.info
        return draft


def _to_attachment(kind: str, upload: Any) -> Attachment:
    if isinstance(upload, Attachment):
        return upload
    return Attachment(
        kind=kind,
        name=getattr(upload, "filename", None) or kind,
        mimetype=getattr(upload, "content_type", None) or DEFAULT_MIMETYPE,
        source=ByteSource.from_upload(upload),
    )


def extract_attachments(files: Mapping[str, Sequence[Any]]) -> ExtractedAttachments:
    """Pick the first ``avatar`` and first ``preview`` upload; ignore the rest."""

    picked: dict[str, Attachment] = {}
    for kind in ATTACHMENT_FIELDS:
        uploads = files.get(kind) or ()
        if uploads:
            picked[kind] = _to_attachment(kind, uploads[0])
    return ExtractedAttachments(**picked)
