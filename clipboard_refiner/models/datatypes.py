"""Core datatypes shared across rewrite engine modules.

Responsibilities:
- Represent immutable request values handed from callers to the engine.
- Represent tagged backend outcomes and persisted cache/history records.

Key types:
- `ImageAttachment`, `RewriteRequest`, `RequestIdentity`, `BackendResult`,
  `CacheEntry`, and `HistoryEntry`.
"""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from datetime import datetime, timezone
from hashlib import sha256
import mimetypes
from pathlib import Path
import uuid

from ..errors import RewriteError
from ..parsing import clamp_unit
from .styles import NONE_SKILL_ID, PromptSkill, RewriteStyle


@dataclass(frozen=True, slots=True)
class ImageAttachment:
    """An image sent alongside the source text.

    Attributes:
        filename: Original file name, informational only.
        mime_type: MIME type used when encoding the image for a backend.
        data: Raw image bytes.
        content_hash: SHA-256 hex digest of `data`, filled in when omitted.
    """

    filename: str
    mime_type: str
    data: bytes
    content_hash: str = ""

    def __post_init__(self) -> None:
        if not self.content_hash:
            object.__setattr__(self, "content_hash", sha256(self.data).hexdigest())

    @classmethod
    def from_bytes(cls, data: bytes, *, filename: str = "image.png", mime_type: str = "image/png") -> ImageAttachment:
        """Build an attachment from in-memory bytes."""

        return cls(filename=filename, mime_type=mime_type, data=bytes(data))

    @classmethod
    def from_path(cls, path: Path) -> ImageAttachment:
        """Read an image file, guessing its MIME type from the extension."""

        guessed, _ = mimetypes.guess_type(path.name)
        mime_type = guessed if guessed and guessed.startswith("image/") else "image/png"
        return cls(filename=path.name, mime_type=mime_type, data=path.read_bytes())

    @property
    def data_base64(self) -> str:
        """Return the image bytes as standard base64 text."""

        return base64.b64encode(self.data).decode("ascii")

    @property
    def data_url(self) -> str:
        """Return the image as a `data:` URL."""

        return f"data:{self.mime_type};base64,{self.data_base64}"


@dataclass(frozen=True, slots=True)
class RewriteRequest:
    """One caller-constructed rewrite invocation, never mutated after creation.

    Attributes:
        text: Source text to transform.
        style: Target rewrite style.
        aggressiveness: Rewrite strength in 0..1, clamped when used.
        skill: Optional prompt skill appended to the style prompt.
        attachments: Ordered image attachments.
        streaming: Whether the backend should stream partial output.
    """

    text: str
    style: RewriteStyle = RewriteStyle.PROOFREAD
    aggressiveness: float = 0.5
    skill: PromptSkill | None = None
    attachments: tuple[ImageAttachment, ...] = field(default_factory=tuple)
    streaming: bool = True

    @property
    def normalized_aggressiveness(self) -> float:
        """Return aggressiveness clamped into 0..1."""

        return clamp_unit(self.aggressiveness)

    @property
    def temperature(self) -> float:
        """Return sampling temperature derived from aggressiveness."""

        return 0.2 + self.normalized_aggressiveness * 0.8

    @property
    def skill_id(self) -> str:
        """Return the selected skill id, or the none sentinel."""

        return self.skill.id if self.skill is not None else NONE_SKILL_ID

    def cache_key_component(self) -> str:
        """Return the option fingerprint that distinguishes cached results."""

        image_hashes = ":".join(attachment.content_hash for attachment in self.attachments)
        return "|".join(
            [
                self.style.value,
                f"{self.normalized_aggressiveness:.2f}",
                self.skill_id,
                image_hashes,
            ]
        )


@dataclass(frozen=True, slots=True)
class RequestIdentity:
    """Opaque per-request token used to discard stale asynchronous callbacks."""

    token: str

    @classmethod
    def mint(cls) -> RequestIdentity:
        """Create a new unique identity."""

        return cls(token=uuid.uuid4().hex)


@dataclass(frozen=True, slots=True)
class BackendResult:
    """Tagged outcome of one rewrite: either `text` or `error` is set.

    Attributes:
        text: Final output text on success.
        error: Failure detail on failure.
        from_cache: Whether the text was served from the offline cache.
    """

    text: str | None = None
    error: RewriteError | None = None
    from_cache: bool = False

    @classmethod
    def success(cls, text: str, *, from_cache: bool = False) -> BackendResult:
        return cls(text=text, from_cache=from_cache)

    @classmethod
    def failure(cls, error: RewriteError) -> BackendResult:
        return cls(error=error)

    @property
    def ok(self) -> bool:
        """Return whether this result carries output text."""

        return self.error is None and self.text is not None


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """One persisted offline cache record."""

    key: str
    value: str
    created_at: datetime

    def to_payload(self) -> dict[str, str]:
        """Serialize to the cache file record shape."""

        return {
            "key": self.key,
            "value": self.value,
            "createdAt": self.created_at.astimezone(timezone.utc).isoformat().replace("+00:00", "Z"),
        }

    @classmethod
    def from_payload(cls, payload: dict[str, object]) -> CacheEntry:
        """Parse one cache file record.

        Raises:
            ValueError: If required fields are missing or malformed.
        """

        key = payload.get("key")
        value = payload.get("value")
        created_raw = payload.get("createdAt")
        if not isinstance(key, str) or not isinstance(value, str) or not isinstance(created_raw, str):
            raise ValueError("Cache record requires string `key`, `value`, and `createdAt`.")
        created_at = datetime.fromisoformat(created_raw.replace("Z", "+00:00"))
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return cls(key=key, value=value, created_at=created_at)


@dataclass(frozen=True, slots=True)
class HistoryEntry:
    """One completed rewrite recorded for the history view."""

    original_text: str
    rewritten_text: str
    style: str
    backend: str
    date: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def to_payload(self) -> dict[str, str]:
        """Serialize to a JSON-compatible mapping."""

        return {
            "id": self.id,
            "date": self.date.isoformat(),
            "originalText": self.original_text,
            "rewrittenText": self.rewritten_text,
            "style": self.style,
            "provider": self.backend,
        }
