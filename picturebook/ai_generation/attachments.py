"""
Image attachments passed alongside model instructions.
"""

from __future__ import annotations

import base64
import mimetypes
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import BinaryIO
from urllib.parse import unquote, urlparse

PathLike = str | Path


@dataclass(frozen=True)
class ImageAttachment:
    """
    A reference image: a URL, a local path, or raw bytes.

    ``label`` names what the image depicts (usually a character key) so prompts can
    refer to attachments by position.
    """

    source: PathLike | bytes
    label: str | None = None
    mime_type: str | None = None

    @property
    def is_remote(self) -> bool:
        return isinstance(self.source, str) and self.source.lower().startswith(
            ("http://", "https://", "data:")
        )

    def as_model_input(self) -> str:
        """
        Return something a multimodal chat model accepts: a remote URL or a data URL.
        """
        if self.is_remote:
            return str(self.source)
        data = self.read_bytes()
        mime_type = self._guess_mime_type()
        encoded = base64.b64encode(data).decode("ascii")
        return f"data:{mime_type};base64,{encoded}"

    def as_renderer_input(self) -> str | BinaryIO:
        """Remote URLs pass through; everything else becomes an in-memory file."""
        if isinstance(self.source, str) and self.source.lower().startswith(("http://", "https://")):
            return self.source
        return BytesIO(self.read_bytes())

    def read_bytes(self) -> bytes:
        if isinstance(self.source, bytes):
            return self.source
        candidate = str(self.source)
        if candidate.lower().startswith("data:"):
            _, _, payload = candidate.partition(",")
            return base64.b64decode(payload)
        return self._local_path().read_bytes()

    def _local_path(self) -> Path:
        candidate = str(self.source)
        if candidate.lower().startswith("file://"):
            return Path(unquote(urlparse(candidate).path))
        image_path = Path(candidate).expanduser()
        if not image_path.exists():
            raise FileNotFoundError(f"Input image not found at '{image_path}'.")
        return image_path

    def _guess_mime_type(self) -> str:
        if self.mime_type:
            return self.mime_type
        if isinstance(self.source, bytes):
            return "image/png"
        mime_type, _ = mimetypes.guess_type(str(self.source))
        return mime_type or "image/jpeg"
