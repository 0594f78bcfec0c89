from __future__ import annotations

import base64
import hashlib
import hmac
from dataclasses import dataclass


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


class ImgproxySigner:
    """Builds signed imgproxy paths: ``/{signature}/{ops}/{base64url(source)}``.

    The signature is HMAC-SHA256 over ``salt + path`` keyed with ``key``;
    both are configured as hex strings.
    """

    def __init__(self, key_hex: str, salt_hex: str) -> None:
        try:
            self.key = bytes.fromhex(key_hex)
            self.salt = bytes.fromhex(salt_hex)
        except ValueError as exc:
            raise ValueError("IMGPROXY_KEY and IMGPROXY_SALT must be hex encoded") from exc

    def _sign_path(self, path: str) -> str:
        mac = hmac.new(self.key, digestmod=hashlib.sha256)
        mac.update(self.salt)
        mac.update(path.encode("utf-8"))
        return f"/{_b64url(mac.digest())}{path}"

    def sign_url(self, operations: str, source_url: str) -> str:
        return self._sign_path(f"/{operations}/{_b64url(source_url.encode('utf-8'))}")


@dataclass(slots=True)
class ImageOperations:
    resize_type: str | None = None
    width: int = 0
    height: int = 0
    quality: int = 0
    format: str = ""
    gravity: str = ""
    blur: int = 0

    def __str__(self) -> str:
        parts: list[str] = []
        if self.resize_type:
            parts.append(f"rs:{self.resize_type}:{self.width}:{self.height}")
        elif self.width > 0 or self.height > 0:
            parts.append(f"w:{self.width}/h:{self.height}")
        if self.quality > 0:
            parts.append(f"q:{self.quality}")
        if self.format:
            parts.append(f"f:{self.format}")
        if self.gravity:
            parts.append(f"g:{self.gravity}")
        if self.blur > 0:
            parts.append(f"bl:{self.blur}")
        return "/".join(parts)


THUMBNAIL_OPERATIONS = str(ImageOperations(resize_type="fit", width=400, height=400, quality=80, format="webp"))
