"""
Cross-origin headers attached to every reflector response.
"""

from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple


ALLOWED_METHODS = ("GET", "HEAD", "OPTIONS")
EXPOSED_HEADERS = ("Age", "Cache-Control", "Content-Type", "X-Cache", "X-Request-ID")


@dataclass(frozen=True)
class CorsPolicy:
    """Permissive CORS policy for browser callers."""

    allowed_origins: Tuple[str, ...] = ("*",)
    allowed_headers: Tuple[str, ...] = ("*",)
    max_age: int = 600

    @classmethod
    def from_settings(cls, origins: Sequence[str], headers: Sequence[str], max_age: int) -> "CorsPolicy":
        return cls(
            allowed_origins=tuple(origins) or ("*",),
            allowed_headers=tuple(headers) or ("*",),
            max_age=max_age,
        )

    @property
    def allows_any_origin(self) -> bool:
        return "*" in self.allowed_origins

    def headers_for(self, origin: Optional[str] = None, *, preflight: bool = False) -> Dict[str, str]:
        """Return the CORS headers for a response to ``origin``.

        With a restricted origin list the caller's origin is echoed when it is
        allowed; otherwise the first configured origin is sent so the browser
        rejects the response.
        """
        headers: Dict[str, str] = {}
        if self.allows_any_origin:
            headers["Access-Control-Allow-Origin"] = "*"
        else:
            if origin and origin in self.allowed_origins:
                headers["Access-Control-Allow-Origin"] = origin
            else:
                headers["Access-Control-Allow-Origin"] = self.allowed_origins[0]
            headers["Vary"] = "Origin"

        headers["Access-Control-Allow-Methods"] = ", ".join(ALLOWED_METHODS)
        headers["Access-Control-Allow-Headers"] = ", ".join(self.allowed_headers)
        headers["Access-Control-Expose-Headers"] = ", ".join(EXPOSED_HEADERS)
        if preflight:
            headers["Access-Control-Max-Age"] = str(self.max_age)
        return headers
