"""
Error taxonomy for panel operations.

Every failure the engine can observe is classified into one of these types so
callers can decide between aborting the run and isolating a single resource.
"""

from typing import Optional


EXCERPT_LIMIT = 300


def excerpt(raw: Optional[str], limit: int = EXCERPT_LIMIT) -> str:
    """Shorten a raw response body for log output."""
    if not raw:
        return ""
    text = " ".join(raw.split())
    if len(text) > limit:
        return text[:limit] + "..."
    return text


class PanelError(Exception):
    """Base class for all classified panel errors."""

    kind = "panel_error"

    def __init__(
        self,
        message: str,
        vps_id: Optional[str] = None,
        step: Optional[str] = None,
        raw: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.vps_id = vps_id
        self.step = step
        self.excerpt = excerpt(raw)

    def describe(self) -> str:
        """One-line description with resource, step and response excerpt."""
        parts = [f"[{self.kind}]"]
        if self.vps_id is not None:
            parts.append(f"VPS {self.vps_id}")
        if self.step:
            parts.append(f"step={self.step}")
        parts.append(self.message)
        if self.excerpt:
            parts.append(f"response: {self.excerpt}")
        return " ".join(parts)


class TransportError(PanelError):
    """Connection failure, timeout or non-success HTTP status."""

    kind = "transport"

    def __init__(self, message: str, status_code: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.status_code = status_code


class MalformedResponse(PanelError):
    """Body is not parseable, or is an HTML page where JSON was expected."""

    kind = "malformed"


class SchemaError(PanelError):
    """Body parsed but lacks the expected field."""

    kind = "schema"


class SemanticFailure(PanelError):
    """The panel explicitly reported that the operation did not complete."""

    kind = "semantic"


class NotFound(PanelError):
    """Requested resource is absent after every lookup strategy."""

    kind = "not_found"


class ConfigUnavailable(PanelError):
    """Configuration file or required credentials are missing."""

    kind = "config"
