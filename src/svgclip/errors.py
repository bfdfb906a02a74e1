"""svgclip.errors — exception taxonomy.

Decomposition-time errors that prevent a usable clip list are fatal
(TemplateParseError). Everything else degrades per element, per clip or
per source, except collaborator failures and cancellation, which surface
to the caller of an export.
"""


class SvgClipError(Exception):
    """Base class for all svgclip errors."""


class TemplateParseError(SvgClipError, ValueError):
    """Template markup or annotation could not be read or parsed."""


class UnresolvedReferenceError(SvgClipError, LookupError):
    """An id, href or clip-path reference points at nothing."""


class AssetEmbedError(SvgClipError):
    """A referenced asset could not be fetched and inlined."""


class GeometryMeasurementError(SvgClipError):
    """Bounding-box measurement failed or timed out."""


class DrawError(SvgClipError):
    """A single clip could not be drawn."""


class CollaboratorError(SvgClipError):
    """The frame-extraction or video-encoding service failed.

    Attributes:
        service: Short name of the failing collaborator.
        message: Human-readable failure reason.
    """

    def __init__(self, service: str, message: str):
        super().__init__(f"{service}: {message}")
        self.service = service
        self.message = message


class ExportCancelled(SvgClipError):
    """Export was cancelled cooperatively."""
