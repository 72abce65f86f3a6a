from shared.errors import UnsupportedContentType
from shared.models.document import Document

_TEXTUAL_TYPES = (
    "application/json",
    "application/xml",
    "application/x-yaml",
    "application/yaml",
)


class TextExtractor:
    """Turns stored document bytes into plain text for textual content types."""

    @staticmethod
    def is_supported(content_type: str) -> bool:
        media_type = (content_type or "").split(";")[0].strip().lower()
        return (
            media_type.startswith("text/")
            or media_type in _TEXTUAL_TYPES
            or media_type.endswith("+json")
            or media_type.endswith("+xml")
        )

    def extract_text(self, content: bytes, content_type: str) -> str:
        """Decode textual content as UTF-8.

        Raises:
            UnsupportedContentType: If the content type is not textual.
        """
        if not self.is_supported(content_type):
            raise UnsupportedContentType(f"No text extractor for content type '{content_type}'.")
        return content.decode("utf-8", errors="replace")

    def get_text(self, document: Document) -> str:
        """Pre-extracted text if present, else extracted from the raw bytes."""
        if document.extracted_text:
            return document.extracted_text
        return self.extract_text(document.content, document.content_type)
