import re
from typing import ClassVar, TypeVar

from nfse_ingest.logging.logger import Log

Content = TypeVar("Content", bytes, str)

_DECLARATION_RE = re.compile(
    r"""(<\?xml[^>]*?\bencoding\s*=\s*)(["'])([A-Za-z0-9._-]+)\2""",
    re.IGNORECASE,
)


class EncodingNormalizer:
    """Converts XML declared in a legacy single-byte charset to UTF-8.

    Bytes in, bytes out (UTF-8); text in, text out. Content that does not
    declare a known legacy charset is returned untouched, so normalizing twice
    is the same as normalizing once.
    """

    CANONICAL: ClassVar[str] = "UTF-8"

    # declared name (lowercase) -> Python codec
    LEGACY_CHARSETS: ClassVar[dict[str, str]] = {
        "iso-8859-1": "latin_1",
        "iso8859-1": "latin_1",
        "latin1": "latin_1",
        "latin-1": "latin_1",
        "iso-8859-15": "iso8859_15",
        "latin-9": "iso8859_15",
        "windows-1252": "cp1252",
        "cp1252": "cp1252",
    }

    def declared_charset(self, content: bytes | str) -> str | None:
        """Return the charset named in the XML declaration, if any."""
        head = content[:256]
        if isinstance(head, bytes):
            head = head.decode("ascii", errors="ignore")
        match = _DECLARATION_RE.search(head)
        return match.group(3) if match else None

    def normalize(self, content: Content) -> Content:
        charset = self.declared_charset(content)
        if charset is None:
            return content
        codec = self.LEGACY_CHARSETS.get(charset.lower())
        if codec is None:
            return content

        if isinstance(content, str):
            return self._rewrite_declaration(content)

        try:
            text = content.decode(codec)
        except UnicodeDecodeError as exc:
            Log.warning(
                "Failed to convert legacy encoding, using original content",
                charset=charset,
                error=str(exc),
            )
            return content
        return self._rewrite_declaration(text).encode("utf-8")

    def _rewrite_declaration(self, text: str) -> str:
        return _DECLARATION_RE.sub(
            lambda m: f"{m.group(1)}{m.group(2)}{self.CANONICAL}{m.group(2)}",
            text,
            count=1,
        )
