import base64
import binascii
import io
import zipfile
import zlib

from nfse_ingest.extraction.exceptions import ExtractionError
from nfse_ingest.extraction.models import ContainerFailure, ExtractionOutcome
from nfse_ingest.fetch.models import FetchEnvelope
from nfse_ingest.logging.logger import Log
from nfse_ingest.parser.models import RawDocument

_ENTRY_READ_ERRORS = (
    zipfile.BadZipFile,
    zlib.error,
    EOFError,
    OSError,
    RuntimeError,
    NotImplementedError,
)


class BatchExtractor:
    """Unpacks Base64-encoded ZIP containers into raw XML documents."""

    def extract(self, container: str | bytes) -> list[RawDocument]:
        """Return every readable file of the container, in archive order.

        Entries that cannot be read are logged and skipped.

        Raises:
            ExtractionError: if the container is not valid Base64 or not a ZIP.
        """
        if isinstance(container, str):
            try:
                container = container.encode("ascii")
            except UnicodeEncodeError as exc:
                raise ExtractionError(f"failed to decode base64: {exc}") from exc
        compact = b"".join(container.split())
        try:
            data = base64.b64decode(compact, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ExtractionError(f"failed to decode base64: {exc}") from exc

        try:
            archive = zipfile.ZipFile(io.BytesIO(data))
        except zipfile.BadZipFile as exc:
            raise ExtractionError(f"failed to open zip archive: {exc}") from exc

        documents: list[RawDocument] = []
        with archive:
            for info in archive.infolist():
                if info.is_dir():
                    continue
                try:
                    content = archive.read(info)
                except _ENTRY_READ_ERRORS as exc:
                    Log.error(
                        "Failed to read file in ZIP",
                        entry=info.filename,
                        error=str(exc),
                    )
                    continue
                documents.append(RawDocument(filename=info.filename, content=content))
                Log.debug(
                    "XML file extracted", entry=info.filename, content_size=len(content)
                )
        return documents

    def extract_envelope(self, envelope: FetchEnvelope) -> ExtractionOutcome:
        """Extract all containers of a fetch envelope.

        Entries without a container are skipped with a warning; containers that
        fail to open are reported in `failures`.
        """
        outcome = ExtractionOutcome()
        for entry in envelope.entries:
            if not entry.container:
                Log.warning("Empty container in fetch entry", nfse_number=entry.number)
                continue
            try:
                outcome.documents.extend(self.extract(entry.container))
            except ExtractionError as exc:
                Log.error(
                    "Failed to extract XML from container",
                    nfse_number=entry.number,
                    error=str(exc),
                )
                outcome.failures.append(
                    ContainerFailure(entry_number=entry.number, error=str(exc))
                )
        return outcome
