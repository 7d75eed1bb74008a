import re
from datetime import datetime

from nfse_ingest.parser.models import ParsedCandidate

_NON_DIGITS = re.compile(r"[^0-9]")


def normalize_competence(competence: str, issue_date: datetime) -> str:
    """Reduce a free-form competence to MMYYYY.

    Accepts "082025", "08/2025", "01/08/2025 00:00:00" and similar. Anything
    that does not end up as six characters falls back to the issue date.
    """
    cleaned = competence.replace("/", "").replace(" ", "").replace(":", "")

    if len(cleaned) >= 8 and "/" in competence:
        parts = competence.split("/")
        if len(parts) >= 3:
            month = parts[1].strip()
            year = parts[2].strip()[:4]
            if len(month) == 1:
                month = "0" + month
            cleaned = month + year

    if len(cleaned) != 6:
        cleaned = f"{issue_date.month:02d}{issue_date.year:04d}"
    return cleaned


def digits_only(tax_id: str) -> str:
    return _NON_DIGITS.sub("", tax_id)


def build_storage_key(candidate: ParsedCandidate, filename: str) -> str:
    """Build `nfse/{year}/{MMYYYY}/{provider tax id digits}/{filename}`."""
    year = f"{candidate.issue_date.year:04d}"
    competence = normalize_competence(candidate.competence, candidate.issue_date)
    tax_id = digits_only(candidate.provider_tax_id)
    return f"nfse/{year}/{competence}/{tax_id}/{filename}"
