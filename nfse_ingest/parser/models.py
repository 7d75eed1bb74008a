from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

ZERO_DATE = datetime.min


@dataclass(frozen=True)
class RawDocument:
    """One XML file as extracted from a container."""

    filename: str
    content: bytes | str


@dataclass(frozen=True)
class ParsedCandidate:
    """Typed view of one NFS-e, ready for duplicate checking."""

    number: str
    verification_code: str
    provider_tax_id: str
    taker_tax_id: str
    service_value: Decimal
    service_code: str
    issue_date: datetime
    issue_date_raw: str
    municipal_registration: str
    competence: str
    rps_issue_date: datetime
    is_cancelled: bool
    is_substituted: bool
    fingerprint: str
    xml: str
    rps_number: str = ""
    cnae_code: str = ""
    tax_base: Decimal = Decimal("0")
    iss_rate: Decimal = Decimal("0")
    iss_value: Decimal = Decimal("0")
    net_value: Decimal = Decimal("0")
    taker_name: str = ""
    provider_name: str = ""
    provider_trade_name: str = ""
