"""Deterministic field mapping between the operations platform and the CRM.

Pure functions only -- no I/O. Covers:
- Numeric and email sanitation applied before anything is sent
- The declarative status-code -> order pipeline-stage table, validated at startup
- Deal stage derived from the usage period
- Property builders for CRM deals, orders, companies and contacts
- Request bodies for platform contacts, contact persons and rental requests
- Planning-period weekday helpers and reference-path parsing
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from src.rentsync.core.exceptions import StageMappingError

EPSILON = 1e-6

# ── Pipeline stages ─────────────────────────────────────────────────────────


class OrderStage:
    """CRM order pipeline stage ids."""

    PENDING = "937ea84d-0a4f-4dcf-9028-3f9c2aafbf03"
    CANCELLED = "3725360f-519b-4b18-a593-494d60a29c9f"
    CONFIRMED = "aa99e8d0-c1d5-4071-b915-d240bbb1aed9"
    RETURN = "3986020540"
    CONCEPT = "4b27b500-f031-4927-9811-68a0b525cbae"
    TO_BE_INVOICED = "3531598027"
    INVOICED = "3c85a297-e9ce-400b-b42e-9f16853d69d6"
    MISSING_ITEMS = "4012316916"


class DealStage:
    """CRM deal pipeline stage ids."""

    UPCOMING = "appointmentscheduled"
    STARTED = "presentationscheduled"


# Platform project status ids (10 is unused by the platform)
KNOWN_STATUS_CODES = frozenset({1, 2, 3, 4, 5, 6, 7, 8, 9, 11, 12})

ORDER_STAGE_BY_STATUS: dict[int, str] = {
    1: OrderStage.PENDING,
    2: OrderStage.CANCELLED,
    3: OrderStage.CONFIRMED,        # Confirmed
    4: OrderStage.CONFIRMED,        # Prepped
    5: OrderStage.CONFIRMED,        # On location
    6: OrderStage.RETURN,
    7: OrderStage.CONCEPT,          # Inquiry
    8: OrderStage.CONCEPT,
    9: OrderStage.TO_BE_INVOICED,
    11: OrderStage.INVOICED,
    12: OrderStage.MISSING_ITEMS,   # To be invoiced, items missing
}


def validate_stage_table(
    table: dict[int, str] | None = None,
    known: frozenset[int] = KNOWN_STATUS_CODES,
) -> None:
    """Raise StageMappingError unless every known status code has a stage."""
    table = ORDER_STAGE_BY_STATUS if table is None else table
    missing = sorted(code for code in known if not table.get(code))
    if missing:
        raise StageMappingError(f"no order stage for status code(s): {missing}")


def order_stage_for_status(status_id: Any) -> str | None:
    """Order stage for a status id, or None when the code is unmapped."""
    try:
        return ORDER_STAGE_BY_STATUS.get(int(status_id))
    except (TypeError, ValueError):
        return None


def deal_stage_for_period(usage_start: Any, today: datetime | None = None) -> str:
    """Projects whose usage period has begun sit in the started stage."""
    start = parse_datetime(usage_start)
    today = today or datetime.now(timezone.utc)
    if start is not None and start < today:
        return DealStage.STARTED
    return DealStage.UPCOMING


# ── Sanitation ──────────────────────────────────────────────────────────────


def sanitize_number(value: Any, decimals: int = 2) -> float:
    """Round to ``decimals`` places (half up) and snap tiny values to zero.

    None and non-numeric input become 0.
    """
    if value is None:
        return 0
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return 0
    if not number.is_finite() or abs(number) < Decimal(str(EPSILON)):
        return 0
    quantum = Decimal(1).scaleb(-decimals)
    return float(number.quantize(quantum, rounding=ROUND_HALF_UP))


def sanitize_email(email: str | None) -> str:
    """Strip whitespace and add ``.dk`` to a domain that lacks a TLD."""
    if not email:
        return ""
    cleaned = re.sub(r"\s+", "", email)
    if "@" not in cleaned:
        return cleaned
    local, _, domain = cleaned.partition("@")
    if domain and not re.search(r"\.[a-zA-Z]{2,}$", domain):
        cleaned = f"{local}@{domain}.dk"
    return cleaned


# ── Dates ───────────────────────────────────────────────────────────────────


def parse_datetime(value: Any) -> datetime | None:
    """Parse ISO-8601 strings or epoch milliseconds into aware UTC datetimes."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) or (isinstance(value, str) and value.isdigit()):
        parsed = datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def previous_weekday(value: datetime) -> datetime:
    """Closest weekday strictly before ``value``, at 13:00."""
    day = value - timedelta(days=1)
    while day.weekday() >= 5:
        day -= timedelta(days=1)
    return day.replace(hour=13, minute=0, second=0, microsecond=0)


def next_weekday(value: datetime) -> datetime:
    """Closest weekday strictly after ``value``, at 11:00."""
    day = value + timedelta(days=1)
    while day.weekday() >= 5:
        day += timedelta(days=1)
    return day.replace(hour=11, minute=0, second=0, microsecond=0)


def iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


# ── References and names ────────────────────────────────────────────────────


def extract_id_from_ref(ref: Any) -> int | None:
    """``/contacts/12`` -> 12. None for empty or non-numeric references."""
    if not ref:
        return None
    try:
        return int(str(ref).rstrip("/").split("/")[-1])
    except ValueError:
        return None


def build_ref(resource: str, resource_id: Any) -> str:
    return f"/{resource}/{resource_id}"


def split_full_name(name: str | None) -> tuple[str, str]:
    """Split "First Middle Last" into ("First", "Middle Last")."""
    parts = (name or "").split()
    if not parts:
        return "", ""
    return parts[0], " ".join(parts[1:])


def find_association_id(results: list[dict] | None, association_type: str) -> str | None:
    """Id of the first association of the given type in a CRM association list."""
    for result in results or []:
        if result.get("type") == association_type:
            return str(result.get("id"))
    return None


# ── CRM property builders ───────────────────────────────────────────────────


def deal_properties(
    project: dict,
    today: datetime | None = None,
    owner_map: dict[str, str] | None = None,
) -> dict[str, Any]:
    """CRM deal properties for a platform project."""
    properties: dict[str, Any] = {
        "dealname": project.get("displayname") or project.get("name"),
        "dealstage": deal_stage_for_period(project.get("usageperiod_start"), today),
        "usage_period": project.get("usageperiod_start"),
        "slut_projekt_period": project.get("usageperiod_end"),
        "amount": sanitize_number(project.get("project_total_price")),
    }
    crew_id = extract_id_from_ref(project.get("account_manager"))
    if owner_map and crew_id is not None and str(crew_id) in owner_map:
        properties["hubspot_owner_id"] = owner_map[str(crew_id)]
    return properties


def order_properties(subproject: dict, status_id: Any, pipeline_id: str) -> dict[str, Any]:
    """CRM order properties for a platform sub-project.

    An unmapped status leaves the pipeline stage out entirely.
    """
    properties: dict[str, Any] = {
        "hs_order_name": subproject.get("displayname") or subproject.get("name"),
        "hs_total_price": sanitize_number(subproject.get("project_total_price")),
        "hs_pipeline": pipeline_id,
        "start_projekt_period": subproject.get("usageperiod_start"),
        "slut_projekt_period": subproject.get("usageperiod_end"),
    }
    stage = order_stage_for_status(status_id)
    if stage is not None:
        properties["hs_pipeline_stage"] = stage
    return properties


def company_properties(contact: dict, include_type: bool = False) -> dict[str, Any]:
    """CRM company properties for a platform contact (customer)."""
    properties: dict[str, Any] = {
        "name": contact.get("displayname") or contact.get("name"),
        "cvrnummer": contact.get("VAT_code") or "",
    }
    if include_type:
        properties["type"] = "Andet"
    return properties


def contact_properties(person: dict) -> dict[str, Any]:
    """CRM contact properties for a platform contact person."""
    return {
        "firstname": person.get("firstname") or "",
        "lastname": person.get("lastname") or "",
        "email": sanitize_email(person.get("email")),
    }


# ── Platform request bodies ─────────────────────────────────────────────────


def ops_company_body(company: dict) -> dict[str, Any]:
    """Platform contact body for a CRM company."""
    properties = company.get("properties", {})
    return {"name": properties.get("name") or "", "VAT_code": properties.get("cvrnummer") or ""}


def ops_contact_person_body(contact: dict) -> dict[str, Any]:
    """Platform contact person body for a CRM contact."""
    properties = contact.get("properties", {})
    body: dict[str, Any] = {
        "firstname": properties.get("firstname") or "",
        "lastname": properties.get("lastname") or "",
    }
    email = sanitize_email(properties.get("email"))
    if email:
        body["email"] = email
    return body


def rental_request_body(deal: dict, company_ops_id: Any = None) -> dict[str, Any] | None:
    """Platform rental request body for a CRM deal.

    Returns None when the deal has no complete usage period. The planning
    period opens the weekday before usage starts and closes the weekday
    after it ends.
    """
    properties = deal.get("properties", {})
    start = parse_datetime(properties.get("usage_period"))
    end = parse_datetime(properties.get("slut_projekt_period"))
    if start is None or end is None:
        return None
    body: dict[str, Any] = {
        "name": properties.get("dealname") or "",
        "usageperiod_start": iso(start),
        "usageperiod_end": iso(end),
        "planperiod_start": iso(previous_weekday(start)),
        "planperiod_end": iso(next_weekday(end)),
    }
    if company_ops_id:
        body["linked_contact"] = build_ref("contacts", company_ops_id)
    return body
