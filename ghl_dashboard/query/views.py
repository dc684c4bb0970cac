"""
Lead Views

Search, filter and sort over the synced contacts snapshot. Pure functions:
nothing here mutates the snapshot or touches the network, so views can be
recomputed on every request.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel

from ghl_dashboard.connectors.base.records import Record, Snapshot

SEARCH_FIELDS = ("firstName", "lastName", "contactName", "email", "phone", "source")
NAME_SORT_FIELD = "name"


class FilterState(str, Enum):
    ANY = "any"
    HAS = "has"
    NONE = "none"

    def accepts(self, flag: bool) -> bool:
        if self == FilterState.HAS:
            return flag
        if self == FilterState.NONE:
            return not flag
        return True


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


class SortSpec(BaseModel):
    field: str = NAME_SORT_FIELD
    direction: SortDirection = SortDirection.ASC


class LeadFilters(BaseModel):
    resume: FilterState = FilterState.ANY
    appointment: FilterState = FilterState.ANY


@dataclass
class AuxiliaryCollections:
    """Reference data fetched alongside the contacts."""

    custom_fields: list[dict[str, Any]] = field(default_factory=list)
    appointments: list[dict[str, Any]] = field(default_factory=list)

    def custom_field_names(self) -> dict[str, str]:
        names = {}
        for definition in self.custom_fields:
            field_id = definition.get("id")
            name = definition.get("name") or definition.get("fieldKey")
            if field_id and name:
                names[str(field_id)] = str(name)
        return names


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def display_name(record: Mapping[str, Any]) -> str:
    """`firstName lastName`, falling back to `contactName`, then email."""
    full = " ".join(part for part in (_text(record.get("firstName")), _text(record.get("lastName"))) if part)
    return full or _text(record.get("contactName")) or _text(record.get("email"))


def matches_search(record: Mapping[str, Any], query: str | None) -> bool:
    needle = (query or "").strip().lower()
    if not needle:
        return True
    return any(needle in _text(record.get(name)).lower() for name in SEARCH_FIELDS)


def _link_from_value(value: Any) -> str | None:
    if isinstance(value, str):
        return value.strip() or None
    # File-upload fields hold {"<uuid>": {"url": ..., "meta": ...}} or a list of such entries.
    if isinstance(value, Mapping):
        if isinstance(value.get("url"), str) and value["url"]:
            return value["url"]
        for nested in value.values():
            link = _link_from_value(nested) if isinstance(nested, (Mapping, list)) else None
            if link:
                return link
    if isinstance(value, list):
        for item in value:
            link = _link_from_value(item)
            if link:
                return link
    return None


def find_resume_link(record: Mapping[str, Any], field_names: Mapping[str, str] | None = None) -> str | None:
    """The value of the first custom field that looks like a resume."""
    field_names = field_names or {}
    for custom_field in record.get("customFields") or []:
        if not isinstance(custom_field, Mapping):
            continue
        field_id = _text(custom_field.get("id"))
        name = _text(custom_field.get("name")) or field_names.get(field_id, "")
        value = custom_field.get("value") if "value" in custom_field else custom_field.get("fieldValue")

        mentions_resume = "resume" in field_id.lower() or "resume" in name.lower()
        if not mentions_resume and isinstance(value, str):
            lowered = value.lower()
            mentions_resume = "http" in lowered and "resume" in lowered

        if mentions_resume:
            return _link_from_value(value)
    return None


class AppointmentIndex:
    """Contact ids and emails that have at least one appointment."""

    def __init__(self, appointments: Iterable[Mapping[str, Any]]):
        self.contact_ids: set[str] = set()
        self.emails: set[str] = set()
        for appointment in appointments:
            contact_id = _text(appointment.get("contactId"))
            if contact_id:
                self.contact_ids.add(contact_id)
            for email in self._emails(appointment):
                self.emails.add(email)

    @staticmethod
    def _emails(appointment: Mapping[str, Any]) -> list[str]:
        emails = [appointment.get("email")]
        contact = appointment.get("contact")
        if isinstance(contact, Mapping):
            emails.append(contact.get("email"))
        for attendee in appointment.get("attendees") or []:
            if isinstance(attendee, Mapping):
                emails.append(attendee.get("email"))
            elif isinstance(attendee, str):
                emails.append(attendee)
        return [_text(e).lower() for e in emails if _text(e)]

    def has_appointment(self, record: Mapping[str, Any]) -> bool:
        if _text(record.get("id")) in self.contact_ids:
            return True
        email = _text(record.get("email")).lower()
        return bool(email) and email in self.emails


def annotate(record: Mapping[str, Any], field_names: Mapping[str, str], appointments: AppointmentIndex) -> Record:
    """A copy of the record with its derived view fields."""
    resume_link = find_resume_link(record, field_names)
    annotated = dict(record)
    annotated["displayName"] = display_name(record)
    annotated["resumeLink"] = resume_link
    annotated["hasResume"] = resume_link is not None
    annotated["hasAppointment"] = appointments.has_appointment(record)
    return annotated


def _sort_value(record: Mapping[str, Any], field_name: str) -> Any:
    if field_name == NAME_SORT_FIELD:
        value: Any = record.get("displayName") or display_name(record)
    else:
        value = record.get(field_name)
    if isinstance(value, str):
        value = value.strip()
        return value.lower() if value else None
    if isinstance(value, (list, dict)):
        return None
    return value


def sort_records(records: list[Record], sort: SortSpec) -> list[Record]:
    """
    Stable sort; records missing the field go last in either direction.

    Numbers order before strings when a field mixes both.
    """
    present: list[tuple[tuple[int, Any], Record]] = []
    missing: list[Record] = []
    for record in records:
        value = _sort_value(record, sort.field)
        if value is None:
            missing.append(record)
        else:
            rank = 1 if isinstance(value, str) else 0
            present.append(((rank, value), record))

    ordered = sorted(present, key=lambda item: item[0], reverse=sort.direction == SortDirection.DESC)
    return [record for _, record in ordered] + missing


def query_records(
    snapshot: Snapshot | Iterable[Mapping[str, Any]],
    aux: AuxiliaryCollections | None = None,
    search: str | None = None,
    filters: LeadFilters | None = None,
    sort: SortSpec | None = None,
) -> list[Record]:
    """Searched, filtered and sorted copies of the snapshot's records."""
    aux = aux or AuxiliaryCollections()
    filters = filters or LeadFilters()
    sort = sort or SortSpec()

    records = snapshot.records() if isinstance(snapshot, Snapshot) else list(snapshot)
    field_names = aux.custom_field_names()
    appointments = AppointmentIndex(aux.appointments)

    matched = []
    for record in records:
        if not matches_search(record, search):
            continue
        annotated = annotate(record, field_names, appointments)
        if not filters.resume.accepts(annotated["hasResume"]):
            continue
        if not filters.appointment.accepts(annotated["hasAppointment"]):
            continue
        matched.append(annotated)

    return sort_records(matched, sort)
