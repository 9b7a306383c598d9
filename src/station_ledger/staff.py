"""Staff records kept per station."""

from __future__ import annotations

import json
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from . import core_logic, data_manager, log
from .core_logic import RuntimeContext
from .errors import BusinessRuleViolation, MissingReferenceError

SOCIAL_MEDIA_NETWORKS = ("facebook", "twitter", "instagram", "linkedin")

# Staff attributes that may be edited, mapped to their worksheet columns.
_EDITABLE_COLUMNS = {
    "name": "Name",
    "position": "Position",
    "phone": "Phone",
    "social_media": "SocialMedia",
    "picture": "Picture",
    "date_of_employment": "DateOfEmployment",
    "birthday": "Birthday",
}


def _encode_social_media(handles: Optional[Dict[str, str]]) -> Optional[str]:
    if not handles:
        return None
    unknown = sorted(set(handles) - set(SOCIAL_MEDIA_NETWORKS))
    if unknown:
        raise BusinessRuleViolation(f"Unsupported social media networks: {', '.join(unknown)}")
    cleaned = {network: handle.strip() for network, handle in handles.items() if handle and handle.strip()}
    return json.dumps(cleaned, sort_keys=True) if cleaned else None


def social_media_handles(member: data_manager.StaffRow) -> Dict[str, str]:
    """Decode the stored social media handles of a staff member."""
    if not member.social_media:
        return {}
    try:
        handles = json.loads(member.social_media)
    except ValueError:
        log.warning("Staff member '%s' carries unreadable social media data", member.staff_id)
        return {}
    return handles if isinstance(handles, dict) else {}


def _require_text(value: str, label: str) -> str:
    if not value or not value.strip():
        raise BusinessRuleViolation(f"Staff {label} cannot be empty")
    return value.strip()


def _all_staff(context: RuntimeContext) -> List[data_manager.StaffRow]:
    bucket = core_logic._get_cache_bucket(context, "staff")
    if "all" not in bucket:
        with core_logic._record_store("load staff"):
            bucket["all"] = list(data_manager.iter_staff(context.workbook))
    return bucket["all"]


def add_staff(
    context: RuntimeContext,
    *,
    station_id: str,
    name: str,
    position: str,
    phone: Optional[str] = None,
    social_media: Optional[Dict[str, str]] = None,
    picture: Optional[str] = None,
    date_of_employment: Optional[date] = None,
    birthday: Optional[date] = None,
    timestamp: Optional[datetime] = None,
) -> data_manager.StaffRow:
    """Register a staff member at a station.

    ``picture`` is a reference (path or URL) to an image stored elsewhere.

    Raises:
        MissingReferenceError: If the station is unknown.
        BusinessRuleViolation: If name or position is blank, or a social media
            network is not supported.
    """
    core_logic.get_station(context, station_id)
    when = core_logic._resolve_timestamp(timestamp)
    member = data_manager.StaffRow(
        staff_id=core_logic.generate_id("STF", when=when),
        station_id=station_id,
        name=_require_text(name, "name"),
        position=_require_text(position, "position"),
        phone=phone,
        social_media=_encode_social_media(social_media),
        picture=picture,
        date_of_employment=date_of_employment,
        birthday=birthday,
        updated_at=when.isoformat(),
    )
    with core_logic._record_store("append staff"):
        data_manager.append_staff(context.workbook, member)
    core_logic._invalidate_cache(context, "staff")
    log.info("Added staff member '%s' (%s) at station '%s'", member.name, member.position, station_id)
    return member


def get_staff(context: RuntimeContext, staff_id: str) -> data_manager.StaffRow:
    """Resolve a staff member by identifier.

    Raises:
        MissingReferenceError: If ``staff_id`` is unknown.
    """
    for member in _all_staff(context):
        if member.staff_id == staff_id:
            return member
    log.warning("Staff lookup failed for id '%s'", staff_id)
    raise MissingReferenceError(f"Unknown staff id: {staff_id}")


def update_staff(
    context: RuntimeContext, staff_id: str, *, timestamp: Optional[datetime] = None, **changes: Any
) -> data_manager.StaffRow:
    """Edit selected attributes of a staff member.

    Keyword arguments name the attributes to change (``name``, ``position``,
    ``phone``, ``social_media``, ``picture``, ``date_of_employment``,
    ``birthday``); anything else is rejected.
    """
    get_staff(context, staff_id)
    unknown = sorted(set(changes) - set(_EDITABLE_COLUMNS))
    if unknown:
        raise BusinessRuleViolation(f"Unsupported staff fields: {', '.join(unknown)}")
    if not changes:
        raise BusinessRuleViolation("No staff fields supplied for update")

    field_values: Dict[str, Any] = {}
    for attribute, value in changes.items():
        if attribute in ("name", "position"):
            value = _require_text(value, attribute)
        elif attribute == "social_media":
            value = _encode_social_media(value)
        elif attribute in ("date_of_employment", "birthday") and value is not None:
            value = value.isoformat()
        field_values[_EDITABLE_COLUMNS[attribute]] = value
    field_values["UpdatedAt"] = core_logic._resolve_timestamp(timestamp).isoformat()

    with core_logic._record_store("update staff"):
        data_manager.update_staff(context.workbook, staff_id, field_values=field_values)
    core_logic._invalidate_cache(context, "staff")
    log.info("Updated staff member '%s': %s", staff_id, ", ".join(sorted(changes)))
    return get_staff(context, staff_id)


def list_staff(context: RuntimeContext, station_id: str) -> List[data_manager.StaffRow]:
    """Return a station's staff, most recently employed first.

    Members without an employment date are listed last.
    """
    members = [member for member in _all_staff(context) if member.station_id == station_id]
    dated = sorted(
        (member for member in members if member.date_of_employment is not None),
        key=lambda row: row.date_of_employment,
        reverse=True,
    )
    return dated + [member for member in members if member.date_of_employment is None]
