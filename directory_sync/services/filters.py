"""Record filtering shared by the override store and the merge view."""
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel

from ..errors import ValidationError


USERS = "users"
DEVICES = "devices"
KINDS = (USERS, DEVICES)

SEARCH_FIELDS = {
    USERS: ("displayName", "userPrincipalName", "mail", "jobTitle"),
    DEVICES: ("displayName", "deviceId", "operatingSystem"),
}
GROUP_FIELD = {USERS: "department", DEVICES: "operatingSystem"}


class RecordFilter(BaseModel):
    """Optional filter predicates; unset fields do not filter."""
    department: Optional[str] = None
    operatingSystem: Optional[str] = None
    accountEnabled: Optional[bool] = None
    search: Optional[str] = None


def check_kind(kind: str) -> str:
    if kind not in KINDS:
        raise ValidationError(f"Unknown record kind: {kind!r} (expected one of {', '.join(KINDS)})")
    return kind


def _contains(value: Any, needle: str) -> bool:
    return isinstance(value, str) and needle in value.lower()


def matches(kind: str, record: Dict[str, Any], flt: RecordFilter) -> bool:
    """Substring match on department/OS, exact enablement, free-text search."""
    if kind == USERS and flt.department:
        if not _contains(record.get("department"), flt.department.lower()):
            return False
    if kind == DEVICES and flt.operatingSystem:
        if not _contains(record.get("operatingSystem"), flt.operatingSystem.lower()):
            return False
    if flt.accountEnabled is not None:
        if record.get("accountEnabled") != flt.accountEnabled:
            return False
    if flt.search:
        term = flt.search.lower()
        if not any(_contains(record.get(name), term) for name in SEARCH_FIELDS[kind]):
            return False
    return True


def apply_filter(kind: str, records: Iterable[Dict[str, Any]], flt: Optional[RecordFilter]) -> List[Dict[str, Any]]:
    if flt is None:
        return list(records)
    return [record for record in records if matches(kind, record, flt)]


def same_identity(a: Optional[str], b: Optional[str]) -> bool:
    """Case-insensitive equality of two identity values; absent never matches."""
    if not a or not b:
        return False
    return a.strip().casefold() == b.strip().casefold()
