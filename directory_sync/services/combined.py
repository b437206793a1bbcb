"""
Combined (merged) view over synced and override records.

Records from the directory store are tagged ``"synced"`` and records from
the override store ``"override"``. Everything is computed on each call;
nothing here is cached.
"""
import unicodedata
from collections import Counter
from typing import Any, Dict, List, Optional, Tuple

from ..errors import ValidationError
from .database import DirectoryStore
from .filters import (
    DEVICES,
    GROUP_FIELD,
    USERS,
    RecordFilter,
    apply_filter,
    check_kind,
    same_identity,
)
from .overrides import OverrideStore


SOURCE_ALL = "all"
SOURCE_SYNCED = "synced"
SOURCE_OVERRIDE = "override"
SOURCES = (SOURCE_ALL, SOURCE_SYNCED, SOURCE_OVERRIDE)

UNKNOWN_GROUP = "Unknown"

SOURCE_CATALOG = [
    {
        "source": SOURCE_ALL,
        "label": "All sources",
        "description": "Synced directory records and local overrides",
    },
    {
        "source": SOURCE_SYNCED,
        "label": "Directory",
        "description": "Records synchronized from the remote directory",
    },
    {
        "source": SOURCE_OVERRIDE,
        "label": "Overrides",
        "description": "Records maintained locally in this service",
    },
]


def _check_source(source: str) -> str:
    if source not in SOURCES:
        raise ValidationError(f"Unknown source: {source!r} (expected one of {', '.join(SOURCES)})")
    return source


def _sort_key(record: Dict[str, Any]) -> Tuple[str, str]:
    """Case- and accent-insensitive name key; the folded name breaks ties."""
    folded = (record.get("displayName") or "").casefold()
    decomposed = unicodedata.normalize("NFKD", folded)
    base = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return base, folded


def _tag(records: List[Dict[str, Any]], source: str) -> List[Dict[str, Any]]:
    return [{**record, "source": source} for record in records]


class CombinedView:
    """Read model joining the directory store and the override store."""

    def __init__(self, store: DirectoryStore, overrides: OverrideStore):
        self.store = store
        self.overrides = overrides

    def _synced(self, kind: str) -> List[Dict[str, Any]]:
        records = self.store.get_users() if kind == USERS else self.store.get_devices()
        return _tag(records, SOURCE_SYNCED)

    def _override(self, kind: str) -> List[Dict[str, Any]]:
        return _tag(self.overrides.list(kind), SOURCE_OVERRIDE)

    def get_combined(self, kind: str, source: str = SOURCE_ALL) -> List[Dict[str, Any]]:
        """Source-tagged records sorted by display name."""
        check_kind(kind)
        _check_source(source)
        records: List[Dict[str, Any]] = []
        if source in (SOURCE_ALL, SOURCE_SYNCED):
            records.extend(self._synced(kind))
        if source in (SOURCE_ALL, SOURCE_OVERRIDE):
            records.extend(self._override(kind))
        return sorted(records, key=_sort_key)

    def find(self, kind: str, flt: Optional[RecordFilter] = None,
             source: str = SOURCE_ALL) -> List[Dict[str, Any]]:
        return apply_filter(kind, self.get_combined(kind, source), flt)

    def get_by_id(self, kind: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Synced records are checked before overrides."""
        check_kind(kind)
        for record in self._synced(kind):
            if record.get("id") == record_id:
                return record
        record = self.overrides.get_by_id(kind, record_id)
        if record is not None:
            return {**record, "source": SOURCE_OVERRIDE}
        return None

    # ------------------------------------------------------------------
    # Identity checks across both origins
    # ------------------------------------------------------------------

    def is_identity_in_use(self, email: Optional[str] = None, principal_name: Optional[str] = None,
                           exclude_id: Optional[str] = None) -> bool:
        if not email and not principal_name:
            return False
        for user in self.get_combined(USERS):
            if exclude_id and user.get("id") == exclude_id:
                continue
            if same_identity(user.get("mail"), email):
                return True
            if same_identity(user.get("userPrincipalName"), principal_name):
                return True
        return False

    def is_device_name_in_use(self, name: Optional[str], device_id: Optional[str] = None,
                              exclude_id: Optional[str] = None) -> bool:
        if not name and not device_id:
            return False
        for device in self.get_combined(DEVICES):
            if exclude_id and device.get("id") == exclude_id:
                continue
            if same_identity(device.get("displayName"), name):
                return True
            if same_identity(device.get("deviceId"), device_id):
                return True
        return False

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------

    def _kind_stats(self, kind: str) -> Dict[str, Any]:
        records = self.get_combined(kind)
        enabled = sum(1 for r in records if r.get("accountEnabled") is True)
        by_source = Counter(r["source"] for r in records)
        group_field = GROUP_FIELD[kind]
        groups = Counter(r.get(group_field) or UNKNOWN_GROUP for r in records)
        return {
            "total": len(records),
            "enabledCount": enabled,
            "disabledCount": len(records) - enabled,
            "bySource": {
                SOURCE_SYNCED: by_source.get(SOURCE_SYNCED, 0),
                SOURCE_OVERRIDE: by_source.get(SOURCE_OVERRIDE, 0),
            },
            "byDepartment" if kind == USERS else "byOS": dict(groups),
        }

    def get_stats(self, kind: Optional[str] = None) -> Dict[str, Any]:
        """Per-kind statistics; both kinds when ``kind`` is omitted."""
        if kind is not None:
            return self._kind_stats(check_kind(kind))
        return {USERS: self._kind_stats(USERS), DEVICES: self._kind_stats(DEVICES)}

    def list_available_sources(self) -> List[Dict[str, Any]]:
        synced_users = len(self.store.get_users())
        synced_devices = len(self.store.get_devices())
        override_users = len(self.overrides.list(USERS))
        override_devices = len(self.overrides.list(DEVICES))
        counts = {
            SOURCE_ALL: (synced_users + override_users, synced_devices + override_devices),
            SOURCE_SYNCED: (synced_users, synced_devices),
            SOURCE_OVERRIDE: (override_users, override_devices),
        }
        return [
            {**entry, "userCount": counts[entry["source"]][0], "deviceCount": counts[entry["source"]][1]}
            for entry in SOURCE_CATALOG
        ]
