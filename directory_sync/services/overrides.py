"""
Override record store.

Users and devices authored directly in this service, independent of the
remote directory. Records live in memory only and carry
``source = "override"``.
"""
import logging
import re
from typing import Any, Dict, List, Optional, Protocol, Type, Union
from uuid import uuid4

from pydantic import BaseModel, ValidationError as PydanticValidationError

from ..errors import ConflictError, NotFoundError, ValidationError
from .filters import DEVICES, USERS, RecordFilter, apply_filter, check_kind, same_identity
from .models import utc_now_iso


log = logging.getLogger(__name__)

OVERRIDE_SOURCE = "override"
ID_PREFIX = "override-"
DEFAULT_TRUST_TYPE = "Manual"

_EMAIL = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


# Request models
class CreateOverrideUserRequest(BaseModel):
    displayName: Optional[str] = None
    userPrincipalName: Optional[str] = None
    mail: Optional[str] = None
    department: Optional[str] = None
    jobTitle: Optional[str] = None
    accountEnabled: Optional[bool] = None


class UpdateOverrideUserRequest(CreateOverrideUserRequest):
    """Partial update; only fields that are set are applied."""


class CreateOverrideDeviceRequest(BaseModel):
    displayName: Optional[str] = None
    deviceId: Optional[str] = None
    operatingSystem: Optional[str] = None
    operatingSystemVersion: Optional[str] = None
    trustType: Optional[str] = None
    accountEnabled: Optional[bool] = None


class UpdateOverrideDeviceRequest(CreateOverrideDeviceRequest):
    """Partial update; only fields that are set are applied."""


RequestLike = Union[BaseModel, Dict[str, Any]]


class IdentityIndex(Protocol):
    """Cross-origin identity lookup (implemented by the merge view)."""

    def is_identity_in_use(self, email: Optional[str] = None, principal_name: Optional[str] = None,
                           exclude_id: Optional[str] = None) -> bool: ...

    def is_device_name_in_use(self, name: Optional[str], device_id: Optional[str] = None,
                              exclude_id: Optional[str] = None) -> bool: ...


def is_valid_email(email: str) -> bool:
    return bool(_EMAIL.match(email))


def is_valid_principal_name(upn: str) -> bool:
    """Loose principal name check: contains '@' and is longer than 3 chars."""
    return "@" in upn and len(upn) > 3


def _coerce(model: Type[BaseModel], request: RequestLike) -> BaseModel:
    if isinstance(request, model):
        return request
    if isinstance(request, BaseModel):
        request = request.model_dump(exclude_unset=True)
    try:
        return model.model_validate(request)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid request: {e.errors()[0].get('msg', e)}")


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


class OverrideStore:
    """
    In-memory collection of override users and devices.

    Args:
        identity_index: Optional cross-origin index consulted after the
            store's own duplicate check (wired to the merge view).
    """

    def __init__(self, identity_index: Optional[IdentityIndex] = None):
        self._records: Dict[str, List[Dict[str, Any]]] = {USERS: [], DEVICES: []}
        self.identity_index = identity_index

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list(self, kind: str) -> List[Dict[str, Any]]:
        return [dict(record) for record in self._records[check_kind(kind)]]

    def get_by_id(self, kind: str, record_id: str) -> Optional[Dict[str, Any]]:
        for record in self._records[check_kind(kind)]:
            if record["id"] == record_id:
                return dict(record)
        return None

    def find(self, kind: str, flt: Optional[RecordFilter] = None) -> List[Dict[str, Any]]:
        return apply_filter(kind, self.list(kind), flt)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _validate_user_fields(self, fields: Dict[str, Any]) -> None:
        mail = fields.get("mail")
        if mail and not is_valid_email(mail):
            raise ValidationError(f"Invalid email address: {mail}")
        upn = fields.get("userPrincipalName")
        if upn and not is_valid_principal_name(upn):
            raise ValidationError(f"Invalid user principal name: {upn}")

    def _check_user_conflicts(self, mail: Optional[str], upn: Optional[str],
                              exclude_id: Optional[str] = None) -> None:
        for user in self._records[USERS]:
            if user["id"] == exclude_id:
                continue
            if same_identity(user.get("mail"), mail) or same_identity(user.get("userPrincipalName"), upn):
                raise ConflictError("A user with this email or user principal name already exists")
        if self.identity_index is not None and (mail or upn):
            if self.identity_index.is_identity_in_use(email=mail, principal_name=upn, exclude_id=exclude_id):
                raise ConflictError("Email or user principal name is already used by a synced user")

    def _check_device_conflicts(self, name: Optional[str], device_id: Optional[str],
                                exclude_id: Optional[str] = None) -> None:
        for device in self._records[DEVICES]:
            if device["id"] == exclude_id:
                continue
            if same_identity(device.get("displayName"), name) or same_identity(device.get("deviceId"), device_id):
                raise ConflictError("A device with this device id or name already exists")
        if self.identity_index is not None and (name or device_id):
            if self.identity_index.is_device_name_in_use(name, device_id=device_id, exclude_id=exclude_id):
                raise ConflictError("Device name or device id is already used by a synced device")

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, kind: str, request: RequestLike, creator_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Create an override record.

        Raises:
            ValidationError: Missing display name or malformed identity fields
            ConflictError: Identity already used by another record
        """
        if check_kind(kind) == USERS:
            fields = _coerce(CreateOverrideUserRequest, request).model_dump()
        else:
            fields = _coerce(CreateOverrideDeviceRequest, request).model_dump()

        enabled = fields.pop("accountEnabled")
        fields = {name: _clean(value) for name, value in fields.items()}
        if not fields.get("displayName"):
            raise ValidationError("displayName is required")

        if kind == USERS:
            self._validate_user_fields(fields)
            self._check_user_conflicts(fields.get("mail"), fields.get("userPrincipalName"))
        else:
            fields["trustType"] = fields.get("trustType") or DEFAULT_TRUST_TYPE
            self._check_device_conflicts(fields["displayName"], fields.get("deviceId"))

        now = utc_now_iso()
        record: Dict[str, Any] = {"id": f"{ID_PREFIX}{uuid4()}"}
        record.update({name: value for name, value in fields.items() if value is not None})
        record.update({
            "accountEnabled": True if enabled is None else enabled,
            "source": OVERRIDE_SOURCE,
            "createdAt": now,
            "updatedAt": now,
        })
        if creator_id:
            record["createdBy"] = creator_id

        self._records[kind].append(record)
        log.info("Override %s created: %s (%s)", kind[:-1], record["displayName"], record["id"])
        return dict(record)

    def update(self, kind: str, record_id: str, request: RequestLike,
               updater_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Apply a partial update to an override record.

        Raises:
            NotFoundError: Unknown id
            ValidationError: Malformed changed fields
            ConflictError: Changed identity collides with another record
        """
        records = self._records[check_kind(kind)]
        index = next((i for i, r in enumerate(records) if r["id"] == record_id), None)
        if index is None:
            raise NotFoundError(f"Override {kind[:-1]} {record_id} not found")

        model = UpdateOverrideUserRequest if kind == USERS else UpdateOverrideDeviceRequest
        changes = _coerce(model, request).model_dump(exclude_unset=True)

        enabled = changes.pop("accountEnabled", None)
        changes = {name: _clean(value) for name, value in changes.items()}
        if "displayName" in changes and not changes["displayName"]:
            raise ValidationError("displayName cannot be empty")

        if kind == USERS:
            self._validate_user_fields(changes)
            if changes.get("mail") or changes.get("userPrincipalName"):
                self._check_user_conflicts(changes.get("mail"), changes.get("userPrincipalName"),
                                           exclude_id=record_id)
        elif changes.get("displayName") or changes.get("deviceId"):
            self._check_device_conflicts(changes.get("displayName"), changes.get("deviceId"),
                                         exclude_id=record_id)

        updated = dict(records[index])
        for name, value in changes.items():
            if value is None:
                updated.pop(name, None)
            else:
                updated[name] = value
        if enabled is not None:
            updated["accountEnabled"] = enabled
        updated["updatedAt"] = utc_now_iso()
        if updater_id:
            updated["updatedBy"] = updater_id

        records[index] = updated
        log.info("Override %s updated: %s (%s)", kind[:-1], updated["displayName"], record_id)
        return dict(updated)

    def delete(self, kind: str, record_id: str) -> bool:
        records = self._records[check_kind(kind)]
        remaining = [r for r in records if r["id"] != record_id]
        deleted = len(remaining) < len(records)
        self._records[kind] = remaining
        if deleted:
            log.info("Override %s deleted: %s", kind[:-1], record_id)
        return deleted

    def seed_if_empty(self) -> Optional[Dict[str, Any]]:
        """Insert one sample user when no override users exist yet."""
        if self._records[USERS]:
            return None
        seed = CreateOverrideUserRequest(
            displayName="Sample User",
            userPrincipalName="sample.user@example.com",
            mail="sample.user@example.com",
            department="IT",
            jobTitle="Administrator",
            accountEnabled=True,
        )
        try:
            return self.create(USERS, seed, creator_id="system-seed")
        except ConflictError as e:
            log.info("Skipping override seed: %s", e)
            return None

    def clear(self) -> None:
        self._records = {USERS: [], DEVICES: []}
        log.info("All override data cleared")
