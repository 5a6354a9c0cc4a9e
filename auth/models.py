"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Dataclasses own
domain shape; the store, the managers and the routes do the work. The only
behaviour here is the explicit payload decode (data_as) and the mapping to
and from the document field names used in the store.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from auth.errors import AuthError, ErrorKind

_M = TypeVar("_M", bound=BaseModel)


def _decode_payload(data: dict[str, Any] | None, model: type[_M]) -> _M:
    try:
        return model.model_validate(data or {})
    except ValidationError as exc:
        raise AuthError(
            ErrorKind.DECODE_ERROR,
            f"payload does not match {model.__name__}: {exc.error_count()} error(s)",
            exc,
        ) from exc


@dataclass
class Account:
    """A user account as stored in the users collection.

    email is the lookup key and is unique, case-sensitive as stored.
    password_hash is a bcrypt hash; the plaintext never lives on this object.
    user_id is the stable identifier: caller-supplied in explicit mode,
    equal to the document key in auto-assigned mode.
    data is an app-specific JSON object. Use data_as() to read it as a model.
    """

    email: str
    role: str = ""
    user_id: str = ""
    password_hash: str = ""
    approved: bool = False
    data: dict[str, Any] = field(default_factory=dict)
    ip: str = ""
    first_name: str = ""
    last_name: str = ""

    def data_as(self, model: type[_M]) -> _M:
        """Decode the payload into ``model``. Raises AuthError(DECODE_ERROR)."""
        return _decode_payload(self.data, model)

    def to_document(self) -> dict[str, Any]:
        return {
            "email": self.email,
            "passwordHash": self.password_hash,
            "userID": self.user_id,
            "role": self.role,
            "approved": self.approved,
            "data": self.data,
            "ip": self.ip,
            "firstName": self.first_name,
            "lastName": self.last_name,
        }

    @classmethod
    def from_document(cls, key: str, doc: dict[str, Any]) -> Account:
        data = doc.get("data") or {}
        if not isinstance(data, dict):
            raise AuthError(ErrorKind.DECODE_ERROR, "user record data field is not an object")
        return cls(
            email=doc.get("email", ""),
            password_hash=doc.get("passwordHash", ""),
            user_id=doc.get("userID") or key,
            role=doc.get("role", ""),
            approved=bool(doc.get("approved", False)),
            data=data,
            ip=doc.get("ip", ""),
            first_name=doc.get("firstName", ""),
            last_name=doc.get("lastName", ""),
        )


@dataclass
class AccountRef:
    """An Account together with the document key it was read from."""

    key: str
    account: Account


@dataclass
class Session:
    """A live session as stored in the sessions collection, keyed by token.

    role, data, first_name and last_name are a snapshot of the Account taken
    at sign-in. They are NOT kept in sync with later account edits and stay
    stale until the user signs in again. Do not replace this with a join.
    """

    token: str
    email: str
    expiry: datetime
    role: str = ""
    first_name: str = ""
    last_name: str = ""
    data: dict[str, Any] = field(default_factory=dict)
    ip: str = ""

    def data_as(self, model: type[_M]) -> _M:
        """Decode the snapshot payload into ``model``. Raises AuthError(DECODE_ERROR)."""
        return _decode_payload(self.data, model)

    def to_document(self) -> dict[str, Any]:
        # Fixed microsecond precision keeps lexical order == time order,
        # which the store relies on for find_before().
        return {
            "email": self.email,
            "expiryDate": self.expiry.isoformat(timespec="microseconds"),
            "firstName": self.first_name,
            "lastName": self.last_name,
            "role": self.role,
            "data": self.data,
            "ip": self.ip,
        }

    @classmethod
    def from_document(cls, token: str, doc: dict[str, Any]) -> Session:
        try:
            expiry = datetime.fromisoformat(doc["expiryDate"])
        except (KeyError, TypeError, ValueError) as exc:
            raise AuthError(ErrorKind.DECODE_ERROR, "session record has no valid expiryDate", exc) from exc
        data = doc.get("data") or {}
        if not isinstance(data, dict):
            raise AuthError(ErrorKind.DECODE_ERROR, "session data field is not an object")
        return cls(
            token=token,
            email=doc.get("email", ""),
            expiry=expiry,
            role=doc.get("role", ""),
            first_name=doc.get("firstName", ""),
            last_name=doc.get("lastName", ""),
            data=data,
            ip=doc.get("ip", ""),
        )


@dataclass
class Cookie:
    """Session cookie handed back to the HTTP layer.

    http_only and same_site are fixed by contract. secure follows the
    SECURE_COOKIES setting and should be on behind TLS.
    """

    name: str
    value: str
    expires: datetime
    http_only: bool = True
    same_site: str = "strict"
    secure: bool = False
