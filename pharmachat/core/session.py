from typing import Any, Dict, Optional


class OwnerSession:
    """
    Explicit session context for the signed-in pharmacy owner.

    Built from the auth service login payload ``{"owner": {...}, "pharmacy": {...}}``
    and handed to every component that needs the owner or pharmacy id.
    """

    def __init__(self) -> None:
        self._owner: Optional[Dict[str, Any]] = None
        self._pharmacy: Optional[Dict[str, Any]] = None

    @classmethod
    def from_login(cls, payload: Dict[str, Any]) -> "OwnerSession":
        session = cls()
        session.load(payload)
        return session

    def load(self, payload: Dict[str, Any]) -> None:
        owner = payload.get("owner") or {}
        if not owner.get("id"):
            raise ValueError("Login payload has no owner id")
        self._owner = dict(owner)
        self._pharmacy = dict(payload.get("pharmacy") or {}) or None

    def clear(self) -> None:
        self._owner = None
        self._pharmacy = None

    @property
    def is_authenticated(self) -> bool:
        return self._owner is not None

    @property
    def owner_id(self) -> str:
        if self._owner is None:
            raise RuntimeError("No owner session loaded")
        return str(self._owner["id"])

    @property
    def owner_name(self) -> str:
        if self._owner is None:
            raise RuntimeError("No owner session loaded")
        return self._owner.get("name") or ""

    @property
    def pharmacy_id(self) -> Optional[str]:
        if self._pharmacy is None:
            return None
        pharmacy_id = self._pharmacy.get("id")
        return str(pharmacy_id) if pharmacy_id is not None else None
