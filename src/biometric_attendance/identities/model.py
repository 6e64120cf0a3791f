from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple


@dataclass(frozen=True)
class Identity:
    """Thực thể miền (domain): người được chấm công.

    Lưu ý: Đây là đối tượng dữ liệu thuần (không chứa code truy cập DB).
    """

    identity_id: str
    name: str
    email: str
    phone: str
    group_name: str
    enrolled_at: datetime
    is_active: bool = True

    @property
    def display_name(self) -> str:
        return f"{self.name} ({self.identity_id})"


@dataclass(frozen=True)
class FaceTemplate:
    identity_id: str
    embedding: Tuple[float, ...]


@dataclass(frozen=True)
class CredentialTemplate:
    identity_id: str
    credential_id: str
    public_key: str
    counter: int = 0


@dataclass(frozen=True)
class BiometricProfile:
    """0..2 templates held by one identity."""

    identity: Identity
    face: Optional[FaceTemplate] = None
    credential: Optional[CredentialTemplate] = None

    @property
    def methods(self) -> Tuple[str, ...]:
        found = []
        if self.face is not None:
            found.append("face")
        if self.credential is not None:
            found.append("fingerprint")
        return tuple(found)
