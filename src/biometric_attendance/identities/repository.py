from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol, Sequence, Tuple

from ..core.enums import BiometricMethod
from .model import BiometricProfile, CredentialTemplate, FaceTemplate, Identity


@dataclass(frozen=True)
class IdentityFilter:
    """Bộ lọc danh sách identity; None nghĩa là không lọc theo trường đó."""

    search: Optional[str] = None
    group_name: Optional[str] = None
    is_active: Optional[bool] = None
    method: Optional[BiometricMethod] = None


class IdentityRepository(Protocol):
    """Giao diện repository cho Identity và mẫu sinh trắc học.

    Lưu ý (DIP): tầng service phụ thuộc vào interface này, không phụ thuộc trực tiếp DB cụ thể.
    """

    def get_by_id(self, identity_id: str) -> Optional[Identity]:
        raise NotImplementedError

    def find_by_email_or_phone(
        self, *, email: Optional[str] = None, phone: Optional[str] = None
    ) -> Optional[Identity]:
        raise NotImplementedError

    def create_profile(
        self,
        identity: Identity,
        face: Optional[FaceTemplate] = None,
        credential: Optional[CredentialTemplate] = None,
    ) -> None:
        """Store the identity and its templates in one transaction.

        Raises ValidationError on a duplicate id, email or credential; nothing is written then.
        """

        raise NotImplementedError

    def update_identity(self, identity: Identity) -> bool:
        """Overwrite name, email, phone and group. Returns False for an unknown id."""

        raise NotImplementedError

    def set_active(self, identity_id: str, *, is_active: bool) -> bool:
        raise NotImplementedError

    def list_active(self) -> Sequence[Identity]:
        raise NotImplementedError

    def list_identities(
        self, filters: IdentityFilter, *, limit: int, offset: int = 0
    ) -> Tuple[Sequence[Identity], int]:
        """One page, newest enrollment first, and the total matching count."""

        raise NotImplementedError

    def get_profile(self, identity_id: str) -> Optional[BiometricProfile]:
        """Identity with whatever templates it has, active or not."""

        raise NotImplementedError

    def save_face_template(self, template: FaceTemplate) -> None:
        raise NotImplementedError

    def list_face_templates(self) -> Sequence[FaceTemplate]:
        """Face templates of active identities only."""

        raise NotImplementedError

    def save_credential(self, template: CredentialTemplate) -> None:
        raise NotImplementedError

    def get_credential(self, credential_id: str) -> Optional[CredentialTemplate]:
        """Credential of an active identity, or None."""

        raise NotImplementedError

    def advance_counter(self, credential_id: str, new_counter: int) -> bool:
        """Atomically set the counter to ``new_counter`` if it is strictly greater.

        Returns False when the stored counter did not advance.
        """

        raise NotImplementedError
