"""Identity id generation.

Format: ``{PREFIX}-{GROUP_CODE}-{8 random A-Z0-9}``.
"""
from __future__ import annotations

import re
import secrets
import string
from typing import Optional

from ..core.constants import DEFAULT_IDENTITY_ID_PREFIX
from ..core.exceptions import ValidationError

_ALPHABET = string.ascii_uppercase + string.digits
_RANDOM_LENGTH = 8
_MAX_GROUP_CODE = 8
_ID_RE = re.compile(r"^[A-Z0-9]+-[A-Z0-9]+-[A-Z0-9]{8}$")


def group_code(group_name: str) -> str:
    code = re.sub(r"[^A-Z0-9]", "", group_name.upper())[:_MAX_GROUP_CODE]
    if not code:
        raise ValidationError(f"Invalid group: {group_name}")
    return code


def generate_identity_id(group_name: str, *, prefix: str = DEFAULT_IDENTITY_ID_PREFIX) -> str:
    random_part = "".join(secrets.choice(_ALPHABET) for _ in range(_RANDOM_LENGTH))
    return f"{prefix.upper()}-{group_code(group_name)}-{random_part}"


def validate_identity_id(identity_id: str) -> bool:
    return bool(_ID_RE.match(identity_id or ""))


def extract_group_code(identity_id: str) -> Optional[str]:
    parts = identity_id.split("-")
    if len(parts) != 3:
        return None
    return parts[1]
