from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Sequence, Tuple

import mysql.connector

from ..biometrics.assertion import hash_credential_id
from ..core.enums import BiometricMethod
from ..core.exceptions import MalformedTemplate, ValidationError
from ..database.connection import DatabaseConnection
from ..database.mysql_base import db_cursor, fetchall, fetchone, is_duplicate_key
from .model import BiometricProfile, CredentialTemplate, FaceTemplate, Identity
from .repository import IdentityFilter, IdentityRepository

_IDENTITY_COLUMNS = "identity_id, name, email, phone, group_name, is_active, enrolled_at"

_METHOD_CONDITIONS = {
    BiometricMethod.FACE: "EXISTS (SELECT 1 FROM face_templates ft WHERE ft.identity_id = i.identity_id)",
    BiometricMethod.FINGERPRINT: "EXISTS (SELECT 1 FROM credentials c WHERE c.identity_id = i.identity_id)",
}


def _to_identity(r: Dict[str, Any]) -> Identity:
    return Identity(
        identity_id=r["identity_id"],
        name=r["name"],
        email=r["email"],
        phone=r["phone"],
        group_name=r["group_name"],
        enrolled_at=r["enrolled_at"],
        is_active=bool(r["is_active"]),
    )


def _to_face_template(r: Dict[str, Any]) -> FaceTemplate:
    try:
        values = json.loads(r["embedding"])
        embedding = tuple(float(v) for v in values)
    except (TypeError, ValueError) as e:
        raise MalformedTemplate(f"Face template of {r['identity_id']} cannot be decoded") from e
    if not embedding or len(embedding) != int(r["dimension"]):
        raise MalformedTemplate(f"Face template of {r['identity_id']} has wrong dimension")
    return FaceTemplate(identity_id=r["identity_id"], embedding=embedding)


def _to_credential(r: Dict[str, Any]) -> CredentialTemplate:
    return CredentialTemplate(
        identity_id=r["identity_id"],
        credential_id=r["credential_id"],
        public_key=r["public_key"],
        counter=int(r["sign_counter"]),
    )


def _filter_clause(filters: IdentityFilter) -> Tuple[str, List[Any]]:
    conditions: List[str] = []
    params: List[Any] = []
    if filters.search:
        conditions.append("(i.name LIKE %s OR i.identity_id LIKE %s OR i.email LIKE %s)")
        like = f"%{filters.search}%"
        params.extend([like, like, like])
    if filters.group_name:
        conditions.append("i.group_name=%s")
        params.append(filters.group_name)
    if filters.is_active is not None:
        conditions.append("i.is_active=%s")
        params.append(int(filters.is_active))
    if filters.method is not None:
        conditions.append(_METHOD_CONDITIONS[filters.method])
    where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
    return where, params


def _insert_identity(cur, identity: Identity) -> None:
    cur.execute(
        """
        INSERT INTO identities(identity_id, name, email, phone, group_name, is_active, enrolled_at)
        VALUES(%s,%s,%s,%s,%s,%s,%s)
        """,
        (
            identity.identity_id,
            identity.name,
            identity.email,
            identity.phone,
            identity.group_name,
            int(identity.is_active),
            identity.enrolled_at,
        ),
    )


def _upsert_face(cur, template: FaceTemplate) -> None:
    cur.execute(
        """
        INSERT INTO face_templates(identity_id, dimension, embedding)
        VALUES(%s,%s,%s)
        ON DUPLICATE KEY UPDATE dimension=VALUES(dimension), embedding=VALUES(embedding)
        """,
        (template.identity_id, len(template.embedding), json.dumps(list(template.embedding))),
    )


def _insert_credential(cur, template: CredentialTemplate) -> None:
    cur.execute(
        """
        INSERT INTO credentials(credential_hash, credential_id, identity_id, public_key, sign_counter)
        VALUES(%s,%s,%s,%s,%s)
        """,
        (
            hash_credential_id(template.credential_id),
            template.credential_id,
            template.identity_id,
            template.public_key,
            int(template.counter),
        ),
    )


class MySQLIdentityRepository(IdentityRepository):
    def __init__(self, conn_factory: DatabaseConnection):
        self._conn_factory = conn_factory

    def get_by_id(self, identity_id: str) -> Optional[Identity]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"SELECT {_IDENTITY_COLUMNS} FROM identities WHERE identity_id=%s",
                (identity_id,),
            )
            r = fetchone(cur)
            return _to_identity(r) if r else None

    def find_by_email_or_phone(
        self, *, email: Optional[str] = None, phone: Optional[str] = None
    ) -> Optional[Identity]:
        conditions, params = [], []
        if email:
            conditions.append("email=%s")
            params.append(email.lower())
        if phone:
            conditions.append("phone=%s")
            params.append(phone)
        if not conditions:
            return None
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"SELECT {_IDENTITY_COLUMNS} FROM identities WHERE {' OR '.join(conditions)} LIMIT 1",
                tuple(params),
            )
            r = fetchone(cur)
            return _to_identity(r) if r else None

    def create_profile(
        self,
        identity: Identity,
        face: Optional[FaceTemplate] = None,
        credential: Optional[CredentialTemplate] = None,
    ) -> None:
        try:
            with db_cursor(self._conn_factory) as (_, cur):
                _insert_identity(cur, identity)
                if face is not None:
                    _upsert_face(cur, face)
                if credential is not None:
                    _insert_credential(cur, credential)
        except mysql.connector.Error as e:
            if is_duplicate_key(e):
                raise ValidationError("Identity, email or fingerprint credential already registered") from e
            raise

    def update_identity(self, identity: Identity) -> bool:
        try:
            with db_cursor(self._conn_factory) as (_, cur):
                cur.execute(
                    """
                    UPDATE identities
                    SET name=%s, email=%s, phone=%s, group_name=%s
                    WHERE identity_id=%s
                    """,
                    (identity.name, identity.email, identity.phone, identity.group_name, identity.identity_id),
                )
                return cur.rowcount > 0
        except mysql.connector.Error as e:
            if is_duplicate_key(e):
                raise ValidationError("Email already in use by another identity") from e
            raise

    def set_active(self, identity_id: str, *, is_active: bool) -> bool:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                "UPDATE identities SET is_active=%s WHERE identity_id=%s",
                (int(is_active), identity_id),
            )
            return cur.rowcount > 0

    def list_active(self) -> Sequence[Identity]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"SELECT {_IDENTITY_COLUMNS} FROM identities WHERE is_active=1 ORDER BY identity_id"
            )
            return [_to_identity(r) for r in fetchall(cur)]

    def list_identities(
        self, filters: IdentityFilter, *, limit: int, offset: int = 0
    ) -> Tuple[Sequence[Identity], int]:
        where, params = _filter_clause(filters)
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(f"SELECT COUNT(*) AS total FROM identities i {where}", tuple(params))
            r = fetchone(cur)
            total = int(r["total"]) if r else 0
            cur.execute(
                f"""
                SELECT {_IDENTITY_COLUMNS} FROM identities i {where}
                ORDER BY i.enrolled_at DESC, i.identity_id
                LIMIT %s OFFSET %s
                """,
                tuple(params) + (int(limit), int(offset)),
            )
            return [_to_identity(r) for r in fetchall(cur)], total

    def get_profile(self, identity_id: str) -> Optional[BiometricProfile]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"SELECT {_IDENTITY_COLUMNS} FROM identities WHERE identity_id=%s",
                (identity_id,),
            )
            r = fetchone(cur)
            if not r:
                return None
            identity = _to_identity(r)

            cur.execute(
                "SELECT identity_id, dimension, embedding FROM face_templates WHERE identity_id=%s",
                (identity_id,),
            )
            face_row = fetchone(cur)
            cur.execute(
                """
                SELECT identity_id, credential_id, public_key, sign_counter
                FROM credentials WHERE identity_id=%s
                """,
                (identity_id,),
            )
            credential_row = fetchone(cur)
            return BiometricProfile(
                identity=identity,
                face=_to_face_template(face_row) if face_row else None,
                credential=_to_credential(credential_row) if credential_row else None,
            )

    def save_face_template(self, template: FaceTemplate) -> None:
        with db_cursor(self._conn_factory) as (_, cur):
            _upsert_face(cur, template)

    def list_face_templates(self) -> Sequence[FaceTemplate]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                SELECT ft.identity_id, ft.dimension, ft.embedding
                FROM face_templates ft
                JOIN identities i ON i.identity_id = ft.identity_id
                WHERE i.is_active=1
                ORDER BY ft.identity_id
                """
            )
            return [_to_face_template(r) for r in fetchall(cur)]

    def save_credential(self, template: CredentialTemplate) -> None:
        try:
            with db_cursor(self._conn_factory) as (_, cur):
                _insert_credential(cur, template)
        except mysql.connector.Error as e:
            if is_duplicate_key(e):
                raise ValidationError("Fingerprint credential already registered") from e
            raise

    def get_credential(self, credential_id: str) -> Optional[CredentialTemplate]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                SELECT c.identity_id, c.credential_id, c.public_key, c.sign_counter
                FROM credentials c
                JOIN identities i ON i.identity_id = c.identity_id
                WHERE c.credential_hash=%s AND i.is_active=1
                """,
                (hash_credential_id(credential_id),),
            )
            r = fetchone(cur)
            return _to_credential(r) if r else None

    def advance_counter(self, credential_id: str, new_counter: int) -> bool:
        # Single conditional UPDATE: compare and advance in one statement.
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                UPDATE credentials
                SET sign_counter=%s
                WHERE credential_hash=%s AND sign_counter < %s
                """,
                (int(new_counter), hash_credential_id(credential_id), int(new_counter)),
            )
            return cur.rowcount > 0
