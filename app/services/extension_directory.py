# app/services/extension_directory.py
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from app.models.extension import Extension


def resolve_extension(db: Session, tenant_id: int, digits: str) -> Optional[Extension]:
    """
    Map dialed digits to an active extension of the tenant.

    Exact match on the digit string: "101" and "0101" are different
    extensions.
    """
    if not digits:
        return None
    return (
        db.query(Extension)
        .filter(
            Extension.tenant_id == tenant_id,
            Extension.extension_number == digits,
            Extension.is_active.is_(True),
        )
        .first()
    )


def get_tenant_extensions(
    db: Session,
    tenant_id: int,
    extension_ids: Iterable[int],
) -> List[Extension]:
    """Active extensions of one tenant; ids of other tenants are simply absent."""
    ids = list(extension_ids)
    if not ids:
        return []
    return (
        db.query(Extension)
        .filter(
            Extension.id.in_(ids),
            Extension.tenant_id == tenant_id,
            Extension.is_active.is_(True),
        )
        .all()
    )
