"""Admin router — role management and capability checks."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from depthcaster.database import get_db, upsert
from depthcaster.models.user import User, UserRole
from depthcaster.schemas.user import RoleChange
from depthcaster.services.roles import (
    ADMIN_ROLES,
    ADMINISTER,
    MANAGE_ADMINS,
    VALID_ROLES,
    capability_flags,
    get_user_roles,
    invalidate_role_caches,
    require_capability,
    role_priority,
)
from depthcaster.services.users import ensure_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


def _required_capability(role: str) -> str:
    return MANAGE_ADMINS if role in ADMIN_ROLES else ADMINISTER


@router.get("/roles")
async def list_roles(admin_fid: int, q: Optional[str] = None, db: AsyncSession = Depends(get_db)):
    """Users with their roles, superadmins first."""
    await require_capability(db, admin_fid, ADMINISTER, "Admin role required")

    stmt = select(User).options(selectinload(User.roles))
    if q and q.strip():
        term = q.strip()
        conditions = [User.username.ilike(f"%{term}%"), User.display_name.ilike(f"%{term}%")]
        if term.isdigit():
            conditions.append(User.fid == int(term))
        stmt = stmt.where(or_(*conditions))
    result = await db.execute(stmt)

    users = []
    for user in result.scalars().all():
        roles = sorted(r.role for r in user.roles)
        users.append(
            {
                "fid": user.fid,
                "username": user.username,
                "display_name": user.display_name,
                "pfp_url": user.pfp_url,
                "roles": roles,
            }
        )
    users.sort(key=lambda u: (role_priority(u["roles"]), (u["username"] or "").lower(), u["fid"]))
    return {"users": users}


@router.post("/roles")
async def grant_role(body: RoleChange, db: AsyncSession = Depends(get_db)):
    if body.role not in VALID_ROLES:
        raise HTTPException(status_code=400, detail=f"Invalid role: {body.role}")
    await require_capability(db, body.admin_fid, _required_capability(body.role), "Insufficient permissions")

    if body.role in await get_user_roles(db, body.user_fid):
        raise HTTPException(status_code=409, detail="User already has this role")

    await ensure_user(db, body.user_fid)
    stmt = upsert(db, UserRole).values(user_fid=body.user_fid, role=body.role)
    await db.execute(stmt.on_conflict_do_nothing(index_elements=["user_fid", "role"]))
    invalidate_role_caches()
    logger.info(f"FID {body.admin_fid} granted {body.role} to FID {body.user_fid}")
    return {"success": True, "roles": await get_user_roles(db, body.user_fid)}


@router.delete("/roles")
async def revoke_role(admin_fid: int, user_fid: int, role: str, db: AsyncSession = Depends(get_db)):
    if role not in VALID_ROLES:
        raise HTTPException(status_code=400, detail=f"Invalid role: {role}")
    await require_capability(db, admin_fid, _required_capability(role), "Insufficient permissions")

    result = await db.execute(
        delete(UserRole).where(UserRole.user_fid == user_fid, UserRole.role == role)
    )
    if result.rowcount == 0:
        raise HTTPException(status_code=404, detail="User does not have this role")
    invalidate_role_caches()
    logger.info(f"FID {admin_fid} revoked {role} from FID {user_fid}")
    return {"success": True, "roles": await get_user_roles(db, user_fid)}


@router.get("/check")
async def check(fid: int, db: AsyncSession = Depends(get_db)):
    roles = await get_user_roles(db, fid)
    flags = capability_flags(roles)
    return {
        "fid": fid,
        "roles": roles,
        "is_admin": flags[ADMINISTER],
        "is_superadmin": flags[MANAGE_ADMINS],
        "capabilities": flags,
    }
