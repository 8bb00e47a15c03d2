"""
Role-based capabilities.

Every permission check in the app goes through ``has_capability`` over the
caller's role set.
"""

import logging
from typing import Dict, FrozenSet, Iterable, List

from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from depthcaster.models.user import RoleEnum, UserRole
from depthcaster.services.cache import curator_cache, feed_cache

logger = logging.getLogger(__name__)

CURATE = "curate"
ADMINISTER = "administer"
MANAGE_ADMINS = "manage_admins"
PLUS = "plus"
TEST = "test"

CAPABILITIES: Dict[str, FrozenSet[str]] = {
    CURATE: frozenset({RoleEnum.CURATOR.value}),
    ADMINISTER: frozenset({RoleEnum.ADMIN.value, RoleEnum.SUPERADMIN.value}),
    MANAGE_ADMINS: frozenset({RoleEnum.SUPERADMIN.value}),
    PLUS: frozenset({RoleEnum.PLUS.value}),
    TEST: frozenset({RoleEnum.TESTER.value}),
}

# Display order for role listings
ROLE_PRIORITY = {
    RoleEnum.SUPERADMIN.value: 0,
    RoleEnum.ADMIN.value: 1,
    RoleEnum.CURATOR.value: 2,
}
ADMIN_ROLES = frozenset({RoleEnum.ADMIN.value, RoleEnum.SUPERADMIN.value})
VALID_ROLES = frozenset(role.value for role in RoleEnum)

CURATOR_CACHE_KEY = "curator-role-users"


def has_capability(roles: Iterable[str], capability: str) -> bool:
    allowed = CAPABILITIES.get(capability)
    if allowed is None:
        raise ValueError(f"Unknown capability: {capability}")
    return any(role in allowed for role in roles)


def capability_flags(roles: Iterable[str]) -> Dict[str, bool]:
    roles = list(roles)
    return {capability: has_capability(roles, capability) for capability in CAPABILITIES}


def role_priority(roles: Iterable[str]) -> int:
    return min((ROLE_PRIORITY.get(role, 3) for role in roles), default=3)


async def get_user_roles(db: AsyncSession, fid: int) -> List[str]:
    result = await db.execute(select(UserRole.role).where(UserRole.user_fid == fid))
    return sorted(result.scalars().all())


async def require_capability(
    db: AsyncSession, fid: int, capability: str, detail: str = "Insufficient permissions"
) -> List[str]:
    """Return the caller's roles or raise 403."""
    roles = await get_user_roles(db, fid)
    if not has_capability(roles, capability):
        logger.info(f"FID {fid} denied {capability} (roles: {roles or 'none'})")
        raise HTTPException(status_code=403, detail=detail)
    return roles


async def curator_fids(db: AsyncSession) -> List[int]:
    """FIDs of every user holding a curator role, memoized briefly."""
    cached = curator_cache.get(CURATOR_CACHE_KEY)
    if cached is not None:
        return cached

    result = await db.execute(
        select(UserRole.user_fid)
        .where(UserRole.role.in_(CAPABILITIES[CURATE]))
        .distinct()
    )
    fids = sorted(result.scalars().all())
    curator_cache.set(CURATOR_CACHE_KEY, fids)
    return fids


def invalidate_role_caches() -> None:
    curator_cache.clear()
    feed_cache.clear()
