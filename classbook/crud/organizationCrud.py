"""
CRUD operations for organizations and their booking settings.
"""
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from classbook.models import Organization, OrganizationSettings


async def create_organization(
    db: AsyncSession,
    name: str,
    allow_waitlist: bool = True,
    settings: Optional[Dict[str, Any]] = None,
    commit: bool = True
) -> Organization:
    """Create an organization together with its settings row"""
    organization = Organization(name=name)
    db.add(organization)
    await db.flush()

    db.add(OrganizationSettings(
        organization_id=organization.id,
        allow_waitlist=allow_waitlist,
        settings=settings or {},
    ))

    if commit:
        await db.commit()
        await db.refresh(organization)
    else:
        await db.flush()

    return organization


async def get_organization_settings(
    db: AsyncSession,
    organization_id: int
) -> Optional[OrganizationSettings]:
    result = await db.execute(
        select(OrganizationSettings).where(OrganizationSettings.organization_id == organization_id)
    )
    return result.scalar_one_or_none()


async def update_organization_settings(
    db: AsyncSession,
    organization_id: int,
    *,
    allow_waitlist: Optional[bool] = None,
    settings: Optional[Dict[str, Any]] = None,
    commit: bool = True
) -> OrganizationSettings:
    row = await get_organization_settings(db, organization_id)
    if row is None:
        raise ValueError(f"Organization {organization_id} has no settings")

    if allow_waitlist is not None:
        row.allow_waitlist = allow_waitlist
    if settings is not None:
        # Reassign so the JSON column is flagged dirty
        row.settings = {**(row.settings or {}), **settings}

    if commit:
        await db.commit()
    return row


async def list_organization_ids(db: AsyncSession) -> List[int]:
    result = await db.execute(select(Organization.id).order_by(Organization.id))
    return [row[0] for row in result.all()]
