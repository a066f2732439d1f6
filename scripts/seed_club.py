"""
Seed script for local development.

Creates:
- One member per role
- A few committees, one of them inactive
- Committee role assignments for the delegating officers
- Events in several lifecycle states

If SESSION_SECRET is set, prints a short-lived session token for each member
so the API can be exercised with curl.

Usage:
    uv run python -m scripts.seed_club
"""
import asyncio
from datetime import timedelta

import jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.database.base import utcnow
from app.core.database.engine import get_db, init_db
from app.features.committees.models import Committee, RoleAssignment
from app.features.events.models import Event, EventStatus
from app.features.members.models import Member
from app.features.permissions.catalog import ALL_ROLES, Role
from app.features.permissions.invariants import verify_all_invariants
from app.utils import get_logger


log = get_logger(__name__)


DEFAULT_COMMITTEES = [
    # (id, name, description, is_active)
    ("hiking", "Hiking", "Trail outings and day hikes", True),
    ("finance", "Finance", "Budget and treasury", True),
    ("social", "Social", "Socials and mixers", True),
    ("archive", "Archive", "Retired committee", False),
]

# role -> committees in which that officer holds an open assignment
DEFAULT_ASSIGNMENTS = {
    Role.VP_ACTIVITIES: ["hiking", "social"],
    Role.VP_COMMUNICATIONS: ["social"],
    Role.PRESIDENT: ["hiking", "finance", "social"],
    Role.EVENT_CHAIR: ["hiking"],
}


def _email(role: Role) -> str:
    return f"{role.value}@club.org"


async def seed_members(db: AsyncSession) -> dict[Role, Member]:
    """Create one active member per role."""
    members: dict[Role, Member] = {}
    for role in ALL_ROLES:
        result = await db.execute(select(Member).where(Member.email == _email(role)))
        existing = result.scalar_one_or_none()
        if existing:
            log.debug(f"Member for '{role.value}' already exists, skipping")
            members[role] = existing
            continue

        member = Member(
            email=_email(role),
            name=role.value.replace("-", " ").title(),
            global_role=role.value,
        )
        db.add(member)
        members[role] = member
        log.info(f"Created member: {member.email}")

    await db.commit()
    for member in members.values():
        await db.refresh(member)
    return members


async def seed_committees(db: AsyncSession, members: dict[Role, Member]):
    """Create committees and open role assignments."""
    for committee_id, name, description, is_active in DEFAULT_COMMITTEES:
        if await db.get(Committee, committee_id):
            log.debug(f"Committee '{committee_id}' already exists, skipping")
            continue
        db.add(Committee(id=committee_id, name=name, description=description, is_active=is_active))
        log.info(f"Created committee: {name}")
    await db.commit()

    admin = members[Role.ADMIN]
    for role, committee_ids in DEFAULT_ASSIGNMENTS.items():
        member = members[role]
        for committee_id in committee_ids:
            result = await db.execute(
                select(RoleAssignment).where(
                    RoleAssignment.member_id == member.id,
                    RoleAssignment.committee_id == committee_id,
                    RoleAssignment.end_date.is_(None),
                )
            )
            if result.scalar_one_or_none():
                continue
            db.add(
                RoleAssignment(
                    member_id=member.id,
                    committee_id=committee_id,
                    role=role.value,
                    start_date=utcnow(),
                    assigned_by_id=admin.id,
                )
            )
            log.info(f"Assigned {role.value} in {committee_id}")
    await db.commit()


async def seed_events(db: AsyncSession, members: dict[Role, Member]):
    """Create one event per interesting lifecycle state."""
    result = await db.execute(select(Event.id).limit(1))
    if result.first():
        log.debug("Events already exist, skipping")
        return

    chair = members[Role.EVENT_CHAIR]
    now = utcnow()
    for offset, status in enumerate([
        EventStatus.DRAFT,
        EventStatus.PENDING_APPROVAL,
        EventStatus.APPROVED,
        EventStatus.PUBLISHED,
        EventStatus.COMPLETED,
    ]):
        start = now + timedelta(days=7 * (offset - 1))
        db.add(
            Event(
                title=f"{status.value.replace('_', ' ').title()} hike",
                status=status.value,
                chair_id=chair.id,
                committee_id="hiking",
                start_time=start,
                end_time=start + timedelta(hours=4),
            )
        )
    await db.commit()
    log.info("Created sample events")


def print_tokens(members: dict[Role, Member]):
    if not config.SESSION_SECRET:
        log.info("SESSION_SECRET not set; skipping development tokens")
        return
    expires = utcnow() + timedelta(hours=8)
    for role, member in members.items():
        token = jwt.encode(
            {"memberId": member.id, "exp": expires},
            config.SESSION_SECRET,
            algorithm=config.SESSION_ALGORITHM,
        )
        log.info(f"  {role.value:<18} {token}")


async def main():
    """Main function to seed development data."""
    log.info("Starting club seeding...")
    verify_all_invariants()

    log.info("Initializing database tables...")
    await init_db()

    async for db in get_db():
        try:
            members = await seed_members(db)
            await seed_committees(db, members)
            await seed_events(db, members)

            log.info("Club seeding completed successfully!")
            log.info("")
            log.info("Development session tokens:")
            print_tokens(members)

        except Exception as e:
            log.error(f"Error seeding club data: {e}", exc_info=True)
            await db.rollback()
            raise

        break  # Only use first session


if __name__ == "__main__":
    asyncio.run(main())
