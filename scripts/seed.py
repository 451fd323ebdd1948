"""Seed the database with club facilities and test members.

Run with: python -m scripts.seed
Creates guest rooms, halls, lawns, the photography studio and a few members.
"""

import asyncio

from sqlalchemy import select

from clubhouse.core.database import async_session_factory, engine
from clubhouse.models import Base, Member, MemberStatus, Resource, ResourceKind

# Rates are in paisa (PKR minor units)
ROOM_TYPES = [
    {"category": "Standard", "units": [101, 102, 103, 104, 105, 106], "member_rate": 800000, "guest_rate": 1200000},
    {"category": "Deluxe", "units": [201, 202, 203, 204], "member_rate": 1200000, "guest_rate": 1800000},
    {"category": "Suite", "units": [301, 302], "member_rate": 2000000, "guest_rate": 3000000},
]

HALLS = [
    {"name": "Banquet Hall", "capacity_min": 100, "capacity_max": 600, "member_rate": 25000000, "guest_rate": 35000000},
    {"name": "Committee Room", "capacity_min": 10, "capacity_max": 40, "member_rate": 3000000, "guest_rate": 4500000},
]

LAWNS = [
    {"name": "Front Lawn", "category": "Large", "capacity_min": 200, "capacity_max": 1000,
     "member_rate": 30000000, "guest_rate": 42000000},
    {"name": "Pool Side Lawn", "category": "Small", "capacity_min": 50, "capacity_max": 250,
     "member_rate": 12000000, "guest_rate": 18000000},
]

STUDIOS = [
    {"name": "Photography Studio", "member_rate": 1500000, "guest_rate": 2500000},
]

MEMBERS = [
    {"membership_no": "M-1001", "name": "Test Member", "email": "member@example.com"},
    {"membership_no": "M-1002", "name": "Second Member", "email": "second@example.com"},
    {"membership_no": "M-1099", "name": "Lapsed Member", "email": "lapsed@example.com", "status": MemberStatus.INACTIVE},
]


async def seed():
    # Create tables (in dev; production uses migrations)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with async_session_factory() as db:
        # Check if already seeded
        result = await db.execute(select(Resource).limit(1))
        if result.scalar_one_or_none():
            print("Database already seeded - skipping.")
            return

        total = 0
        for room_type in ROOM_TYPES:
            for number in room_type["units"]:
                db.add(Resource(
                    name=f"Room {number}",
                    kind=ResourceKind.ROOM,
                    category=room_type["category"],
                    unit_number=number,
                    capacity_min=1,
                    capacity_max=3,
                    member_rate=room_type["member_rate"],
                    guest_rate=room_type["guest_rate"],
                ))
                total += 1

        for kind, venues in ((ResourceKind.HALL, HALLS), (ResourceKind.LAWN, LAWNS), (ResourceKind.STUDIO, STUDIOS)):
            for i, venue in enumerate(venues, start=1):
                db.add(Resource(kind=kind, unit_number=i, **venue))
                total += 1

        for member_data in MEMBERS:
            db.add(Member(**member_data))

        await db.commit()

        print(f"Seeded: {total} resources")
        print(f"  {sum(len(t['units']) for t in ROOM_TYPES)} rooms in {len(ROOM_TYPES)} types")
        print(f"  {len(HALLS)} halls, {len(LAWNS)} lawns, {len(STUDIOS)} studio")
        print(f"  {len(MEMBERS)} members: {', '.join(m['membership_no'] for m in MEMBERS)}")


if __name__ == "__main__":
    asyncio.run(seed())
