from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from booking_engine.infrastructure.db.models import Base, Event, EventInventory, Venue
from booking_engine.infrastructure.db.session import engine, get_db_session


def _dt(days_from_now: int, hour: int, minute: int) -> datetime:
    now = datetime.now(timezone.utc)
    target = now + timedelta(days=days_from_now)
    return target.replace(hour=hour, minute=minute, second=0, microsecond=0)


def seed_venues(db) -> dict[str, Venue]:
    venue_defs = [
        {"name": "Nelum Pokuna Theatre", "capacity": 1200},
        {"name": "Lotus Tower Rooftop", "capacity": 10},
    ]

    venues = {}
    for item in venue_defs:
        venue = db.execute(
            select(Venue).where(Venue.name == item["name"])
        ).scalar_one_or_none()
        if venue:
            venue.capacity = item["capacity"]
        else:
            venue = Venue(name=item["name"], capacity=item["capacity"])
            db.add(venue)
            db.flush()
        venues[venue.name] = venue
    return venues


def seed_events(db, venues: dict[str, Venue]) -> None:
    event_defs = [
        {
            "title": "Symphony Under the Stars",
            "venue": "Nelum Pokuna Theatre",
            "ticket_price": 250000,
            "date_time": _dt(days_from_now=10, hour=19, minute=30),
        },
        {
            "title": "Rooftop Jazz Session",
            "venue": "Lotus Tower Rooftop",
            "ticket_price": 120000,
            "date_time": _dt(days_from_now=3, hour=20, minute=0),
        },
    ]

    for item in event_defs:
        event = db.execute(
            select(Event).where(Event.title == item["title"])
        ).scalar_one_or_none()
        if event:
            event.venue_id = venues[item["venue"]].id
            event.ticket_price = item["ticket_price"]
            event.date_time = item["date_time"]
            continue

        event = Event(
            organizer_id="organizer-demo",
            venue_id=venues[item["venue"]].id,
            title=item["title"],
            ticket_price=item["ticket_price"],
            date_time=item["date_time"],
        )
        db.add(event)
        db.flush()
        db.add(EventInventory(event_id=event.id, held_seats=0, sold_seats=0))


def main() -> None:
    Base.metadata.create_all(bind=engine)
    with get_db_session() as db:
        venues = seed_venues(db)
        seed_events(db, venues)
    print("Seed complete: two venues and two events added.")


if __name__ == "__main__":
    main()
