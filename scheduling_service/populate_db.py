from datetime import datetime, time, timedelta

from sqlalchemy.orm import Session

from scheduling_service import recurrence
from scheduling_service.clock import utcnow
from scheduling_service.models import Base, ClassOccurrence, Instructor, Member, Membership, new_id


def populate(db: Session, today: datetime | None = None) -> None:
    today = datetime.combine((today or utcnow()).date(), time.min)

    instructors = [
        Instructor(id="instructor-1", name="Jan Nowak", email="jan.nowak@example.com"),
        Instructor(id="instructor-2", name="Krzysztof Stefan", email="krzysztof.stefan@example.com"),
    ]

    members = [
        Member(id="member-1", name="Jan Kowalski", email="jan.kowalski@example.com"),
        Member(id="member-2", name="Anna Nowak", email="anna.nowak@example.com"),
        Member(id="member-3", name="Piotr Zielinski", email="piotr.zielinski@example.com"),
        Member(id="member-4", name="Kasia Kwiatkowska", email="kasia.kwiatkowska@example.com"),
    ]

    memberships = [
        Membership(member_id="member-1", status="active", expires_at=today + timedelta(days=30)),
        Membership(member_id="member-2", status="paid", expires_at=today + timedelta(days=75)),
        Membership(member_id="member-3", status="active", expires_at=today + timedelta(days=265)),
        Membership(member_id="member-4", status="inactive", expires_at=today - timedelta(days=10)),
    ]

    yoga_start = today + timedelta(days=1, hours=18)
    descriptor = recurrence.descriptor_for(yoga_start, ["MO", "WE"], 8)
    series_id = new_id()
    yoga = [
        ClassOccurrence(
            name="Yoga",
            category="YOGA",
            instructor_id="instructor-1",
            start_time=start,
            end_time=end,
            max_capacity=2,
            recurrence_rule=descriptor.to_rule(),
            series_id=series_id,
        )
        for start, end in recurrence.expand(descriptor, yoga_start, yoga_start + timedelta(hours=1))
    ]

    crossfit = ClassOccurrence(
        name="Crossfit",
        category="HIIT",
        instructor_id="instructor-2",
        start_time=today + timedelta(days=2, hours=7),
        end_time=today + timedelta(days=2, hours=8),
        max_capacity=1,
    )

    db.add_all(instructors)
    db.add_all(members)
    db.add_all(memberships)
    db.add_all(yoga)
    db.add(crossfit)
    db.commit()


if __name__ == "__main__":
    from scheduling_service.database import SessionLocal, engine

    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)

    with SessionLocal() as db:
        populate(db)
