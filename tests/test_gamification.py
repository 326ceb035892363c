from datetime import date, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from gamification import RECORDER_THRESHOLD, GamificationService
from models import Family, Transaction, TransactionType, User, UserRole


def _seed(session: Session) -> tuple[int, User, User]:
    family = Family(name="Lima")
    session.add(family)
    session.flush()
    ana = User(
        family_id=family.id,
        name="Ana",
        email="ana@example.com",
        password_hash="x",
        role=UserRole.admin,
    )
    bia = User(family_id=family.id, name="Bia", email="bia@example.com", password_hash="x")
    session.add_all([ana, bia])
    session.commit()
    return family.id, ana, bia


def test_award_points_accumulates() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        family_id, ana, _ = _seed(session)
        service = GamificationService(session, family_id)
        assert service.award_points(ana.id, "REGISTER_EXPENSE") == 10
        assert service.award_points(ana.id, "CATEGORIZE") == 5
        session.commit()
        assert session.get(User, ana.id).points == 15

        with pytest.raises(ValueError):
            service.award_points(ana.id, "UNKNOWN")


def test_streak_increments_and_resets() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        family_id, ana, _ = _seed(session)
        service = GamificationService(session, family_id)
        start = date(2024, 3, 1)

        assert service.update_streak(ana.id, start) == 1
        assert service.update_streak(ana.id, start) == 1
        assert service.update_streak(ana.id, start + timedelta(days=1)) == 2
        assert service.update_streak(ana.id, start + timedelta(days=2)) == 3
        assert service.update_streak(ana.id, start + timedelta(days=5)) == 1


def test_consistent_medal_after_seven_day_streak() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        family_id, ana, _ = _seed(session)
        service = GamificationService(session, family_id)
        start = date(2024, 3, 1)
        for offset in range(7):
            service.update_streak(ana.id, start + timedelta(days=offset))

        assert service.check_and_award_medals(ana.id) == ["CONSISTENT"]
        assert service.check_and_award_medals(ana.id) == []


def test_recorder_medal_after_fifty_transactions() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        family_id, ana, _ = _seed(session)
        service = GamificationService(session, family_id)
        session.add_all(
            [
                Transaction(
                    family_id=family_id,
                    user_id=ana.id,
                    amount_cents=100,
                    description=f"Gasto {i}",
                    date=date(2024, 3, 1),
                    type=TransactionType.expense,
                )
                for i in range(RECORDER_THRESHOLD - 1)
            ]
        )
        session.flush()
        assert service.check_and_award_medals(ana.id) == []

        session.add(
            Transaction(
                family_id=family_id,
                user_id=ana.id,
                amount_cents=100,
                description="Gasto final",
                date=date(2024, 3, 2),
                type=TransactionType.expense,
            )
        )
        session.flush()
        assert service.check_and_award_medals(ana.id) == ["RECORDER"]


def test_overview_ranks_family_by_points() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        family_id, ana, bia = _seed(session)
        service = GamificationService(session, family_id)
        service.award_points(bia.id, "MEET_GOAL")
        service.award_points(ana.id, "DAILY_LOGIN")
        session.commit()

        overview = service.overview(ana.id)

        assert [m["name"] for m in overview["ranking"]] == ["Bia", "Ana"]
        assert overview["user_points"] == 5
        assert {m["type"] for m in overview["medals"]} == {
            "ECONOMIST",
            "CONSISTENT",
            "MASTER",
            "RECORDER",
            "SAVER",
        }
        assert not any(m["earned"] for m in overview["medals"])


def test_users_from_other_families_are_hidden() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _, ana, _ = _seed(session)
        stranger = Family(name="Outra")
        session.add(stranger)
        session.commit()
        with pytest.raises(ValueError):
            GamificationService(session, stranger.id).award_points(ana.id, "DAILY_LOGIN")
