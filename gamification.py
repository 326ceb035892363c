import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from models import Achievement, Transaction, TransactionType, User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PointAction:
    action: str
    points: int


@dataclass(frozen=True)
class Medal:
    type: str
    name: str
    icon: str
    description: str


POINT_ACTIONS: dict[str, PointAction] = {
    "REGISTER_EXPENSE": PointAction("Registrar gasto", 10),
    "REGISTER_INCOME": PointAction("Registrar receita", 10),
    "MEET_GOAL": PointAction("Cumprir meta", 20),
    "DAILY_LOGIN": PointAction("Login diário", 5),
    "CATEGORIZE": PointAction("Categorizar gasto", 5),
    "BUDGET_WITHIN": PointAction("Manter orçamento", 15),
}

MEDALS: dict[str, Medal] = {
    "ECONOMIST": Medal(
        "ECONOMIST", "Economista", "🏆", "Ficou dentro do orçamento o mês todo"
    ),
    "CONSISTENT": Medal(
        "CONSISTENT", "Consistente", "🔥", "Manteve uma sequência de 7 dias registrando"
    ),
    "MASTER": Medal("MASTER", "Mestre Financeiro", "👑", "Cumpriu todas as metas mensais"),
    "RECORDER": Medal("RECORDER", "Registrador", "📝", "Registrou mais de 50 transações"),
    "SAVER": Medal("SAVER", "Poupador", "💎", "Poupou mais de 30% da renda"),
}

RECORDER_THRESHOLD = 50
CONSISTENT_STREAK = 7


def registration_action(txn_type: TransactionType) -> str:
    if txn_type == TransactionType.income:
        return "REGISTER_INCOME"
    return "REGISTER_EXPENSE"


class GamificationService:
    def __init__(self, session: Session, family_id: int) -> None:
        self.session = session
        self.family_id = family_id

    def _user(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if not user or user.family_id != self.family_id:
            raise ValueError("User not found")
        return user

    def award_points(self, user_id: int, action: str) -> int:
        if action not in POINT_ACTIONS:
            raise ValueError(f"Unknown point action '{action}'")
        points = POINT_ACTIONS[action].points
        user = self._user(user_id)
        user.points = (user.points or 0) + points
        self.session.flush()
        logger.info(f"points_awarded: user_id={user_id} action={action} points={points}")
        return points

    def check_and_award_medals(self, user_id: int) -> list[str]:
        user = self._user(user_id)
        existing = {a.type for a in user.achievements}
        awarded: list[str] = []

        if "RECORDER" not in existing:
            count = self.session.execute(
                select(func.count(Transaction.id)).where(Transaction.user_id == user_id)
            ).scalar_one()
            if count >= RECORDER_THRESHOLD:
                awarded.append("RECORDER")

        if "CONSISTENT" not in existing and (user.streak or 0) >= CONSISTENT_STREAK:
            awarded.append("CONSISTENT")

        for medal_type in awarded:
            medal = MEDALS[medal_type]
            self.session.add(
                Achievement(
                    user_id=user_id, type=medal.type, name=medal.name, icon=medal.icon
                )
            )
        if awarded:
            self.session.flush()
            self.session.refresh(user)
            logger.info(f"medals_awarded: user_id={user_id} medals={awarded}")
        return awarded

    def update_streak(self, user_id: int, today: date) -> int:
        user = self._user(user_id)
        if user.last_login_date == today:
            streak = user.streak or 1
        elif user.last_login_date == today - timedelta(days=1):
            streak = (user.streak or 0) + 1
        else:
            streak = 1
        user.streak = streak
        user.last_login_date = today
        self.session.flush()
        return streak

    def family_ranking(self) -> list[User]:
        stmt = (
            select(User)
            .options(selectinload(User.achievements))
            .where(User.family_id == self.family_id)
            .order_by(User.points.desc(), User.name)
        )
        return list(self.session.scalars(stmt).all())

    def overview(self, user_id: int) -> dict[str, object]:
        user = self._user(user_id)
        earned = {a.type: a for a in user.achievements}
        medals = []
        for medal in MEDALS.values():
            achievement: Optional[Achievement] = earned.get(medal.type)
            medals.append(
                {
                    "type": medal.type,
                    "name": medal.name,
                    "icon": medal.icon,
                    "description": medal.description,
                    "earned": achievement is not None,
                    "earned_at": achievement.earned_at.isoformat() if achievement else None,
                }
            )
        return {
            "ranking": [
                {
                    "id": member.id,
                    "name": member.name,
                    "points": member.points,
                    "streak": member.streak,
                    "achievements": [a.type for a in member.achievements],
                }
                for member in self.family_ranking()
            ],
            "medals": medals,
            "user_points": user.points,
            "user_streak": user.streak,
        }
