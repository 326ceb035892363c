import logging
import re
from datetime import date
from typing import Callable, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session, joinedload

from insights import UNCATEGORIZED
from models import Category, ChatMessage, Transaction, TransactionStatus, TransactionType
from money import format_amount
from periods import local_today, month_period

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 50
TOP_CATEGORIES = 5

MONTH_NAMES = [
    "janeiro",
    "fevereiro",
    "março",
    "abril",
    "maio",
    "junho",
    "julho",
    "agosto",
    "setembro",
    "outubro",
    "novembro",
    "dezembro",
]

GREETINGS = ("oi", "olá", "ola", "bom dia", "boa tarde", "boa noite", "hey", "hi")
HELP_PATTERN = re.compile(r"ajuda|help|o que voc[eê] faz|comandos")

GREETING_REPLY = (
    "👋 Olá! Sou o assistente financeiro da sua família. Pergunte-me sobre gastos, "
    "saldo, resumo do mês, ou qual a maior despesa!"
)
HELP_REPLY = (
    "🤖 **O que posso fazer:**\n\n"
    '• "Quanto gastamos com [categoria] este mês?"\n'
    '• "Qual a maior despesa?"\n'
    '• "Saldo atual"\n'
    '• "Quantas transações este mês?"\n'
    '• "Resumo do mês"'
)
FALLBACK_REPLY = (
    "🤔 Desculpe, não entendi sua pergunta. Tente perguntar:\n\n"
    '• "Quanto gastamos com alimentação?"\n'
    '• "Qual a maior despesa?"\n'
    '• "Saldo geral"\n'
    '• "Resumo mensal"'
)


def normalize(content: str) -> str:
    return re.sub(r"[?!.]", "", content.strip().lower())


class ChatEngine:
    """Answers a fixed set of Portuguese questions about the current month.

    Patterns are tried in order against the normalized message and the first
    match wins. Unmatched messages fall through to greeting, help and a
    generic hint.
    """

    def __init__(self, session: Session, family_id: int, today: Optional[date] = None) -> None:
        self.session = session
        self.family_id = family_id
        self.period = month_period(today or local_today())
        self.patterns: list[tuple[re.Pattern, Callable[[re.Match], str]]] = [
            (
                re.compile(
                    r"quanto\s+gast(amos|ei|ou)\s+(com|em)\s+(.+?)"
                    r"(\s+este\s+m[eê]s|\s+esse\s+m[eê]s|\s+no\s+m[eê]s)?$"
                ),
                self._spent_on_category,
            ),
            (re.compile(r"qual\s+(a\s+)?maior\s+despesa"), self._largest_expense),
            (re.compile(r"saldo\s+(atual|geral|total|da\s+fam[ií]lia)"), self._balance),
            (
                re.compile(r"quantas?\s+transa[çc][ãõo]es?\s+(este|esse|no)\s+m[eê]s"),
                self._transaction_count,
            ),
            (re.compile(r"resumo\s+(do\s+m[eê]s|mensal|financeiro)"), self._monthly_summary),
        ]

    def _confirmed(self, txn_type: Optional[TransactionType] = None):
        stmt = select(Transaction).where(
            Transaction.family_id == self.family_id,
            Transaction.status == TransactionStatus.confirmed,
            Transaction.date.between(self.period.start, self.period.end),
        )
        if txn_type is not None:
            stmt = stmt.where(Transaction.type == txn_type)
        return stmt

    def _totals(self) -> tuple[int, int]:
        transactions = self.session.scalars(self._confirmed()).all()
        income = sum(t.amount_cents for t in transactions if t.type == TransactionType.income)
        expenses = sum(
            t.amount_cents for t in transactions if t.type == TransactionType.expense
        )
        return income, expenses

    def _spent_on_category(self, match: re.Match) -> str:
        category = match.group(3).strip()
        transactions = self.session.scalars(
            self._confirmed(TransactionType.expense)
            .join(Category, Transaction.category_id == Category.id)
            .where(func.lower(Category.name).contains(category))
        ).all()
        total = sum(t.amount_cents for t in transactions)
        if total <= 0:
            return f'Não encontrei gastos com "{category}" este mês.'
        return (
            f"💰 Este mês, vocês gastaram **R$ {format_amount(total)}** com {category}. "
            f"Foram {len(transactions)} transação(ões)."
        )

    def _largest_expense(self, match: re.Match) -> str:
        txn = self.session.scalars(
            self._confirmed(TransactionType.expense)
            .options(joinedload(Transaction.category), joinedload(Transaction.user))
            .order_by(Transaction.amount_cents.desc(), Transaction.id)
            .limit(1)
        ).first()
        if not txn:
            return "Não há despesas registradas este mês."
        category = txn.category.name if txn.category else "Sem categoria"
        author = txn.user.name if txn.user else "alguém da família"
        return (
            f"🔝 A maior despesa do mês é **{txn.description}** no valor de "
            f"**R$ {format_amount(txn.amount_cents)}** ({category}), registrada por {author}."
        )

    def _balance(self, match: re.Match) -> str:
        income, expenses = self._totals()
        return (
            "📊 **Saldo do mês:**\n\n"
            f"• Receitas: R$ {format_amount(income)}\n"
            f"• Despesas: R$ {format_amount(expenses)}\n"
            f"• **Saldo: R$ {format_amount(income - expenses)}**"
        )

    def _transaction_count(self, match: re.Match) -> str:
        count = self.session.execute(
            select(func.count(Transaction.id)).where(
                Transaction.family_id == self.family_id,
                Transaction.date.between(self.period.start, self.period.end),
            )
        ).scalar_one()
        return f"📋 Este mês vocês têm **{count} transação(ões)** registradas."

    def _monthly_summary(self, match: re.Match) -> str:
        transactions = self.session.scalars(
            self._confirmed().options(joinedload(Transaction.category))
        ).all()
        income = sum(t.amount_cents for t in transactions if t.type == TransactionType.income)
        by_category: dict[str, int] = {}
        for txn in transactions:
            if txn.type != TransactionType.expense:
                continue
            name = txn.category.name if txn.category else UNCATEGORIZED
            by_category[name] = by_category.get(name, 0) + txn.amount_cents
        expenses = sum(by_category.values())
        top = sorted(by_category.items(), key=lambda item: item[1], reverse=True)
        lines = "\n".join(
            f"  • {name}: R$ {format_amount(total)}" for name, total in top[:TOP_CATEGORIES]
        )
        label = f"{MONTH_NAMES[self.period.start.month - 1]}/{self.period.start.year}"
        return (
            f"📊 **Resumo de {label}:**\n\n"
            f"💚 Receitas: R$ {format_amount(income)}\n"
            f"🔴 Despesas: R$ {format_amount(expenses)}\n"
            f"💰 Saldo: R$ {format_amount(income - expenses)}\n\n"
            f"🏷️ **Top categorias:**\n{lines or '  Nenhuma despesa registrada.'}"
        )

    def reply(self, content: str) -> str:
        text = normalize(content)
        for pattern, handler in self.patterns:
            match = pattern.search(text)
            if match:
                return handler(match)
        if text.startswith(GREETINGS):
            return GREETING_REPLY
        if HELP_PATTERN.search(text):
            return HELP_REPLY
        return FALLBACK_REPLY


class ChatService:
    def __init__(self, session: Session, family_id: int, user_id: int) -> None:
        self.session = session
        self.family_id = family_id
        self.user_id = user_id

    def send(self, content: str, today: Optional[date] = None) -> ChatMessage:
        response = ChatEngine(self.session, self.family_id, today).reply(content)
        message = ChatMessage(
            family_id=self.family_id,
            user_id=self.user_id,
            content=content,
            response=response,
        )
        self.session.add(message)
        self.session.commit()
        self.session.refresh(message)
        logger.info(f"chat_message: user_id={self.user_id} message_id={message.id}")
        return message

    def history(self, limit: int = HISTORY_LIMIT) -> list[ChatMessage]:
        stmt = (
            select(ChatMessage)
            .where(
                ChatMessage.family_id == self.family_id,
                ChatMessage.user_id == self.user_id,
            )
            .order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc())
            .limit(limit)
        )
        return list(reversed(self.session.scalars(stmt).all()))
