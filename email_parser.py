import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Optional

from money import parse_brl_amount


@dataclass(frozen=True)
class ParsedEmail:
    amount_cents: int
    establishment: str
    date: date
    raw_text: str
    confidence: float


@dataclass(frozen=True)
class CategorySuggestion:
    category: str
    confidence: float


def _parse_day(value: Optional[str], today: date) -> date:
    if not value:
        return today
    if value.count("/") == 1:
        value = f"{value}/{today.year}"
    return datetime.strptime(value, "%d/%m/%Y").date()


def _nubank(match: re.Match, today: date) -> ParsedEmail:
    return ParsedEmail(
        amount_cents=parse_brl_amount(match.group(1)),
        establishment=match.group(2).strip(),
        date=_parse_day(match.group(3), today),
        raw_text=match.group(0),
        confidence=0.9,
    )


def _debit(match: re.Match, today: date) -> ParsedEmail:
    return ParsedEmail(
        amount_cents=parse_brl_amount(match.group(1)),
        establishment=match.group(2).strip(),
        date=_parse_day(match.group(3), today),
        raw_text=match.group(0),
        confidence=0.8,
    )


def _generic(match: re.Match, today: date) -> ParsedEmail:
    return ParsedEmail(
        amount_cents=parse_brl_amount(match.group(1)),
        establishment=match.group(2).strip()[:50],
        date=today,
        raw_text=match.group(0),
        confidence=0.6,
    )


# Ordered from most to least specific bank layout.
PATTERNS: list[tuple[re.Pattern, Callable[[re.Match, date], ParsedEmail]]] = [
    (
        re.compile(
            r"compra\s+(?:aprovada|realizada)\s+(?:de\s+)?R\$\s*([\d.,]+)\s+"
            r"(?:em|no|na)\s+(.+?)(?:\s+em\s+(\d{2}/\d{2}/\d{4}))?\s*$",
            re.IGNORECASE | re.MULTILINE,
        ),
        _nubank,
    ),
    (
        re.compile(
            r"d[eé]bito\s+(?:de\s+)?R\$\s*([\d.,]+)\s+(.+?)(?:\s+(\d{2}/\d{2}))?\s*$",
            re.IGNORECASE | re.MULTILINE,
        ),
        _debit,
    ),
    (
        re.compile(
            r"R\$\s*([\d.,]+)\s+(?:em|no|na|para)\s+(.+)",
            re.IGNORECASE,
        ),
        _generic,
    ),
]

CATEGORY_KEYWORDS: dict[str, list[str]] = {
    "Alimentação": [
        "restaurante",
        "ifood",
        "uber eats",
        "rappi",
        "mercado",
        "supermercado",
        "padaria",
        "lanchonete",
        "pizza",
        "burger",
    ],
    "Transporte": [
        "uber",
        "99",
        "posto",
        "combustível",
        "estacionamento",
        "pedágio",
        "metro",
        "ônibus",
    ],
    "Saúde": ["farmácia", "drogaria", "médico", "hospital", "lab", "clínica", "dentista"],
    "Educação": ["escola", "curso", "livro", "udemy", "coursera"],
    "Lazer": ["cinema", "teatro", "netflix", "spotify", "game", "bar"],
    "Moradia": ["aluguel", "condomínio", "luz", "água", "gás", "internet", "energia"],
    "Vestuário": ["roupa", "calçado", "sapato", "loja", "shopping", "renner", "zara"],
}


def parse_email(content: str, *, today: date) -> list[ParsedEmail]:
    """Return every bank layout that matches ``content``, best match first."""
    results: list[ParsedEmail] = []
    for pattern, extract in PATTERNS:
        match = pattern.search(content)
        if not match:
            continue
        try:
            results.append(extract(match, today))
        except ValueError:
            continue
    return results


def suggest_category(
    establishment: str, rules: Optional[dict[str, list[str]]] = None
) -> Optional[CategorySuggestion]:
    lower = establishment.lower()
    for category, keywords in (rules or CATEGORY_KEYWORDS).items():
        for keyword in keywords:
            if keyword and keyword.lower() in lower:
                return CategorySuggestion(category=category, confidence=0.85)
    return None
