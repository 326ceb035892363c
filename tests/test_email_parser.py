from datetime import date

import pytest

from email_parser import parse_email, suggest_category
from money import parse_brl_amount

TODAY = date(2024, 3, 20)


def test_nubank_purchase_with_date() -> None:
    content = "Compra aprovada de R$ 1.234,56 em IFOOD *RESTAURANTE em 05/03/2024"
    results = parse_email(content, today=TODAY)

    best = results[0]
    assert best.amount_cents == 123456
    assert best.establishment == "IFOOD *RESTAURANTE"
    assert best.date == date(2024, 3, 5)
    assert best.confidence == 0.9
    assert [r.confidence for r in results] == [0.9, 0.6]


def test_purchase_inside_multiline_body_defaults_to_today() -> None:
    content = "Olá, Maria\nCompra aprovada de R$ 89,90 em NETFLIX.COM\nObrigado!"
    best = parse_email(content, today=TODAY)[0]
    assert best.amount_cents == 8990
    assert best.establishment == "NETFLIX.COM"
    assert best.date == TODAY


def test_debit_notice_uses_current_year() -> None:
    results = parse_email("Débito de R$ 50,00 PADARIA REAL 12/03", today=TODAY)
    assert len(results) == 1
    assert results[0].amount_cents == 5000
    assert results[0].establishment == "PADARIA REAL"
    assert results[0].date == date(2024, 3, 12)
    assert results[0].confidence == 0.8


def test_generic_layout_truncates_establishment() -> None:
    long_name = "LOJA " + "X" * 80
    [result] = parse_email(f"Pagamento de R$ 10,00 para {long_name}", today=TODAY)
    assert result.amount_cents == 1000
    assert len(result.establishment) == 50
    assert result.date == TODAY


def test_unrecognized_content_yields_nothing() -> None:
    assert parse_email("Seu extrato mensal está disponível.", today=TODAY) == []


@pytest.mark.parametrize(
    ("raw", "cents"),
    [
        ("R$ 1.234,56", 123456),
        ("1.234", 123400),
        ("12.5", 1250),
        ("0,99", 99),
        ("10", 1000),
    ],
)
def test_parse_brl_amount(raw: str, cents: int) -> None:
    assert parse_brl_amount(raw) == cents


def test_parse_brl_amount_rejects_garbage() -> None:
    with pytest.raises(ValueError):
        parse_brl_amount("abc")
    with pytest.raises(ValueError):
        parse_brl_amount("-5,00")


def test_suggest_category_uses_keywords() -> None:
    assert suggest_category("Drogaria São Paulo").category == "Saúde"
    assert suggest_category("Spotify Premium").category == "Lazer"
    assert suggest_category("XPTO") is None
    custom = suggest_category("Spotify Premium", {"Assinaturas": ["spotify"]})
    assert custom.category == "Assinaturas"
