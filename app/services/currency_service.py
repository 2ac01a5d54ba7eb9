"""Currency conversion helpers."""
from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Dict, Tuple

import requests
from flask import current_app

logger = logging.getLogger(__name__)

DEFAULT_EXCHANGE_API_URL = "https://api.exchangerate-api.com/v4/latest/{base}"
CENT = Decimal("0.01")


def fetch_exchange_rates(base_currency: str) -> Dict[str, float]:
    """Fetch exchange rates for the given base currency."""
    url = current_app.config.get("EXCHANGE_API_URL", DEFAULT_EXCHANGE_API_URL)
    try:
        response = requests.get(url.format(base=base_currency.upper()), timeout=10)
        response.raise_for_status()
        payload = response.json()
    except (requests.RequestException, ValueError) as exc:
        logger.warning("Exchange rate lookup for %s failed: %s", base_currency, exc)
        return {}

    return payload.get("rates", {})


def convert_currency(
    amount: Decimal | float, source_currency: str, target_currency: str
) -> Tuple[Decimal, Decimal]:
    """Convert an amount between currencies; returns ``(converted_amount, rate)``.

    A missing rate falls back to 1 so the expense can still be submitted.
    """
    amount = Decimal(str(amount))
    if source_currency.upper() == target_currency.upper():
        return amount.quantize(CENT), Decimal("1")

    rates = fetch_exchange_rates(source_currency)
    rate = rates.get(target_currency.upper())
    try:
        rate = Decimal(str(rate)) if rate else None
    except InvalidOperation:
        rate = None
    if not rate:
        logger.warning(
            "No %s->%s rate available; keeping the submitted amount", source_currency, target_currency
        )
        return amount.quantize(CENT), Decimal("1")

    return (rate * amount).quantize(CENT), rate
