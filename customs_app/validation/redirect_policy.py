# customs_app/validation/redirect_policy.py
from typing import Any, Callable, List, Mapping, Tuple

from customs_app.common.declaration_data_structures import DeclarationRecord, RedirectDecision

GOVERNMENT_FLIGHT = "GOVERNMENT FLIGHT"

REASON_GOVERNMENT_FLIGHT = "Government flight selected"
REASON_GOODS_TO_DECLARE = "Goods to declare"
REASON_HEALTH_SYMPTOMS = "Health symptoms reported"


def _is_government_flight(record: Mapping[str, Any]) -> bool:
    transport_type = record.get("typeOfAirTransport")
    return isinstance(transport_type, str) and transport_type.strip().upper() == GOVERNMENT_FLIGHT


def _declares_goods(record: Mapping[str, Any]) -> bool:
    return record.get("hasGoodsToDeclarate") is True


def _reports_symptoms(record: Mapping[str, Any]) -> bool:
    return record.get("hasSymptoms") is True


# Evaluated in order; the first matching rule decides.
REDIRECT_RULES: List[Tuple[Callable[[Mapping[str, Any]], bool], str]] = [
    (_is_government_flight, REASON_GOVERNMENT_FLIGHT),
    (_declares_goods, REASON_GOODS_TO_DECLARE),
    (_reports_symptoms, REASON_HEALTH_SYMPTOMS),
]


def should_redirect(record: DeclarationRecord) -> RedirectDecision:
    """Decides whether a declaration must be completed manually by the traveler."""
    for predicate, reason in REDIRECT_RULES:
        if predicate(record):
            return RedirectDecision(should_redirect=True, reason=reason)
    return RedirectDecision(should_redirect=False)
