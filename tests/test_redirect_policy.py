from customs_app.validation.redirect_policy import (
    REASON_GOODS_TO_DECLARE,
    REASON_GOVERNMENT_FLIGHT,
    REASON_HEALTH_SYMPTOMS,
    should_redirect,
)


def test_regular_record_is_automated(valid_record):
    decision = should_redirect(valid_record)
    assert decision.should_redirect is False
    assert decision.to_dict() == {"shouldRedirect": False}


def test_government_flight_redirects(valid_record):
    valid_record["typeOfAirTransport"] = "GOVERNMENT FLIGHT"
    decision = should_redirect(valid_record)
    assert decision.to_dict() == {"shouldRedirect": True, "reason": "Government flight selected"}


def test_government_flight_match_ignores_case_and_spacing(valid_record):
    valid_record["typeOfAirTransport"] = "  government flight "
    assert should_redirect(valid_record).reason == REASON_GOVERNMENT_FLIGHT


def test_government_flight_wins_over_other_rules(valid_record):
    valid_record.update({"typeOfAirTransport": "GOVERNMENT FLIGHT", "hasGoodsToDeclarate": True, "hasSymptoms": True})
    assert should_redirect(valid_record).reason == REASON_GOVERNMENT_FLIGHT


def test_goods_are_checked_before_symptoms(valid_record):
    valid_record.update({"hasGoodsToDeclarate": True, "hasSymptoms": True})
    assert should_redirect(valid_record).reason == REASON_GOODS_TO_DECLARE


def test_symptoms_redirect(valid_record):
    valid_record["hasSymptoms"] = True
    decision = should_redirect(valid_record)
    assert decision.should_redirect is True
    assert decision.reason == REASON_HEALTH_SYMPTOMS


def test_truthy_non_boolean_flags_do_not_redirect(valid_record):
    valid_record["hasSymptoms"] = "yes"
    assert should_redirect(valid_record).should_redirect is False
