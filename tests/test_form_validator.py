import pytest

from customs_app.validation.form_validator import (
    DECLARED_GOODS_DEFECT,
    PRESENCE_ONLY_FIELDS,
    UNCONDITIONAL_REQUIRED_FIELDS,
    validate_declaration,
)


def test_complete_record_is_valid(valid_record):
    result = validate_declaration(valid_record)
    assert result.valid is True
    assert result.missing_fields == []
    assert result.to_dict() == {"valid": True}


def test_reports_every_missing_field_not_just_the_first(valid_record):
    for key in ("passportNumber", "email", "portOfArrival"):
        del valid_record[key]
    result = validate_declaration(valid_record)
    assert result.valid is False
    assert result.missing_fields == ["passportNumber", "email", "portOfArrival"]


@pytest.mark.parametrize("blank", [None, "", "   "])
def test_blank_strings_count_as_missing(valid_record, blank):
    valid_record["fullPassportName"] = blank
    assert validate_declaration(valid_record).missing_fields == ["fullPassportName"]


@pytest.mark.parametrize("date_of_birth", ["17 May", "May 17, 1990", "1990/05/17", "17-05"])
def test_unreadable_date_of_birth_is_reported(valid_record, date_of_birth):
    valid_record["dateOfBirth"] = date_of_birth
    assert validate_declaration(valid_record).missing_fields == ["dateOfBirth"]


@pytest.mark.parametrize("date_of_birth", ["1990-05-17", "1990-05-17T00:00:00.000Z", "17/05/1990", "17.5.1990"])
def test_date_of_birth_formats_accepted(valid_record, date_of_birth):
    valid_record["dateOfBirth"] = date_of_birth
    assert validate_declaration(valid_record).valid is True


def test_missing_date_of_birth_reported_once(valid_record):
    del valid_record["dateOfBirth"]
    assert validate_declaration(valid_record).missing_fields == ["dateOfBirth"]


def test_gender_only_needs_to_be_present(valid_record):
    valid_record["gender"] = None
    assert validate_declaration(valid_record).valid is True

    del valid_record["gender"]
    assert validate_declaration(valid_record).missing_fields == ["gender"]


def test_sea_requires_vessel_fields(valid_record):
    valid_record["modeOfTransport"] = "SEA"
    valid_record["typeOfVessel"] = "FERRY"
    result = validate_declaration(valid_record)
    assert result.missing_fields == ["vesselName"]


def test_air_requires_flight_fields(valid_record):
    del valid_record["flightName"]
    del valid_record["flightNumber"]
    result = validate_declaration(valid_record)
    assert result.missing_fields == ["flightName", "flightNumber"]


def test_declaration_flags_must_be_booleans(valid_record):
    valid_record["hasGoodsToDeclarate"] = None
    del valid_record["hasTechnologyDevices"]
    result = validate_declaration(valid_record)
    assert result.missing_fields == ["hasGoodsToDeclarate", "hasTechnologyDevices"]


def test_consent_and_countries_visited(valid_record):
    valid_record["consentAccurate"] = False
    valid_record["countriesVisited"] = []
    result = validate_declaration(valid_record)
    assert result.missing_fields == ["consentAccurate", "countriesVisited"]


def test_countries_visited_must_be_a_collection(valid_record):
    valid_record["countriesVisited"] = "AUSTRALIA"
    assert validate_declaration(valid_record).missing_fields == ["countriesVisited"]


def test_family_members_must_be_a_collection(valid_record):
    valid_record["familyMembers"] = None
    assert validate_declaration(valid_record).missing_fields == ["familyMembers"]


def test_family_member_defects_are_indexed(valid_record):
    valid_record["familyMembers"] = [
        {"passportNumber": "X1", "name": "Kid Traveler", "nationality": "AU"},
        {"passportNumber": "", "fullPassportName": "Other", "nationality": "AU"},
        "not a member",
    ]
    result = validate_declaration(valid_record)
    assert result.missing_fields == ["familyMembers[1].passportNumber", "familyMembers[2]"]


def test_goods_declared_without_goods_list(valid_record):
    valid_record["hasGoodsToDeclarate"] = True
    del valid_record["declaredGoods"]
    result = validate_declaration(valid_record)
    assert result.valid is False
    assert result.missing_fields == [DECLARED_GOODS_DEFECT]
    assert result.to_dict() == {"valid": False, "missingFields": [DECLARED_GOODS_DEFECT]}


def test_declared_goods_ignored_when_nothing_to_declare(valid_record):
    valid_record["declaredGoods"] = None
    assert validate_declaration(valid_record).valid is True


def test_non_mapping_record_reports_all_required_fields():
    result = validate_declaration(["not", "a", "record"])
    assert result.valid is False
    assert result.missing_fields == UNCONDITIONAL_REQUIRED_FIELDS + PRESENCE_ONLY_FIELDS


def test_validation_does_not_mutate_record(valid_record):
    snapshot = dict(valid_record)
    validate_declaration(valid_record)
    assert valid_record == snapshot
