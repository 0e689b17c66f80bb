# customs_app/validation/form_validator.py
from collections.abc import Mapping
from typing import Any, List

from customs_app.common.declaration_data_structures import DeclarationRecord, ValidationResult
from customs_app.form_mapping.customs_form_mapping import split_date

# Keys that must be present and non-blank on every record, in report order.
UNCONDITIONAL_REQUIRED_FIELDS: List[str] = [
    # Identity
    "passportNumber",
    "fullPassportName",
    "nationality",
    "dateOfBirth",
    "passportExpiryDate",
    # Contact
    "mobileNumber",
    "email",
    # Trip
    "arrivalDate",
    "departureDate",
    "modeOfTransport",
    "purposeOfTravel",
    "residenceType",
    "addressInIndonesia",
    "portOfArrival",
    "baggageCount",
]

# Gender only has to be present as a key: an explicit null means "unspecified".
PRESENCE_ONLY_FIELDS: List[str] = ["gender"]

CONDITIONAL_TRANSPORT_FIELDS = {
    "AIR": ["flightName", "flightNumber"],
    "SEA": ["vesselName", "typeOfVessel"],
}

FAMILY_MEMBER_REQUIRED_FIELDS = ["passportNumber", "fullPassportName", "nationality"]

DECLARED_GOODS_DEFECT = "declaredGoods (must be array when hasGoodsToDeclarate is true)"


def is_blank(value: Any) -> bool:
    """Absent, null, or a string that is empty once whitespace is stripped."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    return False


def is_sequence(value: Any) -> bool:
    # JSON arrays decode to lists; tuples are accepted for records built in Python.
    return isinstance(value, (list, tuple))


def _family_member_defects(members) -> List[str]:
    defects = []
    for index, member in enumerate(members):
        if not isinstance(member, Mapping):
            defects.append(f"familyMembers[{index}]")
            continue
        for field_name in FAMILY_MEMBER_REQUIRED_FIELDS:
            value = member.get(field_name)
            if field_name == "fullPassportName" and is_blank(value):
                value = member.get("name")  # legacy clients
            if is_blank(value):
                defects.append(f"familyMembers[{index}].{field_name}")
    return defects


def validate_declaration(record: DeclarationRecord) -> ValidationResult:
    """
    Checks a declaration record for completeness before any automation begins.
    Every defect is collected in a single pass so the caller can report them all at once.
    """
    if not isinstance(record, Mapping):
        return ValidationResult(valid=False,
                                missing_fields=UNCONDITIONAL_REQUIRED_FIELDS + PRESENCE_ONLY_FIELDS)

    missing: List[str] = []

    for field_name in UNCONDITIONAL_REQUIRED_FIELDS:
        if is_blank(record.get(field_name)):
            missing.append(field_name)

    # The portal picks day, month and year separately, so the date must be readable.
    date_of_birth = record.get("dateOfBirth")
    if not is_blank(date_of_birth) and split_date(date_of_birth) is None:
        missing.append("dateOfBirth")

    for field_name in PRESENCE_ONLY_FIELDS:
        if field_name not in record:
            missing.append(field_name)

    mode = record.get("modeOfTransport")
    mode_key = mode.strip().upper() if isinstance(mode, str) else None
    for field_name in CONDITIONAL_TRANSPORT_FIELDS.get(mode_key, []):
        if is_blank(record.get(field_name)):
            missing.append(field_name)

    for flag in ("hasGoodsToDeclarate", "hasTechnologyDevices"):
        if not isinstance(record.get(flag), bool):
            missing.append(flag)

    if not record.get("consentAccurate"):
        missing.append("consentAccurate")

    countries = record.get("countriesVisited")
    if not is_sequence(countries) or len(countries) == 0:
        missing.append("countriesVisited")

    members = record.get("familyMembers")
    if not is_sequence(members):
        missing.append("familyMembers")
    else:
        missing.extend(_family_member_defects(members))

    if record.get("hasGoodsToDeclarate") is True and not is_sequence(record.get("declaredGoods")):
        missing.append(DECLARED_GOODS_DEFECT)

    return ValidationResult(valid=not missing, missing_fields=missing)
