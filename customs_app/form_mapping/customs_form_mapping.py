# customs_app/form_mapping/customs_form_mapping.py
"""
Declarative description of the customs declaration portal.

Everything here is plain data: which controls exist, how to locate them, which
verb drives them and which readiness locator must be visible before the verb
completes. The orchestrator walks these tables generically; nothing in this
module touches a browser.
"""
import re
from types import MappingProxyType
from typing import Dict, Any, List, Mapping, Optional, Tuple

from customs_app.common.declaration_data_structures import (
    DeclarationRecord,
    FieldAction,
    FieldMapping,
    NavigationStep,
)

# --- Shared locators ---

DROPDOWN_PANEL = ".ant-select-dropdown:not(.ant-select-dropdown-hidden)"
DROPDOWN_ITEM = ".ant-select-item"
FORM_CONTAINER = ".ant-form, #paspor"

_LOWER = "translate(normalize-space(.), 'ABCDEFGHIJKLMNOPQRSTUVWXYZ', 'abcdefghijklmnopqrstuvwxyz')"


def _button_with_text(*words: str) -> str:
    conditions = " or ".join(f"contains({_LOWER}, '{word}')" for word in words)
    return f"//button[({conditions}) and not(@disabled)]"


# --- Field mappings (main form, in fill order) ---
# Order matters: the portal renders some sub-fields only after the preceding control is set.

MAIN_FORM_FIELDS: Tuple[FieldMapping, ...] = (
    FieldMapping("passportNumber", "#paspor", FieldAction.TYPE),
    FieldMapping("portOfArrival", "#lokasiKedatangan", FieldAction.SELECT, wait_for=DROPDOWN_PANEL),
    FieldMapping("arrivalDate", "#tanggalKedatangan", FieldAction.SELECT, wait_for=DROPDOWN_PANEL),
    FieldMapping("fullPassportName", "#nama", FieldAction.TYPE),
    FieldMapping("dateOfBirthDay", "#tanggalLahirTgl", FieldAction.SELECT, wait_for=DROPDOWN_PANEL),
    FieldMapping("dateOfBirthMonth", "#tanggalLahirBln", FieldAction.SELECT, wait_for=DROPDOWN_PANEL),
    FieldMapping("dateOfBirthYear", "#tanggalLahirThn", FieldAction.SELECT, wait_for=DROPDOWN_PANEL),
    FieldMapping("flightVesselNumber", "#nomorPengangkut", FieldAction.TYPE),
    FieldMapping("nationality", "#kodeNegara", FieldAction.SELECT, wait_for=DROPDOWN_PANEL),
    FieldMapping("numberOfLuggage", "#bagasiDibawa", FieldAction.TYPE),
    # Not rendered on every flow of the portal
    FieldMapping("addressInIndonesia", "#domisiliJalan", FieldAction.TYPE, required=False),
)

# Family rows are appended with the "Tambah" (add) button and indexed from 0.
ADD_ROW_BUTTON = ("//button[contains(@class, 'ant-btn-primary') and not(contains(@class, 'ant-btn-dangerous'))"
                  f" and contains({_LOWER}, 'tambah')]")

FAMILY_MEMBER_ROW_TEMPLATE: Tuple[FieldMapping, ...] = (
    FieldMapping("passportNumber", "#dataKeluarga_{index}_paspor", FieldAction.TYPE),
    FieldMapping("fullPassportName", "#dataKeluarga_{index}_nama", FieldAction.TYPE),
    FieldMapping("nationality", "#dataKeluarga_{index}_kodeNegara", FieldAction.SELECT, wait_for=DROPDOWN_PANEL),
)

DECLARATION_FIELDS: Tuple[FieldMapping, ...] = (
    # The goods question has no stable name; "No" is the second radio on the page.
    FieldMapping("goodsDeclarationNo", "(//input[@type='radio'])[2]", FieldAction.CHECK, find_by="xpath"),
    FieldMapping("technologyDevicesYes", "input[type='radio'][name='bringGadgets'][value='true']", FieldAction.CHECK),
    FieldMapping("technologyDevicesNo", "input[type='radio'][name='bringGadgets'][value='false']", FieldAction.CHECK),
    FieldMapping("consentAccurate", "#accept", FieldAction.CHECK),
)

FIELD_MAPPINGS: Mapping[str, FieldMapping] = MappingProxyType(
    {mapping.key: mapping for mapping in MAIN_FORM_FIELDS + DECLARATION_FIELDS}
)


def family_member_row_mappings(index: int) -> Tuple[FieldMapping, ...]:
    """Concrete mappings for the family-member row at `index`."""
    return tuple(
        FieldMapping(
            key=template.key,
            locator=template.locator.format(index=index),
            action=template.action,
            wait_for=template.wait_for,
            required=template.required,
            find_by=template.find_by,
        )
        for template in FAMILY_MEMBER_ROW_TEMPLATE
    )


# --- Navigation sequence ---

# Steps before FORM_STEP are walked in order: click `locator`, then wait for `wait_for`.
# A step that is not required may find nothing to click; its `wait_for` still has to show.
NAVIGATION_SEQUENCE: Tuple[NavigationStep, ...] = (
    NavigationStep("entry", _button_with_text("next", "lanjut"), find_by="xpath", wait_for=FORM_CONTAINER,
                   required=False, description="Confirm the entry page to open the declaration form"),
    NavigationStep("main_form", FORM_CONTAINER,
                   description="Populate every field on the single-page declaration form"),
    NavigationStep("submit", _button_with_text("kirim", "submit"), find_by="xpath",
                   description="Submit the declaration"),
)

FORM_STEP = "main_form"
SUBMIT_STEP = "submit"

NAVIGATION_STEPS: Mapping[str, NavigationStep] = MappingProxyType({step.name: step for step in NAVIGATION_SEQUENCE})

# --- Outcome indicators ---

SUCCESS_INDICATOR = ".ant-modal:not(.ant-modal-hidden), #myqrcode"
ERROR_INDICATOR = (".ant-form-item-has-error, .ant-alert-error, .ant-message-error, "
                   ".ant-notification-error, .ant-form-item-explain-error")
ERROR_TEXT = ".ant-form-item-explain-error, .ant-alert-error, .ant-message-error, .ant-notification-error"
MODAL_HEADINGS = ".ant-modal-body h4"

# Tried in order; the first visible match is the confirmation artifact.
QR_IMAGE_LOCATORS: Tuple[str, ...] = (
    "#myqrcode canvas",
    "#myqrcode img",
    ".ant-qrcode canvas",
    ".ant-modal img[src*='qr']",
    "[class*='qr'] canvas",
    "[class*='qr'] img",
    "img[src*='qr']",
)

# --- Lookup tables ---

PORT_LABELS: Mapping[str, str] = MappingProxyType({
    'CGK': 'Soekarno-Hatta International Airport (CGK)',
    'DPS': 'Ngurah Rai International Airport (DPS)',
    'JOG': 'Yogyakarta International Airport (YIA)',
    'MLG': 'Abdul Rachman Saleh Airport (MLG)',
    'SOC': 'Adisumarmo International Airport (SOC)',
    'BDO': 'Husein Sastranegara International Airport (BDO)',
    'PKU': 'Sultan Syarif Kasim II International Airport (PKU)',
    'BPN': 'Sultan Aji Muhammad Sulaiman Airport (BPN)',
    'MDC': 'Sam Ratulangi International Airport (MDC)',
    'UPG': 'Sultan Hasanuddin International Airport (UPG)',
})

NATIONALITY_LABELS: Mapping[str, str] = MappingProxyType({
    'US': 'UNITED STATES',
    'GB': 'UNITED KINGDOM',
    'AU': 'AUSTRALIA',
    'SG': 'SINGAPORE',
    'MY': 'MALAYSIA',
    'TH': 'THAILAND',
    'VN': 'VIETNAM',
    'PH': 'PHILIPPINES',
    'JP': 'JAPAN',
    'KR': 'SOUTH KOREA',
    'CN': 'CHINA',
    'IN': 'INDIA',
    'DE': 'GERMANY',
    'FR': 'FRANCE',
    'NL': 'NETHERLANDS',
    'CA': 'CANADA',
    'NZ': 'NEW ZEALAND',
})

# --- Value transformations ---

_ISO_DATE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})")
_DMY_DATE = re.compile(r"^(\d{1,2})[/.-](\d{1,2})[/.-](\d{4})$")


def split_date(value: Any) -> Optional[Tuple[str, str, str]]:
    """(day, month, year) with zero padding, or None if the value is not a recognised date."""
    if not isinstance(value, str):
        return None
    text = value.strip()
    match = _ISO_DATE.match(text)
    if match:
        year, month, day = match.groups()
        return day.zfill(2), month.zfill(2), year
    match = _DMY_DATE.match(text)
    if match:
        day, month, year = match.groups()
        return day.zfill(2), month.zfill(2), year
    return None


def format_arrival_date(value: Any) -> Any:
    parts = split_date(value)
    if parts is None:
        return value
    return "-".join(parts)


def map_port_of_arrival(code: Any) -> Any:
    if not isinstance(code, str):
        return code
    return PORT_LABELS.get(code.strip().upper(), code)


def map_nationality(code: Any) -> Any:
    if not isinstance(code, str):
        return code
    return NATIONALITY_LABELS.get(code.strip().upper(), code)


def _upper(value: Any) -> Any:
    return value.strip().upper() if isinstance(value, str) else value


def _carrier_number(record: Mapping[str, Any]) -> Any:
    explicit = record.get("flightVesselNumber")
    if isinstance(explicit, str) and explicit.strip():
        return explicit
    mode = str(record.get("modeOfTransport") or "").strip().upper()
    if mode == "SEA":
        return record.get("vesselName")
    return record.get("flightNumber")


def _luggage_count(record: Mapping[str, Any]) -> Any:
    value = record.get("numberOfLuggage")
    if value is None or (isinstance(value, str) and not value.strip()):
        value = record.get("baggageCount")
    return None if value is None else str(value)


def _family_member_payload(member: Mapping[str, Any]) -> Dict[str, Any]:
    name = member.get("fullPassportName") or member.get("name")
    return {
        "passportNumber": member.get("passportNumber"),
        "fullPassportName": _upper(name),
        "nationality": map_nationality(member.get("nationality")),
    }


def to_external_payload(record: DeclarationRecord) -> Dict[str, Any]:
    """
    Converts a declaration record into the values the portal expects, keyed by
    FieldMapping.key. Unknown codes are passed through verbatim.
    """
    birth = split_date(record.get("dateOfBirth"))
    day, month, year = birth if birth else (None, None, None)

    has_devices = record.get("hasTechnologyDevices") is True
    members = record.get("familyMembers") or []

    return {
        "passportNumber": record.get("passportNumber"),
        "portOfArrival": map_port_of_arrival(record.get("portOfArrival")),
        "arrivalDate": format_arrival_date(record.get("arrivalDate")),
        "fullPassportName": _upper(record.get("fullPassportName")),
        "dateOfBirthDay": day,
        "dateOfBirthMonth": month,
        "dateOfBirthYear": year,
        "flightVesselNumber": _carrier_number(record),
        "nationality": map_nationality(record.get("nationality")),
        "numberOfLuggage": _luggage_count(record),
        "addressInIndonesia": record.get("addressInIndonesia"),
        "goodsDeclarationNo": record.get("hasGoodsToDeclarate") is not True,
        "technologyDevicesYes": has_devices,
        "technologyDevicesNo": not has_devices,
        "consentAccurate": bool(record.get("consentAccurate")),
        "familyMembers": [_family_member_payload(m) for m in members if isinstance(m, Mapping)],
    }


# --- Confirmation metadata ---

_REGISTRATION_NUMBER = re.compile(r"^[A-Za-z0-9]{6}$")
_OFFICE_MARKERS = ("KPPBC", "BEA", "CUKAI")


def parse_submission_metadata(headings: List[str]) -> Dict[str, Optional[str]]:
    """
    Reads the confirmation modal headings, e.g.
    ["MEDAN (KNO) / KUALANAMU 13-08-2025", "9NM7xW", "KPPBC TMP JUANDA"].
    """
    texts = [h.strip() for h in headings if isinstance(h, str) and h.strip()]

    registration_number = next((t for t in texts if _REGISTRATION_NUMBER.match(t)), None)
    port_info = next((t for t in texts if "(" in t and ")" in t), None)
    customs_office = next((t for t in texts if any(marker in t.upper() for marker in _OFFICE_MARKERS)), None)

    return {
        "registrationNumber": registration_number,
        "portInfo": port_info,
        "customsOffice": customs_office,
    }
