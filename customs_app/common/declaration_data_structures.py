from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional, Callable, TypedDict
from enum import Enum

# --- Input Data Structures ---
# Records arrive as JSON from the form client, so keys stay camelCase.

class FamilyMember(TypedDict, total=False):
    passportNumber: str
    fullPassportName: str
    name: str  # Older clients send "name" instead of fullPassportName
    nationality: str
    dateOfBirth: str
    countryOfBirth: str
    gender: Optional[str]
    passportExpiryDate: str
    mobileNumber: str
    email: str
    hasVisaOrKitas: Optional[bool]
    visaOrKitasNumber: str

class DeclaredGood(TypedDict, total=False):
    description: str
    quantity: str
    value: str
    currency: str

class DeclarationRecord(TypedDict, total=False):
    # Identity
    passportNumber: str
    fullPassportName: str
    nationality: str
    dateOfBirth: str
    gender: Optional[str]
    passportExpiryDate: str
    # Contact
    mobileNumber: str
    email: str
    # Trip
    arrivalDate: str
    departureDate: str
    modeOfTransport: str  # "AIR" or "SEA"
    purposeOfTravel: str
    residenceType: str
    addressInIndonesia: str
    portOfArrival: str
    placeOfArrival: str
    typeOfAirTransport: str
    flightName: str
    flightNumber: str
    flightVesselNumber: str
    vesselName: str
    typeOfVessel: str
    # Customs / health
    hasGoodsToDeclarate: bool
    hasTechnologyDevices: bool
    hasSymptoms: bool
    hasQuarantineItems: bool
    countriesVisited: List[str]
    baggageCount: int
    numberOfLuggage: str
    consentAccurate: bool
    familyMembers: List[FamilyMember]
    declaredGoods: List[DeclaredGood]

# --- Field Mapping Structures ---

class FieldAction(Enum):
    TYPE = "type"
    SELECT = "select"
    CHECK = "check"

@dataclass(frozen=True)
class FieldMapping:
    key: str          # Logical key into the external payload
    locator: str      # Opaque selector string, interpreted according to find_by
    action: FieldAction
    wait_for: Optional[str] = None  # CSS locator that must be visible before the verb completes
    required: bool = True
    find_by: str = "css"

@dataclass(frozen=True)
class NavigationStep:
    name: str
    locator: str
    find_by: str = "css"
    wait_for: Optional[str] = None
    description: str = ""
    required: bool = True  # Whether `locator` must be clickable

# --- Pipeline Vocabulary ---

class PipelineStep(Enum):
    VALIDATION = "validation"
    NAVIGATION = "navigation"
    FORM_FILL = "form_fill"
    SUBMISSION = "submission"
    QR_EXTRACTION = "qr_extraction"

class ErrorCode(Enum):
    INVALID_JSON = "INVALID_JSON"
    MISSING_FORM_DATA = "MISSING_FORM_DATA"
    INVALID_FORM_DATA = "INVALID_FORM_DATA"
    MANUAL_SUBMISSION_REQUIRED = "MANUAL_SUBMISSION_REQUIRED"
    AUTOMATION_FAILED = "AUTOMATION_FAILED"
    AUTOMATION_TIMEOUT = "AUTOMATION_TIMEOUT"
    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"

# --- Per-run Options & Progress ---

@dataclass
class ProgressUpdate:
    progress: int  # 0-100
    step: str
    message: str
    timestamp: float

ProgressCallback = Callable[[ProgressUpdate], None]

@dataclass
class AutomationOptions:
    headless: bool = True
    timeout_ms: int = 45000
    retries: int = 3
    on_progress: Optional[ProgressCallback] = None

# --- Validation / Policy Outcomes ---

@dataclass
class ValidationResult:
    valid: bool
    missing_fields: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"valid": self.valid}
        if self.missing_fields:
            result["missingFields"] = list(self.missing_fields)
        return result

@dataclass
class RedirectDecision:
    should_redirect: bool
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"shouldRedirect": self.should_redirect}
        if self.reason:
            result["reason"] = self.reason
        return result
