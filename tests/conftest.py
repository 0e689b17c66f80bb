import copy
import pytest
from customs_app.main import create_app

WEBHOOK_TEST_SECRET = "test_webhook_signature_key"

VALID_RECORD = {
    "passportNumber": "32018323",
    "fullPassportName": "Jane Traveler",
    "nationality": "AU",
    "dateOfBirth": "1990-05-17",
    "gender": "FEMALE",
    "passportExpiryDate": "2030-01-01",
    "mobileNumber": "+61400000000",
    "email": "jane@example.com",
    "arrivalDate": "2025-08-13",
    "departureDate": "2025-08-27",
    "modeOfTransport": "AIR",
    "purposeOfTravel": "HOLIDAY",
    "residenceType": "HOTEL",
    "addressInIndonesia": "Jl. Sunset Road 88, Kuta",
    "portOfArrival": "DPS",
    "typeOfAirTransport": "COMMERCIAL FLIGHT",
    "flightName": "GARUDA INDONESIA",
    "flightNumber": "GA123",
    "hasGoodsToDeclarate": False,
    "hasTechnologyDevices": False,
    "hasSymptoms": False,
    "hasQuarantineItems": False,
    "countriesVisited": ["AUSTRALIA"],
    "baggageCount": 2,
    "consentAccurate": True,
    "familyMembers": [],
    "declaredGoods": [],
}


@pytest.fixture(scope='session')
def app():
    """Create and configure a new app instance for each test session."""
    flask_app = create_app({
        'TESTING': True,
        'APP_ENV': 'test',
        'CUSTOMS_FORM_URL': 'https://portal.test/',
        'CUSTOMS_FALLBACK_URL': 'https://portal.test/manual',
        'AUTOMATION_TIMEOUT_MS': 45000,
        'AUTOMATION_RETRIES': 3,
        'AUTOMATION_HEADLESS': True,
        'SQUARE_WEBHOOK_SIGNATURE_KEY': WEBHOOK_TEST_SECRET,
    })
    yield flask_app


@pytest.fixture
def client(app):
    """A test client for the app."""
    return app.test_client()


@pytest.fixture
def valid_record():
    """A complete AIR declaration that passes validation and triggers no redirect."""
    return copy.deepcopy(VALID_RECORD)


@pytest.fixture
def webhook_secret(app):
    return app.config['SQUARE_WEBHOOK_SIGNATURE_KEY']
