# customs_app/main.py
import os
import json
import hmac
import base64
import hashlib
import logging
from datetime import datetime, timezone
from flask import Flask, request, jsonify
from dotenv import load_dotenv

from .config_loader import load_automation_config, is_development
from .common.declaration_data_structures import ErrorCode, PipelineStep
from .common.automation_result import (
    build_failure_result,
    describe_exception,
    http_status_for,
)
from .validation.form_validator import validate_declaration
from .orchestrator.progress import ProgressChannel, logging_subscriber
from .orchestrator.declaration_orchestrator import run_declaration_automation, options_from_settings

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(module)s - %(message)s')

# --- Configuration ---
API_VERSION = '1.0.0'
SERVICE_NAME = 'Indonesian Customs Automation API'
SIGNATURE_HEADER = 'x-square-signature'


def _result_response(result):
    return jsonify(result.to_dict()), http_status_for(result)


def _signature_for(body: bytes, secret: str) -> str:
    digest = hmac.new(secret.encode('utf-8'), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode('ascii')


# --- App Initialization ---
def create_app(test_config=None):
    app = Flask(__name__, instance_relative_config=True)
    project_root = os.path.dirname(app.instance_path) # Get project root (/path/to/repo)

    # --- Load Environment Variables ---
    dotenv_path = os.path.join(project_root, '.env')
    if os.path.exists(dotenv_path):
        load_dotenv(dotenv_path)
        print(f"Loaded .env file from {dotenv_path}")
    else:
        print(f".env file not found at {dotenv_path}. Relying on environment variables.")

    # Re-read so values from .env take effect
    settings = load_automation_config()

    # --- App Configuration ---
    app.config.from_mapping(
        APP_ENV=settings['app_env'],
        CUSTOMS_FORM_URL=settings['form_url'],
        CUSTOMS_FALLBACK_URL=settings['fallback_url'],
        AUTOMATION_TIMEOUT_MS=settings['timeout_ms'],
        AUTOMATION_RETRIES=settings['retries'],
        AUTOMATION_HEADLESS=settings['headless'],
        CHROMEDRIVER_PATH=settings['webdriver_path'],
        SQUARE_WEBHOOK_SIGNATURE_KEY=settings['webhook_signature_key'],
    )

    if test_config:
        app.config.from_mapping(test_config)

    print(f"Customs automation environment: {app.config['APP_ENV']} (portal: {app.config['CUSTOMS_FORM_URL']})")

    def automation_settings():
        """Settings dict for the orchestrator, taken from the (possibly overridden) app config."""
        return {
            'app_env': app.config['APP_ENV'],
            'form_url': app.config['CUSTOMS_FORM_URL'],
            'fallback_url': app.config['CUSTOMS_FALLBACK_URL'],
            'timeout_ms': app.config['AUTOMATION_TIMEOUT_MS'],
            'retries': app.config['AUTOMATION_RETRIES'],
            'headless': app.config['AUTOMATION_HEADLESS'],
            'webdriver_path': app.config['CHROMEDRIVER_PATH'],
        }

    # --- Routes ---
    @app.route('/api/submit-customs', methods=['GET'])
    def customs_health_check():
        return jsonify({
            "status": "ready",
            "message": f"{SERVICE_NAME} is ready",
            "version": API_VERSION,
            "endpoints": {
                "submit": "POST /api/submit-customs",
            },
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    @app.route('/api/submit-customs', methods=['POST'])
    def submit_customs():
        settings = automation_settings()
        try:
            raw_body = request.get_data(as_text=True)
            try:
                body = json.loads(raw_body)
            except json.JSONDecodeError:
                logging.info("API: Rejected submission with malformed JSON body.")
                return _result_response(build_failure_result(
                    ErrorCode.INVALID_JSON, "Request body is not valid JSON"))

            form_data = body.get('formData') if isinstance(body, dict) else None
            if not form_data:
                return _result_response(build_failure_result(
                    ErrorCode.MISSING_FORM_DATA, "Request body must include formData"))

            logging.info(f"API: Customs submission received (passport ending {str(form_data.get('passportNumber', ''))[-4:] if isinstance(form_data, dict) else '?'}).")

            validation = validate_declaration(form_data)
            if not validation.valid:
                logging.info(f"API: Submission rejected, missing fields: {validation.missing_fields}")
                return _result_response(build_failure_result(
                    ErrorCode.INVALID_FORM_DATA,
                    "Form data is incomplete or invalid",
                    step=PipelineStep.VALIDATION,
                    details={"missingFields": validation.missing_fields},
                ))

            request_options = body.get('options') if isinstance(body.get('options'), dict) else None
            options = options_from_settings(settings, request_options)

            progress = ProgressChannel()
            progress.subscribe(logging_subscriber("API"))

            result = run_declaration_automation(form_data, options=options, settings=settings,
                                                progress_channel=progress)
            logging.info(f"API: Customs submission finished (success={result.success}).")
            return _result_response(result)

        except Exception as e:
            logging.exception("API: Unexpected error while handling customs submission")
            return _result_response(build_failure_result(
                ErrorCode.INTERNAL_SERVER_ERROR,
                "An unexpected server error occurred. Please complete the declaration manually.",
                details=describe_exception(e, is_development(settings)),
                fallback_url=settings['fallback_url'],
            ))

    @app.route('/api/square-webhook', methods=['POST'])
    def square_webhook():
        secret = app.config.get('SQUARE_WEBHOOK_SIGNATURE_KEY')
        if not secret:
            logging.error("Webhook: SQUARE_WEBHOOK_SIGNATURE_KEY is not configured.")
            return jsonify({"error": "Webhook secret not configured"}), 500

        signature = request.headers.get(SIGNATURE_HEADER)
        if not signature:
            return jsonify({"error": "Missing signature"}), 401

        raw_body = request.get_data()
        if not hmac.compare_digest(_signature_for(raw_body, secret).encode('ascii'), signature.encode('utf-8')):
            logging.warning("Webhook: Signature mismatch; event rejected.")
            return jsonify({"error": "Invalid signature"}), 401

        try:
            event = json.loads(raw_body)
        except (json.JSONDecodeError, UnicodeDecodeError):
            return jsonify({"error": "Invalid JSON payload"}), 400

        event_type = event.get('type') if isinstance(event, dict) else None
        if event_type == 'payment.created':
            payment = ((event.get('data') or {}).get('object') or {}).get('payment') or {}
            logging.info(f"Webhook: Payment created: {payment.get('id')} ({payment.get('status')})")
        else:
            logging.info(f"Webhook: Ignoring event type {event_type!r}.")

        return jsonify({"received": True})

    return app
