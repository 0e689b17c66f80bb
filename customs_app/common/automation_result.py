"""
Result/Error contract returned by the declaration pipeline.

Every terminal state of a run is normalized into an AutomationResult: either a
success carrying submission details (and, when the portal delivered one, the
QR confirmation image) or a failure carrying a stable error code, a
human-readable message, the pipeline step and, where the traveler needs a next
action, the manual fallback URL.
"""
import traceback
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Any, Optional, Union

from customs_app.common.declaration_data_structures import ErrorCode, PipelineStep

UNKNOWN_SUBMISSION_ID = "UNKNOWN"

# Codes that describe a problem with the caller's request or a routing decision.
CLIENT_ERROR_CODES = {
    ErrorCode.INVALID_JSON,
    ErrorCode.MISSING_FORM_DATA,
    ErrorCode.INVALID_FORM_DATA,
    ErrorCode.MANUAL_SUBMISSION_REQUIRED,
    ErrorCode.AUTOMATION_FAILED,
    ErrorCode.AUTOMATION_TIMEOUT,
}

@dataclass
class SubmissionDetails:
    submission_id: str
    submission_time: str  # ISO 8601
    status: str
    port_info: Optional[str] = None
    customs_office: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "submissionId": self.submission_id,
            "submissionTime": self.submission_time,
            "status": self.status,
        }
        if self.port_info:
            result["portInfo"] = self.port_info
        if self.customs_office:
            result["customsOffice"] = self.customs_office
        return result

@dataclass
class QRCodeArtifact:
    image_data: str  # data URL, e.g. "data:image/png;base64,..."
    format: str = "png"

    def to_dict(self) -> Dict[str, Any]:
        return {"imageData": self.image_data, "format": self.format}

@dataclass
class AutomationError:
    code: ErrorCode
    message: str
    step: Optional[PipelineStep] = None
    details: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"code": self.code.value, "message": self.message}
        if self.step is not None:
            result["step"] = self.step.value
        if self.details is not None:
            result["details"] = self.details
        return result

@dataclass
class AutomationResult:
    success: bool
    submission_details: Optional[SubmissionDetails] = None
    qr_code: Optional[QRCodeArtifact] = None
    message: Optional[str] = None
    error: Optional[AutomationError] = None
    fallback_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"success": self.success}
        if self.success:
            if self.submission_details is not None:
                result["submissionDetails"] = self.submission_details.to_dict()
            if self.qr_code is not None:
                result["qrCode"] = self.qr_code.to_dict()
            if self.message:
                result["message"] = self.message
        else:
            if self.error is not None:
                result["error"] = self.error.to_dict()
            if self.fallback_url:
                result["fallbackUrl"] = self.fallback_url
        return result


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def build_success_result(submission_details: SubmissionDetails,
                         qr_code: Optional[QRCodeArtifact] = None,
                         message: Optional[str] = None) -> AutomationResult:
    if message is None:
        if qr_code is not None:
            message = "Customs form submitted successfully"
        else:
            message = "Customs form submitted successfully; QR code will be delivered separately"
    return AutomationResult(success=True, submission_details=submission_details,
                            qr_code=qr_code, message=message)


def build_failure_result(code: ErrorCode,
                         message: str,
                         step: Optional[Union[PipelineStep, str]] = None,
                         details: Optional[Any] = None,
                         fallback_url: Optional[str] = None) -> AutomationResult:
    if isinstance(step, str):
        step = PipelineStep(step)
    return AutomationResult(
        success=False,
        error=AutomationError(code=code, message=message, step=step, details=details),
        fallback_url=fallback_url,
    )


def describe_exception(exc: BaseException, expose_details: bool) -> Optional[Dict[str, Any]]:
    """Diagnostic payload for an exception, or None outside development contexts."""
    if not expose_details:
        return None
    return {
        "name": type(exc).__name__,
        "message": str(exc),
        "stack": "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
    }


def http_status_for(result: AutomationResult) -> int:
    if result.success:
        return 200
    if result.error is not None and result.error.code in CLIENT_ERROR_CODES:
        return 400
    return 500
