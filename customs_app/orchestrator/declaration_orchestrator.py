# customs_app/orchestrator/declaration_orchestrator.py
import time
import logging
from typing import Dict, Any, List, Optional, Callable, Mapping, Tuple

from customs_app.browser_automation.selenium_form_session import SeleniumFormSession
from customs_app import config_loader
from customs_app.config_loader import DEFAULT_PORTAL_URL, is_development
from customs_app.common.declaration_data_structures import (
    AutomationOptions,
    DeclarationRecord,
    ErrorCode,
    FieldAction,
    FieldMapping,
    NavigationStep,
    PipelineStep,
)
from customs_app.common.automation_result import (
    AutomationResult,
    QRCodeArtifact,
    SubmissionDetails,
    UNKNOWN_SUBMISSION_ID,
    build_failure_result,
    build_success_result,
    describe_exception,
    utc_timestamp,
)
from customs_app.form_mapping.customs_form_mapping import (
    ADD_ROW_BUTTON,
    DECLARATION_FIELDS,
    DROPDOWN_ITEM,
    ERROR_INDICATOR,
    ERROR_TEXT,
    FORM_STEP,
    MAIN_FORM_FIELDS,
    MODAL_HEADINGS,
    NAVIGATION_SEQUENCE,
    NAVIGATION_STEPS,
    QR_IMAGE_LOCATORS,
    SUBMIT_STEP,
    SUCCESS_INDICATOR,
    family_member_row_mappings,
    parse_submission_metadata,
    to_external_payload,
)
from customs_app.orchestrator.progress import ProgressChannel, STEP_PROGRESS
from customs_app.validation.form_validator import validate_declaration
from customs_app.validation.redirect_policy import should_redirect

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(module)s - %(message)s')

# Local wait budgets in seconds, each capped by what is left of the run's overall budget.
PAGE_LOAD_WAIT = 30
FORM_READY_WAIT = 10
FIELD_WAIT = 5
READINESS_WAIT = 3
SUBMISSION_OUTCOME_WAIT = 15
QR_ARTIFACT_WAIT = 10

# Form-fill progress is spread between these two percentages.
FORM_FILL_PROGRESS_END = 80

SUBMITTED_STATUS = "submitted"


# States
class OrchestratorState:
    VALIDATION = "validation"
    NAVIGATION = "navigation"
    FORM_FILL = "form_fill"
    SUBMISSION = "submission"
    QR_EXTRACTION = "qr_extraction"
    DONE = "done"
    FAILED = "failed"

PIPELINE_STATES = (
    OrchestratorState.VALIDATION,
    OrchestratorState.NAVIGATION,
    OrchestratorState.FORM_FILL,
    OrchestratorState.SUBMISSION,
    OrchestratorState.QR_EXTRACTION,
)


class AutomationStepError(Exception):
    """A pipeline step could not be completed against the portal."""

    def __init__(self, step: str, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.step = step
        self.message = message
        self.details = details


class AutomationTimeout(AutomationStepError):
    """The run's overall time budget ran out while `step` was in progress."""


class Deadline:
    def __init__(self, timeout_ms: int, clock: Callable[[], float]):
        self._clock = clock
        self.timeout_ms = timeout_ms
        self.started_at = clock()
        self.expires_at = self.started_at + timeout_ms / 1000.0

    def remaining(self) -> float:
        return max(0.0, self.expires_at - self._clock())

    def elapsed_ms(self) -> int:
        return int((self._clock() - self.started_at) * 1000)

    def expired(self) -> bool:
        return self._clock() >= self.expires_at

    def check(self, step: str) -> None:
        if self.expired():
            raise AutomationTimeout(step, f"Automation timed out after {self.timeout_ms}ms during {step}")

    def budget(self, step: str, local_wait: float) -> float:
        """The local wait, shortened to the time left; raises AutomationTimeout when none is left."""
        self.check(step)
        return min(local_wait, self.remaining())


def _default_session_factory(webdriver_path: Optional[str]):
    def factory(headless: bool):
        return SeleniumFormSession(headless=headless, webdriver_path=webdriver_path, page_load_timeout=PAGE_LOAD_WAIT)
    return factory


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def _expected_text(mapping: FieldMapping, value: Any) -> str:
    if mapping.action == FieldAction.CHECK:
        return "true" if value else "false"
    return str(value).strip()


def _shows_value(mapping: FieldMapping, value: Any, actual: Optional[str]) -> bool:
    """Whether the value read back from a control matches what was written to it."""
    if actual is None:
        return False
    expected = _expected_text(mapping, value).casefold()
    shown = actual.strip().casefold()
    if mapping.action == FieldAction.SELECT:
        # Select items may carry a longer label than the option text that was matched
        return shown == expected or expected in shown
    return shown == expected


class DeclarationOrchestrator:
    """
    Drives one declaration through validation, navigation, form fill, submission
    and confirmation extraction, and normalizes every outcome into an AutomationResult.

    The browser session is created on entering navigation and is closed on every
    exit path. Exceptions never leave `run`.
    """

    def __init__(self,
                 options: Optional[AutomationOptions] = None,
                 form_url: str = DEFAULT_PORTAL_URL,
                 fallback_url: str = DEFAULT_PORTAL_URL,
                 expose_details: bool = False,
                 session_factory: Optional[Callable[..., Any]] = None,
                 clock: Callable[[], float] = time.monotonic,
                 progress_channel: Optional[ProgressChannel] = None):
        self.options = options or AutomationOptions()
        self.form_url = form_url
        self.fallback_url = fallback_url
        self.expose_details = expose_details
        self.session_factory = session_factory or _default_session_factory(None)
        self.clock = clock
        self.progress = progress_channel or ProgressChannel()
        if self.options.on_progress is not None:
            self.progress.subscribe(self.options.on_progress)

        self.current_state: Optional[str] = None
        self.state_history: List[str] = []
        self._fields_total = 0
        self._fields_done = 0

    # --- State bookkeeping ---

    def _transition(self, state: str, message: str, progress: Optional[int] = None) -> None:
        self.current_state = state
        self.state_history.append(state)
        logging.info(f"Orchestrator: -> {state}: {message}")
        if state != OrchestratorState.FAILED:
            self.progress.publish(state, STEP_PROGRESS[state] if progress is None else progress, message)

    def _fail(self, result: AutomationResult) -> AutomationResult:
        error = result.error
        self._transition(OrchestratorState.FAILED, f"{error.code.value} at {error.step.value if error.step else '-'}: {error.message}")
        return result

    # --- Entry point ---

    def run(self, record: DeclarationRecord) -> AutomationResult:
        self.state_history = []
        self._transition(OrchestratorState.VALIDATION, "Validating form data")

        validation = validate_declaration(record)
        if not validation.valid:
            logging.info(f"Orchestrator: Validation failed. Missing: {validation.missing_fields}")
            return self._fail(build_failure_result(
                ErrorCode.INVALID_FORM_DATA,
                "Form data is incomplete or invalid",
                step=PipelineStep.VALIDATION,
                details={"missingFields": validation.missing_fields},
            ))

        decision = should_redirect(record)
        if decision.should_redirect:
            logging.info(f"Orchestrator: Redirecting to manual submission ({decision.reason}).")
            return self._fail(build_failure_result(
                ErrorCode.MANUAL_SUBMISSION_REQUIRED,
                f"Manual submission required: {decision.reason}",
                step=PipelineStep.VALIDATION,
                details={"reason": decision.reason},
                fallback_url=self.fallback_url,
            ))

        deadline = Deadline(self.options.timeout_ms, self.clock)
        try:
            self._transition(OrchestratorState.NAVIGATION, "Opening customs portal")
            session = self.session_factory(headless=self.options.headless)
            with session:
                if getattr(session, "driver", None) is None:
                    launch_error = getattr(session, "launch_error", None)
                    raise AutomationStepError(
                        OrchestratorState.NAVIGATION,
                        "Browser session could not be started",
                        details={"launchError": launch_error} if (launch_error and self.expose_details) else None,
                    )
                self._navigate(session, deadline)
                self._fill_form(session, to_external_payload(record), deadline)
                self._submit(session, deadline)
                result = self._extract_confirmation(session, deadline)
            self._transition(OrchestratorState.DONE, result.message or "Completed")
            return result

        except AutomationTimeout as e:
            logging.warning(f"Orchestrator: {e.message}")
            return self._fail(build_failure_result(
                ErrorCode.AUTOMATION_TIMEOUT,
                e.message,
                step=e.step,
                details={
                    "timeoutMs": deadline.timeout_ms,
                    "elapsedMs": deadline.elapsed_ms(),
                    "statesEntered": list(self.state_history),
                },
                fallback_url=self.fallback_url,
            ))
        except AutomationStepError as e:
            logging.error(f"Orchestrator: Step '{e.step}' failed: {e.message}")
            return self._fail(build_failure_result(
                ErrorCode.AUTOMATION_FAILED,
                e.message,
                step=e.step,
                details=e.details,
                fallback_url=self.fallback_url,
            ))
        except Exception as e:
            logging.exception(f"Orchestrator: Unexpected error during {self.current_state}")
            step = self.current_state if self.current_state in PIPELINE_STATES else None
            return self._fail(build_failure_result(
                ErrorCode.AUTOMATION_FAILED,
                f"Unexpected error during {step or 'automation'}: {e}",
                step=step,
                details=describe_exception(e, self.expose_details),
                fallback_url=self.fallback_url,
            ))

    # --- Navigation ---

    def _navigate(self, session, deadline: Deadline) -> None:
        step = OrchestratorState.NAVIGATION
        if not session.navigate_to_url(self.form_url, timeout=deadline.budget(step, PAGE_LOAD_WAIT)):
            deadline.check(step)
            raise AutomationStepError(step, f"Could not load the customs portal at {self.form_url}")

        for nav_step in NAVIGATION_SEQUENCE:
            if nav_step.name == FORM_STEP:
                break
            self._walk_navigation_step(session, nav_step, deadline)

        form = NAVIGATION_STEPS[FORM_STEP]
        if not session.wait_for_visible(form.locator, find_by=form.find_by, timeout=deadline.budget(step, FORM_READY_WAIT)):
            deadline.check(step)
            raise AutomationStepError(step, "Declaration form did not appear")

    def _walk_navigation_step(self, session, nav_step: NavigationStep, deadline: Deadline) -> None:
        step = OrchestratorState.NAVIGATION
        logging.info(f"Orchestrator: Navigation step '{nav_step.name}': {nav_step.description}")
        if not session.click_element(nav_step.locator, find_by=nav_step.find_by, timeout=deadline.budget(step, FORM_READY_WAIT)):
            deadline.check(step)
            if nav_step.required:
                raise AutomationStepError(step, f"Could not complete navigation step '{nav_step.name}'",
                                          details={"navigationStep": nav_step.name})
            # Some sessions land directly on the form
            logging.info(f"Orchestrator: Nothing to click for '{nav_step.name}'; continuing.")

        if nav_step.wait_for and not session.wait_for_visible(nav_step.wait_for, find_by="css",
                                                              timeout=deadline.budget(step, FORM_READY_WAIT)):
            deadline.check(step)
            raise AutomationStepError(step, "Declaration form did not appear",
                                      details={"navigationStep": nav_step.name})

    # --- Form fill ---

    def _fill_form(self, session, payload: Dict[str, Any], deadline: Deadline) -> None:
        step = OrchestratorState.FORM_FILL
        members = payload.get("familyMembers") or []
        self._fields_total = len(MAIN_FORM_FIELDS) + len(DECLARATION_FIELDS) + sum(len(family_member_row_mappings(i)) for i in range(len(members)))
        self._fields_done = 0
        self._transition(step, f"Filling {self._fields_total} form fields")

        # (mapping, value, label) of every control that was written, for the verification pass
        filled: List[Tuple[FieldMapping, Any, str]] = []

        for mapping in MAIN_FORM_FIELDS:
            if self._apply_mapping(session, mapping, payload.get(mapping.key), deadline):
                filled.append((mapping, payload.get(mapping.key), mapping.key))

        for index, member in enumerate(members):
            deadline.check(step)
            if not session.click_element(ADD_ROW_BUTTON, find_by="xpath", timeout=deadline.budget(step, FIELD_WAIT)):
                deadline.check(step)
                raise AutomationStepError(step, f"Could not add a row for family member {index + 1}",
                                          details={"familyMember": index})
            for mapping in family_member_row_mappings(index):
                label = f"familyMembers[{index}].{mapping.key}"
                if self._apply_mapping(session, mapping, member.get(mapping.key), deadline, label=label):
                    filled.append((mapping, member.get(mapping.key), label))

        for mapping in DECLARATION_FIELDS:
            if self._apply_mapping(session, mapping, payload.get(mapping.key), deadline):
                filled.append((mapping, payload.get(mapping.key), mapping.key))

        self._verify_form(session, filled, deadline)

    def _apply_mapping(self, session, mapping: FieldMapping, value: Any, deadline: Deadline, label: Optional[str] = None) -> bool:
        """Applies one mapping. Returns whether the control was written."""
        step = OrchestratorState.FORM_FILL
        label = label or mapping.key
        deadline.check(step)

        if mapping.action != FieldAction.CHECK and _is_empty(value):
            if mapping.required:
                raise AutomationStepError(step, f"No value available for required field '{label}'", details={"field": label})
            logging.info(f"Orchestrator: Skipping optional field '{label}' (no value).")
            self._field_done(label)
            return False

        ok = self._write_field(session, mapping, value, deadline, label)
        if not ok:
            deadline.check(step)
            if mapping.required:
                raise AutomationStepError(step, f"Could not fill field '{label}'",
                                          details={"field": label, "action": mapping.action.value})
            logging.info(f"Orchestrator: Optional field '{label}' not present; skipped.")
        self._field_done(label)
        return ok

    def _write_field(self, session, mapping: FieldMapping, value: Any, deadline: Deadline, label: str) -> bool:
        step = OrchestratorState.FORM_FILL
        if mapping.action == FieldAction.TYPE:
            # Optional controls are not rendered on every flow; do not spend the full field wait on them
            wait = FIELD_WAIT if mapping.required else READINESS_WAIT
            return session.fill_text_field(mapping.locator, str(value), find_by=mapping.find_by, timeout=deadline.budget(step, wait))
        if mapping.action == FieldAction.SELECT:
            return self._select_with_retry(session, mapping, str(value), deadline, label)
        return session.set_checked(mapping.locator, bool(value), find_by=mapping.find_by, timeout=deadline.budget(step, FIELD_WAIT))

    def _select_with_retry(self, session, mapping: FieldMapping, value: str, deadline: Deadline, label: str) -> bool:
        """
        Opens the dropdown and waits for its readiness locator, re-attempting up to
        `retries` more times when the panel does not show. Choosing the option itself
        is not retried.
        """
        step = OrchestratorState.FORM_FILL
        attempts = max(0, self.options.retries) + 1
        for attempt in range(1, attempts + 1):
            if attempt > 1:
                logging.info(f"Orchestrator: Retrying '{label}' (attempt {attempt}/{attempts}).")
            # A panel still open from the previous select must not satisfy the readiness wait
            session.dismiss_dropdowns()

            if not session.open_dropdown(mapping.locator, find_by=mapping.find_by, timeout=deadline.budget(step, FIELD_WAIT)):
                logging.warning(f"Orchestrator: Could not open dropdown for '{label}' (attempt {attempt}/{attempts}).")
                continue
            if mapping.wait_for and not session.wait_for_visible(mapping.wait_for, find_by="css", timeout=deadline.budget(step, READINESS_WAIT)):
                logging.warning(f"Orchestrator: Dropdown panel for '{label}' did not appear (attempt {attempt}/{attempts}).")
                continue
            return session.choose_dropdown_option(DROPDOWN_ITEM, value, timeout=deadline.budget(step, FIELD_WAIT),
                                                  control_selector=mapping.locator, find_by=mapping.find_by)

        deadline.check(step)
        raise AutomationStepError(step, f"Dropdown for '{label}' did not become ready after {attempts} attempts",
                                  details={"field": label, "attempts": attempts})

    def _verify_form(self, session, filled: List[Tuple[FieldMapping, Any, str]], deadline: Deadline) -> None:
        """
        Reads back every written control. A control that does not show its value is
        written once more; if it still does not show it, form fill fails.
        """
        step = OrchestratorState.FORM_FILL
        repaired = []
        for mapping, value, label in filled:
            deadline.check(step)
            actual = session.read_value(mapping.locator, find_by=mapping.find_by)
            if _shows_value(mapping, value, actual):
                continue

            logging.warning(f"Orchestrator: '{label}' shows {actual!r} instead of {_expected_text(mapping, value)!r}; filling it again.")
            self._write_field(session, mapping, value, deadline, label)
            actual = session.read_value(mapping.locator, find_by=mapping.find_by)
            if not _shows_value(mapping, value, actual):
                deadline.check(step)
                raise AutomationStepError(step, f"Field '{label}' did not keep its value",
                                          details={"field": label, "expected": _expected_text(mapping, value), "actual": actual})
            repaired.append(label)

        message = f"Verified {len(filled)} fields" + (f", repaired {', '.join(repaired)}" if repaired else "")
        logging.info(f"Orchestrator: {message}")
        self.progress.publish(step, FORM_FILL_PROGRESS_END, message)

    def _field_done(self, label: str) -> None:
        self._fields_done += 1
        span = FORM_FILL_PROGRESS_END - STEP_PROGRESS[OrchestratorState.FORM_FILL]
        progress = STEP_PROGRESS[OrchestratorState.FORM_FILL] + span * self._fields_done / max(1, self._fields_total)
        self.progress.publish(OrchestratorState.FORM_FILL, progress, f"Filled {label}")

    # --- Submission ---

    def _submit(self, session, deadline: Deadline) -> None:
        step = OrchestratorState.SUBMISSION
        self._transition(step, "Submitting declaration")

        submit = NAVIGATION_STEPS[SUBMIT_STEP]
        if not session.click_element(submit.locator, find_by=submit.find_by, timeout=deadline.budget(step, FIELD_WAIT)):
            deadline.check(step)
            raise AutomationStepError(step, "Submit button was not available")

        outcome = session.wait_for_any({"success": SUCCESS_INDICATOR, "error": ERROR_INDICATOR},
                                       timeout=deadline.budget(step, SUBMISSION_OUTCOME_WAIT))
        if outcome == "error":
            messages = session.get_texts(ERROR_TEXT)
            raise AutomationStepError(step, "The portal rejected the declaration", details={"errors": messages})
        if outcome is None:
            deadline.check(step)
            raise AutomationStepError(step, "No confirmation was shown after submitting")

    # --- Confirmation ---

    def _extract_confirmation(self, session, deadline: Deadline) -> AutomationResult:
        step = OrchestratorState.QR_EXTRACTION
        self._transition(step, "Reading confirmation")

        image_data = session.capture_image_data(QR_IMAGE_LOCATORS, timeout=deadline.budget(step, QR_ARTIFACT_WAIT))
        metadata = parse_submission_metadata(session.get_texts(MODAL_HEADINGS))

        details = SubmissionDetails(
            submission_id=metadata["registrationNumber"] or UNKNOWN_SUBMISSION_ID,
            submission_time=utc_timestamp(),
            status=SUBMITTED_STATUS,
            port_info=metadata["portInfo"],
            customs_office=metadata["customsOffice"],
        )
        qr_code = QRCodeArtifact(image_data=image_data) if image_data else None
        if qr_code is None:
            logging.info("Orchestrator: No QR artifact on the confirmation; delivery is deferred.")
        return build_success_result(details, qr_code=qr_code)


def options_from_settings(settings: Optional[Mapping[str, Any]] = None, overrides: Optional[Mapping[str, Any]] = None,
                          on_progress=None) -> AutomationOptions:
    """AutomationOptions from configured defaults plus per-request `headless`/`timeout`/`retries` overrides."""
    settings = settings if settings is not None else config_loader.AUTOMATION_SETTINGS
    overrides = overrides or {}
    options = AutomationOptions(
        headless=bool(settings.get("headless", True)),
        timeout_ms=int(settings.get("timeout_ms", 45000)),
        retries=int(settings.get("retries", 3)),
        on_progress=on_progress,
    )
    if isinstance(overrides.get("headless"), bool):
        options.headless = overrides["headless"]
    for key, attr in (("timeout", "timeout_ms"), ("retries", "retries")):
        value = overrides.get(key)
        if isinstance(value, int) and not isinstance(value, bool) and value >= 0:
            setattr(options, attr, value)
    return options


def run_declaration_automation(record: DeclarationRecord,
                               options: Optional[AutomationOptions] = None,
                               settings: Optional[Mapping[str, Any]] = None,
                               progress_channel: Optional[ProgressChannel] = None) -> AutomationResult:
    settings = settings if settings is not None else config_loader.AUTOMATION_SETTINGS
    orchestrator = DeclarationOrchestrator(
        options=options or options_from_settings(settings),
        form_url=settings.get("form_url") or DEFAULT_PORTAL_URL,
        fallback_url=settings.get("fallback_url") or DEFAULT_PORTAL_URL,
        expose_details=is_development(settings),
        session_factory=_default_session_factory(settings.get("webdriver_path")),
        progress_channel=progress_channel,
    )
    return orchestrator.run(record)
