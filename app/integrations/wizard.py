"""
Checklist wizard driver.

Walks a user through one checklist: identification step first, then one
step per category with applicable questions. Composition and validation
come from FormComposer, so the client applies exactly the rules the
backend enforces on submit.

The wizard keeps no state across sessions. Schema loads run on a
ThreadPoolExecutor; a result that arrives for a checklist the caller
has already moved away from is discarded. Installing a schema and the
state mutators (answers, identification, step index) share one lock, so
a background install never interleaves with a caller-side update.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import replace
from typing import Callable

from app.integrations.api_client import ApiClient, ApiError, ApiValidationError
from app.services.form_composer import (
    IDENTIFICATION_STEP,
    ChecklistSchema,
    FormComposer,
    Identification,
    RequestContext,
    StepValidation,
    WizardStep,
)

logger = logging.getLogger(__name__)

SUBMIT_FAILED = "Could not submit checklist"
LOAD_FAILED = "Could not load checklist"


class WizardNotReady(RuntimeError):
    """Raised when navigation is attempted before a schema is loaded."""


class ChecklistWizard:
    """Drive one checklist fill-in.

    Args:
        context: Who is filling in the checklist.
        client: ApiClient used for schema loads and submission.
        schema: Pre-loaded schema (skips the initial load).
        on_complete: Called with the new response id after a successful submit.
        notifier: Called with a user-facing message on validation or transport failures.
        executor: Executor for background loads; one is created when omitted.
    """

    def __init__(
        self,
        context: RequestContext,
        *,
        client: ApiClient | None = None,
        schema: ChecklistSchema | None = None,
        on_complete: Callable[[int], None] | None = None,
        notifier: Callable[[str], None] | None = None,
        executor: ThreadPoolExecutor | None = None,
    ) -> None:
        self.context = context
        self.client = client
        self.on_complete = on_complete
        self.notifier = notifier or (lambda message: logger.info("wizard: %s", message))
        self._executor = executor
        self._owns_executor = executor is None
        self._lock = threading.RLock()

        self._requested_id: int | None = None
        self.composer: FormComposer | None = None
        self.identification = Identification()
        self.answers: dict[str, object] = {}
        self.step_index = 0
        self.submitting = False

        if schema is not None:
            self._requested_id = schema.checklist.id
            self.receive_schema(schema.checklist.id, schema)

    # ── Loading ──────────────────────────────────────────────────────────

    @property
    def executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="wizard")
        return self._executor

    def load(self, checklist_id: int) -> Future:
        """Start loading a checklist schema in the background."""
        if self.client is None:
            raise WizardNotReady("No API client configured")
        with self._lock:
            self._requested_id = checklist_id
            self.composer = None
        future = self.executor.submit(self.client.get_schema, checklist_id)
        future.add_done_callback(lambda f: self._loaded(checklist_id, f))
        return future

    def _loaded(self, checklist_id: int, future: Future) -> None:
        error = future.exception()
        if error is not None:
            logger.warning("Schema load failed checklist=%s: %s", checklist_id, error)
            if checklist_id == self._requested_id:
                self.notifier(LOAD_FAILED)
            return
        self.receive_schema(checklist_id, future.result())

    def receive_schema(self, checklist_id: int, schema: ChecklistSchema) -> bool:
        """Install a loaded schema unless the caller has since switched checklists.

        Returns True when the schema was accepted.
        """
        with self._lock:
            if checklist_id != self._requested_id:
                logger.debug("Discarding stale schema checklist=%s (current=%s)",
                             checklist_id, self._requested_id)
                return False
            self.composer = FormComposer(schema, self.context)
            self.identification = Identification(operator_name=self.context.user_name)
            self.answers = {}
            self.step_index = 0
        return True

    def close(self) -> None:
        if self._owns_executor and self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None

    # ── State ────────────────────────────────────────────────────────────

    @property
    def ready(self) -> bool:
        return self.composer is not None

    def _composer(self) -> FormComposer:
        if self.composer is None:
            raise WizardNotReady("Checklist schema is not loaded")
        return self.composer

    @property
    def steps(self) -> list[WizardStep]:
        return self._composer().steps(self.identification)

    @property
    def current_step(self) -> WizardStep:
        return self.steps[self.step_index]

    @property
    def is_last_step(self) -> bool:
        return self.step_index == len(self.steps) - 1

    def set_identification(self, **fields) -> None:
        """Update identification fields; drops a work station the new task does not offer."""
        with self._lock:
            composer = self._composer()
            ident = replace(self.identification, **fields)
            if ident.work_station_id is not None and composer.schema.work_stations:
                offered = {s.id for s in composer.station_options(ident.work_task_id)}
                if ident.work_station_id not in offered:
                    ident = replace(ident, work_station_id=None)
            self.identification = ident
            # Step count can shrink when the work task changes
            self.step_index = min(self.step_index, len(self.steps) - 1)

    def set_answer(self, question_id, value) -> None:
        with self._lock:
            self.answers[str(question_id)] = value

    # ── Navigation ───────────────────────────────────────────────────────

    def validate_current(self) -> StepValidation:
        with self._lock:
            return self._composer().validate_step(self.step_index, self.identification, self.answers)

    def next(self) -> StepValidation:
        with self._lock:
            result = self.validate_current()
            if result.ok and not self.is_last_step:
                self.step_index += 1
        if not result.ok:
            self.notifier(result.message)
        return result

    def previous(self) -> None:
        with self._lock:
            if self.step_index > 0:
                self.step_index -= 1

    def submit(self) -> int | None:
        """Validate every step and submit. Returns the new response id, or None."""
        with self._lock:
            composer = self._composer()
            failures = composer.validate_all(self.identification, self.answers)
            if failures:
                self.step_index = failures[0].step_index
            else:
                payload = composer.build_payload(self.identification, self.answers)
        if failures:
            self.notifier(failures[0].message)
            return None
        if self.client is None:
            raise WizardNotReady("No API client configured")

        self.submitting = True
        try:
            created = self.client.submit_response(payload)
        except ApiValidationError as e:
            logger.info("Submission rejected checklist=%s: %s", composer.checklist.id, e.message)
            self.notifier(e.message)
            return None
        except ApiError as e:
            logger.warning("Submission failed checklist=%s: %s", composer.checklist.id, e.message)
            self.notifier(SUBMIT_FAILED)
            return None
        finally:
            self.submitting = False

        response_id = created["id"]
        logger.info("Submitted checklist=%s response=%s", composer.checklist.id, response_id)
        if self.on_complete is not None:
            self.on_complete(response_id)
        return response_id

    @property
    def on_identification_step(self) -> bool:
        return self.current_step.kind == IDENTIFICATION_STEP
