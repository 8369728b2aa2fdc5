"""Drives one flow kind: start, continue, finish.

Storage is only touched through the repository's conditional update, so two
handlers racing on the same session cannot both move it. The loser sees
StepMismatch and stays silent.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional, Union

from papertrail.logging_config import bind_logger
from papertrail.schemas.events import CallbackEvent, MessageEvent, StartEvent
from papertrail.schemas.session import FINALIZING_STEP, SessionMutation, SessionState, SessionStatus
from papertrail.services.completions import CompletionHandler
from papertrail.services.deduplicator import ClaimResult, Deduplicator
from papertrail.services.errors import AlreadyActive, StepMismatch, ValidationError
from papertrail.services.outbound import OutboundPort
from papertrail.services.rate_gate import RateGate
from papertrail.services.session_repository import SessionRepository
from papertrail.services.step_machine import FlowDefinition, advance


class Outcome(str, Enum):
    STARTED = "started"
    ADVANCED = "advanced"
    REJECTED = "rejected"
    EXPIRED = "expired"
    DUPLICATE = "duplicate"
    STALE = "stale"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"
    RATE_LIMITED = "rate_limited"


Event = Union[StartEvent, MessageEvent, CallbackEvent]


class FlowOrchestrator:
    def __init__(
        self,
        flow: FlowDefinition,
        repository: SessionRepository,
        deduplicator: Deduplicator,
        outbound: OutboundPort,
        completion: CompletionHandler,
        rate_gate: Optional[RateGate] = None,
    ):
        if flow.quota_gated and rate_gate is None:
            raise ValueError(f"{flow.kind.value} flow is quota gated and needs a rate gate")
        self.flow = flow
        self.repository = repository
        self.deduplicator = deduplicator
        self.outbound = outbound
        self.completion = completion
        self.rate_gate = rate_gate

    @property
    def kind(self):
        return self.flow.kind

    def handle(self, event: Event) -> Outcome:
        if isinstance(event, StartEvent):
            return self._start(event)
        if isinstance(event, CallbackEvent):
            # exactly one answer per callback, whatever happens next
            self.outbound.acknowledge_callback(event)
            if self.deduplicator.claim(event.event_id) == ClaimResult.ALREADY_PROCESSED:
                return Outcome.DUPLICATE
        return self._continue(event)

    def _logger(self, event: Event, **context):
        return bind_logger(
            "orchestrator", flow=self.kind.value, chat_id=event.chat_id, user_id=event.user_id, **context
        )

    def _start(self, event: StartEvent) -> Outcome:
        log = self._logger(event)
        chat_id = event.chat_id

        if self.flow.quota_gated:
            check = self.rate_gate.check(chat_id)
            if not check.allowed:
                log.info("Start refused, daily quota exhausted")
                self.outbound.send_rate_limited(chat_id, self.kind, check.reset_at)
                return Outcome.RATE_LIMITED

        try:
            update = self.flow.start(event.text)
        except ValidationError as e:
            self.outbound.send_rejection(chat_id, self.kind, e.message)
            return Outcome.REJECTED

        self._supersede(event, log)
        try:
            session = self.repository.create(chat_id, event.user_id, self.kind, update.next_step, update.fields)
        except AlreadyActive:
            # a concurrent start took the slot between cancel and create
            log.warning("Start raced with another start, superseding again")
            self._supersede(event, log)
            try:
                session = self.repository.create(
                    chat_id, event.user_id, self.kind, update.next_step, update.fields
                )
            except AlreadyActive:
                # the other start owns the slot and has prompted the user
                log.warning("Start lost a second race, leaving the newer session in place")
                return Outcome.STALE

        log.info("Session started", context={"session_id": session.session_id, "step": session.current_step})
        self.outbound.send_prompt(chat_id, self.kind, session.current_step, session.fields)
        return Outcome.STARTED

    def _supersede(self, event: StartEvent, log) -> None:
        existing = self.repository.get_active(event.chat_id, event.user_id, self.kind)
        if existing is not None:
            self.repository.cancel(existing.session_id)
            log.info("Superseded active session", context={"session_id": existing.session_id})

    def _continue(self, event: Union[MessageEvent, CallbackEvent]) -> Outcome:
        log = self._logger(event)
        session = self.repository.get_active(event.chat_id, event.user_id, self.kind)
        if session is None:
            self.outbound.send_expired(event.chat_id, self.kind)
            return Outcome.EXPIRED
        if session.current_step == FINALIZING_STEP:
            log.info("Event arrived while session is finalizing", context={"session_id": session.session_id})
            return Outcome.STALE

        result = advance(self.flow, session.current_step, session.fields, event)
        if not result.ok:
            log.info("Event rejected", context={"step": session.current_step, "code": result.error_code})
            self.outbound.send_rejection(event.chat_id, self.kind, result.error)
            self.outbound.send_prompt(event.chat_id, self.kind, session.current_step, session.fields)
            return Outcome.REJECTED

        transition = result.value
        next_step = FINALIZING_STEP if transition.terminal else transition.next_step
        try:
            updated = self.repository.update(
                session.session_id,
                session.current_step,
                SessionMutation(fields=transition.updated_fields, step=next_step),
                expected_version=session.version,
            )
        except StepMismatch:
            log.info(
                "Lost race on session update",
                context={"session_id": session.session_id, "step": session.current_step},
            )
            return Outcome.STALE

        if not transition.terminal:
            self.outbound.send_prompt(event.chat_id, self.kind, updated.current_step, updated.fields)
            return Outcome.ADVANCED

        try:
            if transition.terminal == SessionStatus.CANCELLED:
                self.repository.cancel(updated.session_id)
                self.outbound.send_cancelled(event.chat_id, self.kind)
                log.info("Session cancelled by user", context={"session_id": updated.session_id})
                return Outcome.CANCELLED
            return self._complete(updated, log)
        except Exception as e:
            # never leave the session active in finalizing
            log.error(
                f"Finalization failed: {e}",
                exc_info=True,
                context={"session_id": updated.session_id},
            )
            self._abort(updated, log)
            raise

    def _abort(self, session: SessionState, log) -> None:
        """Best-effort cancel and failure notice for a session stuck in finalizing."""
        try:
            self.repository.cancel(session.session_id)
        except Exception as e:
            log.error(f"Cancel after failed finalization failed: {e}", context={"session_id": session.session_id})
        try:
            self.outbound.send_failure(session.chat_id, self.kind)
        except Exception as e:
            log.error(f"Failure notice could not be sent: {e}", context={"session_id": session.session_id})

    def _complete(self, session: SessionState, log) -> Outcome:
        chat_id = session.chat_id
        if self.flow.quota_gated:
            check = self.rate_gate.check(chat_id)
            if not check.allowed:
                self.repository.cancel(session.session_id)
                self.outbound.send_rate_limited(chat_id, self.kind, check.reset_at)
                log.info("Completion refused, daily quota exhausted", context={"session_id": session.session_id})
                return Outcome.RATE_LIMITED

        try:
            artifact = self.completion.complete(session)
            self.outbound.send_completion_artifact(chat_id, self.kind, artifact)
        except Exception as e:
            log.error(
                f"Completion failed: {e}",
                exc_info=True,
                context={"session_id": session.session_id},
            )
            self.repository.cancel(session.session_id)
            self.outbound.send_failure(chat_id, self.kind)
            return Outcome.FAILED

        self.repository.complete(session.session_id)
        if self.flow.quota_gated:
            self.rate_gate.record(chat_id)
        log.info("Session completed", context={"session_id": session.session_id})
        return Outcome.COMPLETED
