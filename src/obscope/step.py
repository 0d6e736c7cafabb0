"""The withOBS step: run a nested block with OBS settings in its environment.

WithOBSStep holds the declared parameters. Starting it yields a
WithOBSExecution, which resolves the credential, layers the OBS overlay over
whatever overlay is already active, and hands the block to the engine. The
block's outcome is forwarded, untouched and exactly once, to the completion
handler of the context the step was started in.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from dataclasses import replace
from enum import Enum
from typing import Any, ClassVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from obscope.completion import ForwardingCallback, InvocationOutcome, OutcomeStatus, Outcome
from obscope.engine import Body, StepContext
from obscope.errors import BodyStartError, CredentialLookupError, ScopeSetupError
from obscope.expander import OverlayExpander, merge
from obscope.models import ResolvedCredential
from obscope.overlay import build_overlay

logger = logging.getLogger(__name__)


class ExecutionState(str, Enum):
    """Progress of one WithOBSExecution."""

    created = "created"
    credential_resolved = "credential_resolved"
    credential_absent = "credential_absent"
    overlay_composed = "overlay_composed"
    body_started = "body_started"
    body_completed = "body_completed"
    body_failed = "body_failed"
    setup_failed = "setup_failed"


_TRANSITIONS: dict[ExecutionState, set[ExecutionState]] = {
    ExecutionState.created: {
        ExecutionState.credential_resolved,
        ExecutionState.credential_absent,
        ExecutionState.setup_failed,
    },
    ExecutionState.credential_resolved: {
        ExecutionState.overlay_composed,
        ExecutionState.setup_failed,
    },
    ExecutionState.credential_absent: {
        ExecutionState.overlay_composed,
        ExecutionState.setup_failed,
    },
    ExecutionState.overlay_composed: {
        ExecutionState.body_started,
        ExecutionState.setup_failed,
    },
    ExecutionState.body_started: {
        ExecutionState.body_completed,
        ExecutionState.body_failed,
    },
}


class WithOBSStep(BaseModel):
    """Declared parameters of a withOBS block."""

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    function_name: ClassVar[str] = "withOBS"
    display_name: ClassVar[str] = "set OBS settings for nested block"
    takes_implicit_block_argument: ClassVar[bool] = True

    region: str = ""
    endpoint_url: str = Field(default="", alias="endpointUrl")
    credentials_id: str = Field(
        default="",
        validation_alias=AliasChoices("credentialsId", "credentials", "credentials_id"),
    )

    def start(self, context: StepContext, body: Body) -> WithOBSExecution:
        return WithOBSExecution(self, context, body)


class WithOBSExecution:
    """One invocation of a withOBS block. start() may be called once."""

    def __init__(self, step: WithOBSStep, context: StepContext, body: Body) -> None:
        self.step = step
        self.context = context
        self.body = body
        self.state = ExecutionState.created
        self.history: list[ExecutionState] = [ExecutionState.created]
        self._lock = threading.Lock()
        self._early_outcome: InvocationOutcome | None = None

    def _advance(self, new_state: ExecutionState) -> None:
        if new_state not in _TRANSITIONS.get(self.state, set()):
            raise RuntimeError(
                f"Illegal {self.step.function_name} transition "
                f"{self.state.value} -> {new_state.value}"
            )
        self.state = new_state
        self.history.append(new_state)

    async def start(self) -> bool:
        """Establish the scope and start the block.

        Always returns False: the outcome arrives through the completion
        handler, never through this return value. Raises ScopeSetupError
        (and nothing reaches the handler) if the scope cannot be established.
        """
        if self.state is not ExecutionState.created:
            raise RuntimeError(f"{self.step.function_name} execution already started")

        run_id = self.context.run_id
        engine = self.context.engine

        credential = await self._resolve_credential()
        overlay = build_overlay(self.step.region, self.step.endpoint_url, credential)

        try:
            ambient = engine.current_ambient_overlay(self.context)
            downstream = engine.on_completion(self.context)
        except Exception as exc:
            self._advance(ExecutionState.setup_failed)
            raise ScopeSetupError(
                f"Could not read the ambient scope of run {run_id}", run_id
            ) from exc

        expander = merge(ambient, OverlayExpander(overlay))
        self._advance(ExecutionState.overlay_composed)

        callback = ForwardingCallback(downstream, listener=self._record_outcome)
        try:
            engine.start_async(self.context, expander, self.body, callback)
        except Exception as exc:
            callback.disarm()
            self._advance(ExecutionState.setup_failed)
            logger.warning("Engine refused to start %s block in run %s", self.step.function_name, run_id)
            raise BodyStartError(
                f"Could not start {self.step.function_name} block in run {run_id}", run_id
            ) from exc

        with self._lock:
            self._advance(ExecutionState.body_started)
            early, self._early_outcome = self._early_outcome, None
            if early is not None:
                self._finish(early)

        logger.info(
            "Started %s block in run %s (region=%r, endpoint=%r, overrides=%s)",
            self.step.function_name,
            run_id,
            self.step.region,
            self.step.endpoint_url,
            sorted(overlay),
        )
        return False

    async def _resolve_credential(self) -> ResolvedCredential | None:
        credentials_id = self.step.credentials_id
        if not credentials_id:
            self._advance(ExecutionState.credential_absent)
            return None

        try:
            credential = await self.context.credentials.resolve(
                credentials_id, self.context.job_id
            )
        except Exception as exc:
            self._advance(ExecutionState.setup_failed)
            logger.warning(
                "Credential store failed resolving %s for job %s",
                credentials_id,
                self.context.job_id,
            )
            raise CredentialLookupError(credentials_id, self.context.run_id) from exc

        if credential is None:
            logger.debug(
                "Credential %s not available to job %s; running without it",
                credentials_id,
                self.context.job_id,
            )
            self._advance(ExecutionState.credential_absent)
            return None

        self._advance(ExecutionState.credential_resolved)
        return credential

    def _record_outcome(self, outcome: InvocationOutcome) -> None:
        # A synchronous engine may finish the block inside start_async
        with self._lock:
            if self.state is ExecutionState.body_started:
                self._finish(outcome)
            else:
                self._early_outcome = outcome

    def _finish(self, outcome: InvocationOutcome) -> None:
        if outcome.status is OutcomeStatus.completed:
            self._advance(ExecutionState.body_completed)
        else:
            self._advance(ExecutionState.body_failed)
        logger.debug(
            "%s block in run %s finished: %s",
            self.step.function_name,
            self.context.run_id,
            outcome.status.value,
        )


async def inject(context: StepContext, params: Mapping[str, Any], body: Body) -> bool:
    """Start body under the OBS scope declared by params; see WithOBSExecution.start."""
    step = WithOBSStep.model_validate(params)
    return await step.start(context, body).start()


async def with_obs(context: StepContext, body: Body, **params: Any) -> Any:
    """Run body in a nested OBS scope and wait for its result.

    Convenience for code already running inside a block:

        await with_obs(ctx, upload, region="eu-west", credentialsId="cred-1")
    """
    outcome = Outcome()
    step = WithOBSStep.model_validate(params)
    await step.start(replace(context, completion=outcome), body).start()
    return await outcome.result()
