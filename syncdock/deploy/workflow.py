"""Linear step runner with two failure policies.

Provisioning stops at the first failed step (FAIL_FAST); teardown logs a
failed step and moves on to the next independent resource (BEST_EFFORT).
"""

import enum
import logging
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


class StepFailed(RuntimeError):
    """A workflow step could not complete. The message is the diagnostic."""


class PreflightError(StepFailed):
    """A precondition (tooling, authentication, project) is not met."""


class ExecutionPolicy(enum.Enum):
    FAIL_FAST = "fail-fast"
    BEST_EFFORT = "best-effort"


@dataclass
class RunState:
    """Values discovered during one run and consumed by later steps."""

    project_id: str
    ip_address: str = ""
    public_key: str = ""
    dry_run: bool = False
    created: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)


@dataclass
class Step:
    """A named unit of work: ``action(config, state)`` is a coroutine."""

    name: str
    action: object


@dataclass
class StepOutcome:
    name: str
    ok: bool
    error: str = ""


@dataclass
class WorkflowResult:
    outcomes: list[StepOutcome] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(o.ok for o in self.outcomes)

    @property
    def failed(self) -> list[str]:
        return [o.name for o in self.outcomes if not o.ok]


async def run_steps(steps, config, state, policy=ExecutionPolicy.FAIL_FAST):
    """Run ``steps`` in order under ``policy``.

    Under FAIL_FAST the first StepFailed is re-raised after being recorded,
    so the caller sees the diagnostic; later steps never run. Under
    BEST_EFFORT every step runs and failures are only recorded.

    Returns:
        WorkflowResult (BEST_EFFORT, or FAIL_FAST when nothing failed).
    """
    result = WorkflowResult()
    for step in steps:
        try:
            await step.action(config, state)
        except StepFailed as e:
            result.outcomes.append(StepOutcome(step.name, ok=False, error=str(e)))
            if policy is ExecutionPolicy.FAIL_FAST:
                raise
            logger.error(f"[-] {step.name}: {e}")
            continue
        result.outcomes.append(StepOutcome(step.name, ok=True))
    return result
