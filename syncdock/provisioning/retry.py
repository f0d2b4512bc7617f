"""Bounded exponential-backoff retry for commands that fail transiently.

The same RetryPolicy drives two executors: ``retry_with_backoff`` for
commands run from this machine, and the bash function rendered by
``render_shell_retry_function`` for package-manager calls made by the
bootstrap script on the instance.
"""

import asyncio
import enum
import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt count and delay series for one retried operation."""

    max_attempts: int = 5
    base_delay: float = 1.0
    factor: float = 2.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.base_delay < 0:
            raise ValueError(f"base_delay must be >= 0, got {self.base_delay}")

    def delays(self):
        """Sleep after each failed attempt: base, base*factor, base*factor^2, ..."""
        return [self.base_delay * self.factor**i for i in range(self.max_attempts)]


class RetryOutcome(enum.Enum):
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"
    NON_RETRYABLE = "non-retryable"


@dataclass
class RetryResult:
    """What happened across all attempts of a retried operation."""

    outcome: RetryOutcome
    returncode: int
    attempts: int
    total_delay: float = 0.0
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome is RetryOutcome.SUCCEEDED


async def retry_with_backoff(operation, policy=None, is_retryable=None, sleep=asyncio.sleep, label=None):
    """Run ``operation`` until it succeeds or the policy is exhausted.

    Args:
        operation: async callable() -> (returncode, stdout, stderr)
        policy: RetryPolicy; defaults to 5 attempts starting at 1s.
        is_retryable: optional callable(returncode, stderr) -> bool. A failure
            it rejects ends the loop immediately as NON_RETRYABLE.
        sleep: async callable(seconds), injectable for tests.
        label: text used in log lines.

    Returns:
        RetryResult. Every failed attempt that is retried is followed by its
        delay, including the last one, so an exhausted run has slept the
        full delay series.
    """
    policy = policy or RetryPolicy()
    label = label or "command"
    total_delay = 0.0
    rc, stdout, stderr = 1, "", ""

    for attempt, delay in enumerate(policy.delays(), start=1):
        logger.debug(f"Attempt {attempt} of {policy.max_attempts}: {label}")
        rc, stdout, stderr = await operation()
        if rc == 0:
            return RetryResult(RetryOutcome.SUCCEEDED, rc, attempt, total_delay, stdout, stderr)

        if is_retryable is not None and not is_retryable(rc, stderr):
            logger.error(f"{label} failed with exit code {rc}; not retrying.")
            return RetryResult(RetryOutcome.NON_RETRYABLE, rc, attempt, total_delay, stdout, stderr)

        logger.warning(f"{label} failed with exit code {rc}. Retrying in {delay:g} seconds...")
        await sleep(delay)
        total_delay += delay

    logger.error(f"{label} failed after {policy.max_attempts} attempts.")
    return RetryResult(RetryOutcome.EXHAUSTED, rc, policy.max_attempts, total_delay, stdout, stderr)


def command_not_found(returncode, stderr):
    """is_retryable predicate: a missing binary will not appear on the next attempt."""
    return returncode != 127


def render_shell_retry_function(policy=None, name="retry_with_backoff"):
    """Render the bash equivalent of ``retry_with_backoff`` for the remote script."""
    policy = policy or RetryPolicy()
    factor = int(policy.factor)
    if factor != policy.factor or int(policy.base_delay) != policy.base_delay:
        raise ValueError("Shell retry needs an integral base_delay and factor")
    return f"""{name}() {{
  local max_attempts={policy.max_attempts}
  local timeout={int(policy.base_delay)}
  local attempt=1
  local exitCode=0

  while [[ $attempt -le $max_attempts ]]
  do
    echo "[+] Attempt $attempt of $max_attempts: $@"
    "$@"
    exitCode=$?

    if [[ $exitCode == 0 ]]
    then
      echo "[+] Command succeeded."
      return 0
    fi

    echo "[-] Command failed with exit code $exitCode. Retrying in $timeout seconds..."
    sleep $timeout
    attempt=$(( attempt + 1 ))
    timeout=$(( timeout * {factor} ))
  done

  echo "[-] Command failed after $max_attempts attempts."
  return $exitCode
}}
"""
