"""
CAPTCHA handling for the vkapi SDK.

VK may answer any method call, or the credential handshake, with a
"captcha needed" error. CaptchaRetryLoop wraps such an operation: it asks a
CaptchaSolver for a solution and resubmits the operation with the answer,
up to a bounded number of attempts.

Example:
    >>> class ConsoleSolver(CaptchaSolver):
    ...     def solve(self, url):
    ...         return input(f"Enter the text from {url}: ")
    ...     def report_incorrect(self):
    ...         print("Wrong answer, try again.")
    >>>
    >>> loop = CaptchaRetryLoop(solver=ConsoleSolver(), max_attempts=5)
    >>> outcome = loop.run(lambda answer: send(params, answer))
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Protocol, TypeVar

from vkapi._models import CaptchaAnswer, CaptchaChallenge

logger = logging.getLogger(__name__)


class CaptchaSolver(ABC):
    """
    Abstract base class for CAPTCHA solvers.

    A solver may be a human in the loop or an automated recognition service.
    """

    @abstractmethod
    def solve(self, url: str | None) -> str:
        """
        Return the solution text for the challenge image at `url`.

        Args:
            url: URI of the challenge image.
        """
        pass

    @abstractmethod
    def report_incorrect(self) -> None:
        """Report that the last returned solution was rejected by the server."""
        pass


class ChallengeOutcome(Protocol):
    """Any operation outcome that may carry a CAPTCHA challenge."""

    @property
    def captcha(self) -> CaptchaChallenge | None: ...


OutcomeT = TypeVar("OutcomeT", bound=ChallengeOutcome)


class _Attempts:
    """Internal: counters and solver bookkeeping for one run of the loop."""

    def __init__(self, solver: CaptchaSolver, max_attempts: int, initial_answer: CaptchaAnswer | None):
        self.solver = solver
        self.max_attempts = max_attempts
        self.remaining_solves = max_attempts
        self.remaining_calls = max_attempts + 1
        self.answer = initial_answer
        self.last_challenge: CaptchaChallenge | None = None

    def next_answer(self, challenge: CaptchaChallenge) -> bool:
        """
        Handle a challenge; return False when the solver is exhausted.

        The previous solution is reported as incorrect only once a solution
        was actually submitted, never on the first challenge.
        """
        self.last_challenge = challenge
        if self.remaining_solves < self.max_attempts:
            self.solver.report_incorrect()

        if self.remaining_solves <= 0:
            return False

        key = self.solver.solve(challenge.img)
        self.remaining_solves -= 1
        self.answer = CaptchaAnswer(sid=challenge.sid, key=key)
        return True


class CaptchaRetryLoop:
    """
    Bounded retry policy for operations that may require a solved CAPTCHA.

    The operation receives the answer to submit (None on the first attempt)
    and returns an outcome whose `captcha` attribute tags whether a challenge
    is pending; the loop branches on that tag.

    Attempt accounting:
        - up to `max_attempts` solutions are requested from the solver;
        - the operation runs up to `max_attempts + 1` times (the first
          attempt carries no answer);
        - `solver.report_incorrect()` is called for every challenge received
          after a solution was submitted.

    Without a solver the operation runs exactly once and a challenge is
    raised immediately.

    Args:
        solver: Optional CAPTCHA solver.
        max_attempts: Maximum number of solutions to request (default: 5).
        logger_prefix: Prefix for log messages (e.g., "users.get").

    Raises:
        CaptchaNeededError: When the loop ends with an unresolved challenge.
    """

    def __init__(
        self,
        solver: CaptchaSolver | None,
        max_attempts: int = 5,
        logger_prefix: str = "",
    ):
        assert max_attempts is not None, "max_attempts cannot be None."
        assert max_attempts >= 0, f"max_attempts must be >= 0, got {max_attempts}"

        self.solver = solver
        self.max_attempts = max_attempts
        self.logger_prefix = logger_prefix

    def run(
        self,
        operation: Callable[[CaptchaAnswer | None], OutcomeT],
        initial_answer: CaptchaAnswer | None = None,
    ) -> OutcomeT:
        """
        Run `operation` until it returns an outcome without a pending challenge.

        Args:
            operation: Callable receiving the answer to submit.
            initial_answer: Answer supplied by the caller for the first attempt.

        Returns:
            The first outcome without a challenge.

        Raises:
            CaptchaNeededError: If the challenge could not be resolved.
        """
        if self.solver is None:
            outcome = operation(initial_answer)
            if outcome.captcha is not None:
                self._log_unresolved(outcome.captcha, reason="no CaptchaSolver configured")
                raise outcome.captcha.to_error()
            return outcome

        attempts = _Attempts(self.solver, self.max_attempts, initial_answer)
        while attempts.remaining_calls > 0:
            attempts.remaining_calls -= 1
            outcome = operation(attempts.answer)
            if outcome.captcha is None:
                return outcome

            self._log_challenge(outcome.captcha, attempts)
            if not attempts.next_answer(outcome.captcha):
                break

        return self._raise_unresolved(attempts)

    async def run_async(
        self,
        operation: Callable[[CaptchaAnswer | None], Awaitable[OutcomeT]],
        initial_answer: CaptchaAnswer | None = None,
    ) -> OutcomeT:
        """
        Asynchronous variant of `run()`.

        The solver is called in a worker thread, since solving may block on a
        human or a remote recognition service.
        """
        if self.solver is None:
            outcome = await operation(initial_answer)
            if outcome.captcha is not None:
                self._log_unresolved(outcome.captcha, reason="no CaptchaSolver configured")
                raise outcome.captcha.to_error()
            return outcome

        attempts = _Attempts(self.solver, self.max_attempts, initial_answer)
        while attempts.remaining_calls > 0:
            attempts.remaining_calls -= 1
            outcome = await operation(attempts.answer)
            if outcome.captcha is None:
                return outcome

            self._log_challenge(outcome.captcha, attempts)
            if not await asyncio.to_thread(attempts.next_answer, outcome.captcha):
                break

        return self._raise_unresolved(attempts)

    def _raise_unresolved(self, attempts: _Attempts) -> OutcomeT:
        challenge = attempts.last_challenge
        assert challenge is not None, "🌀 Sanity check | CAPTCHA loop ended without any challenge."
        self._log_unresolved(challenge, reason="the challenge was never solved correctly")
        raise challenge.to_error()

    def _prefix(self) -> str:
        return f"{self.logger_prefix} | " if self.logger_prefix else ""

    def _log_challenge(self, challenge: CaptchaChallenge, attempts: _Attempts) -> None:
        logger.warning(
            f"{self._prefix()}Captcha needed (sid={challenge.sid}); "
            f"solve attempts left: {attempts.remaining_solves}/{attempts.max_attempts}"
        )

    def _log_unresolved(self, challenge: CaptchaChallenge, reason: str) -> None:
        logger.error(f"{self._prefix()}❌ Captcha sid={challenge.sid} unresolved: {reason}")
