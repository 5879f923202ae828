"""Deadline shared by the Kubernetes calls of one provisioning pass."""

from __future__ import annotations

from datetime import timedelta

from safir.datetime import current_datetime

__all__ = ["Timeout"]


class Timeout:
    """Deadline for every API call made while handling one workspace.

    A provisioning or cleanup pass issues a variable number of Kubernetes
    calls. Each call gets whatever is left of the budget given to the pass
    rather than a fixed per-call timeout.

    Parameters
    ----------
    budget
        Total time allowed for the pass.
    """

    def __init__(self, budget: timedelta) -> None:
        self._budget = budget
        self._deadline = current_datetime(microseconds=True) + budget

    def remaining(self) -> timedelta:
        """Time left before the deadline, negative once it has passed."""
        return self._deadline - current_datetime(microseconds=True)

    def request_args(self) -> dict[str, float]:
        """Keyword arguments limiting one ``kubernetes_asyncio`` call.

        Raises
        ------
        TimeoutError
            Raised if the deadline has already passed.
        """
        seconds = self.remaining().total_seconds()
        if seconds <= 0:
            budget = self._budget.total_seconds()
            raise TimeoutError(f"Kubernetes calls exceeded {budget}s budget")
        return {"_request_timeout": seconds}
