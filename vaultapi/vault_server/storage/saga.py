"""
Saga: sequenced cross-shard writes with compensation.

Shards do not share transactions. A write that touches a data row and a
registry row (or a forward and a reverse membership row) runs as a saga:

    saga = Saga("create-user")
    user = await saga.step("user", insert_user, delete_user)
    await saga.step("registry", insert_registry)

If a step fails, the compensations of the completed steps run in reverse
order and the error is re-raised.

Invariants:
    - Source rows are written before registry rows
    - A failed saga leaves no row written by its completed steps
      (unless a compensation itself fails, which is logged for repair)
    - Non-VaultError failures surface as VaultError(5100)
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from ..errors import ErrorCode, VaultError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Action = Callable[[], Awaitable[T]]
Compensation = Callable[[Any], Awaitable[None] | None]


@dataclass
class _Completed:
    name: str
    result: Any
    compensate: Compensation | None


class Saga:
    """Ordered cross-shard write with compensating undo.

    Attributes:
        name: Saga name (for logs)
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._completed: list[_Completed] = []

    async def step(
        self,
        name: str,
        action: Action,
        compensate: Compensation | None = None,
    ) -> Any:
        """Run one step.

        Args:
            name: Step name (for logs)
            action: Coroutine function performing the write
            compensate: Undo callable, receives the action's result

        Returns:
            The action's result

        Raises:
            VaultError: The step's error, after compensation
        """
        try:
            result = await action()
        except Exception as e:
            await self._rollback(name, e)
            if isinstance(e, VaultError):
                raise
            raise VaultError(
                ErrorCode.DATABASE, details={"saga": self.name, "step": name}
            ) from e

        self._completed.append(_Completed(name, result, compensate))
        return result

    async def _rollback(self, failed_step: str, error: Exception) -> None:
        logger.warning(
            f"Saga {self.name} failed at step {failed_step}: {error}",
            extra={"saga": self.name, "step": failed_step},
        )
        while self._completed:
            completed = self._completed.pop()
            if completed.compensate is None:
                continue
            try:
                outcome = completed.compensate(completed.result)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                # Row left behind; registry lookups treat it as a repair case
                logger.exception(
                    f"Saga {self.name} compensation failed for step {completed.name}",
                    extra={"saga": self.name, "step": completed.name},
                )

    @property
    def steps(self) -> list[str]:
        """Names of the completed steps."""
        return [completed.name for completed in self._completed]
