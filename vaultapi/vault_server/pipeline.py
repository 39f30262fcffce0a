"""
Request pipeline: ordered steps over a typed request context.

A request handler is a Chain of async steps. Each step reads and writes
named fields of a context object (see services/context.py) and either
returns normally or stops the chain by raising Abort or any VaultError.

    await Chain(
        "accept-invitation",
        load_invitation,
        group(load_key, unwrap_key),
        register_member,
    ).run(ctx)

Invariants:
    - Steps run strictly in order; a stopped chain runs no further steps
    - Cleanups registered with ctx.defer() run on every exit path, in reverse
      registration order, once per root context
    - A group runs on a child context: it sees the parent's fields, its own
      writes stay local unless exported with ctx.export()
    - ctx.warn() downgrades the response code without stopping the chain

How to change safely:
    - Branch with ordinary conditionals inside a step; chains never grow
      while running
    - Keep cleanups idempotent; they also run after failures
"""

from __future__ import annotations

import copy
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from .errors import ErrorCode, VaultError

logger = logging.getLogger(__name__)

C = TypeVar("C", bound="Context")

Step = Callable[[Any], Awaitable[None]]
Cleanup = Callable[[], Awaitable[None] | None]


class Abort(Exception):
    """Stop the current chain with a response code.

    Attributes:
        error: VaultError surfaced to the client
    """

    def __init__(self, code: int, payload: dict[str, Any] | None = None) -> None:
        self.error = VaultError(code, details=payload)
        super().__init__(self.error.message)


@dataclass(kw_only=True)
class Context:
    """Base request context.

    Attributes:
        parent: Context a group was started from (None for the root)
    """

    parent: Context | None = None
    _cleanups: list[Cleanup] = field(default_factory=list, repr=False)
    _warnings: list[int] = field(default_factory=list, repr=False)

    @property
    def code(self) -> int:
        """Response code for a chain that completed."""
        return self._warnings[-1] if self._warnings else ErrorCode.OK

    def warn(self, code: int) -> None:
        """Record a non-fatal outcome (e.g. 2490 for an unsent email)."""
        self._warnings.append(int(code))

    def defer(self, cleanup: Cleanup) -> None:
        """Register a cleanup to run when the root chain exits."""
        self._cleanups.append(cleanup)

    def child(self: C) -> C:
        """Context for a group: copies fields, shares cleanups and warnings."""
        clone = copy.copy(self)
        clone.parent = self
        return clone

    def export(self, *names: str) -> None:
        """Promote fields written inside a group to the parent context."""
        if self.parent is None:
            return
        for name in names:
            setattr(self.parent, name, getattr(self, name))

    async def run_cleanups(self) -> None:
        while self._cleanups:
            cleanup = self._cleanups.pop()
            try:
                outcome = cleanup()
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                logger.exception("Request cleanup failed")


class Chain:
    """Ordered list of steps run against one context.

    Example:
        >>> chain = Chain("get-org", require_session, load_org, check_roles)
        >>> ctx = await chain.run(OrgRequestContext(...))
    """

    def __init__(self, name: str, *steps: Step) -> None:
        self.name = name
        self.steps = list(steps)

    async def run(self, ctx: C) -> C:
        """Run every step in order.

        Returns:
            The context, after the last step

        Raises:
            VaultError: From the first step that aborted or failed
        """
        try:
            for step in self.steps:
                await step(ctx)
        except Abort as e:
            logger.debug(
                f"Chain {self.name} aborted with {e.error.code}",
                extra={"chain": self.name, "code": e.error.code},
            )
            raise e.error from None
        except VaultError as e:
            logger.debug(
                f"Chain {self.name} stopped with {e.code}",
                extra={"chain": self.name, "code": e.code},
            )
            raise
        finally:
            if ctx.parent is None:
                await ctx.run_cleanups()
        return ctx


def group(*steps: Step, name: str = "group") -> Step:
    """Compose steps into one step that runs on a child context."""
    chain = Chain(name, *steps)

    async def run_group(ctx: Context) -> None:
        await chain.run(ctx.child())

    run_group.__name__ = name
    return run_group
