"""
Unit tests for the invitation sweep loop.

Tests cover:
- Failing sweeps are logged and the loop keeps running
- Cancellation stops the loop
"""

import asyncio
import logging
import sqlite3
from types import SimpleNamespace

import pytest

from vaultapi.vault_server.api.app import sweep_invitations
from vaultapi.vault_server.errors import ErrorCode, VaultError


def sweeping(*outcomes):
    """Services stub whose sweep_expired yields outcomes in turn, then cancels."""
    calls = []

    async def sweep_expired():
        calls.append(len(calls))
        if len(calls) > len(outcomes):
            raise asyncio.CancelledError()
        outcome = outcomes[len(calls) - 1]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    services = SimpleNamespace(invitations=SimpleNamespace(sweep_expired=sweep_expired))
    return services, calls


class TestSweepInvitations:
    """Tests for sweep_invitations()."""

    @pytest.mark.asyncio
    async def test_loop_survives_failures(self, caplog):
        services, calls = sweeping(
            sqlite3.OperationalError("database is locked"),
            VaultError(ErrorCode.DATABASE),
            3,
        )

        with caplog.at_level(logging.ERROR):
            with pytest.raises(asyncio.CancelledError):
                await sweep_invitations(services, 0)

        assert len(calls) == 4
        assert "database is locked" in caplog.text

    @pytest.mark.asyncio
    async def test_cancelled_while_sleeping(self):
        services, calls = sweeping()
        task = asyncio.create_task(sweep_invitations(services, 60))
        await asyncio.sleep(0)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert calls == []
