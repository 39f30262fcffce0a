"""
Vault Server - Multi-tenant encrypted vault API.

This package implements the server side of a vault service built on:
- Organizations that own Stores, and Stores that hold trees of Entries
- Per-store content keys wrapped under every authorized user's password hash
- Invitations as the only way to grant access to an organization or store
- Sharded SQLite storage with a registry group and a data group

Architecture:
    ┌─────────────┐     ┌─────────────┐     ┌─────────────────┐
    │   Client    │────▶│  FastAPI    │────▶│    Services     │
    │  (browser)  │     │  (cookie)   │     │ (chains/steps)  │
    └─────────────┘     └─────────────┘     └────────┬────────┘
                                                     │
                        ┌────────────────────────────┼──────────────┐
                        │                            │              │
                        ▼                            ▼              ▼
                   ┌─────────┐                 ┌──────────┐   ┌──────────┐
                   │Registry │                 │  Data    │   │  AMQP    │
                   │ group 0 │                 │ group 1  │   │  queue   │
                   └─────────┘                 └──────────┘   └──────────┘

Invariants:
    - Every persisted row has exactly one 64-bit global id that routes it
    - Store content keys are never persisted in clear
    - Data rows are written before their registry rows
    - A pending invitation is only trusted after its expiry is revalidated

How to change safely:
    - Never reuse an object type tag or change the id bit layout
    - Keep the wrapped-key blob format versioned
    - Add error codes; never renumber existing ones
"""

from ._version import __version__

__all__ = ["__version__"]
