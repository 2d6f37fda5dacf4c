"""
Shared builders for the test suite
"""

import asyncio
from typing import Optional

from medrec_sec.config import CustodyConfig
from medrec_sec.exceptions import LedgerRejectedError, StoreUnavailableError
from medrec_sec.identity.models import Role
from medrec_sec.ledger.client import LedgerClient
from medrec_sec.ledger.events import Mutation
from medrec_sec.ledger.local import LocalLedger
from medrec_sec.service import CustodyServices, build_services
from medrec_sec.store.adapter import ContentStore, InMemoryContentStore

ROOT = "0xd9073e73717fca172f29b55a0368ae41de35d237"
ADMIN = "0x" + "a1" * 20
SUBJECT = "0x" + "b1" * 20
SUBJECT_2 = "0x" + "b2" * 20
HANDLER_1 = "0x" + "c1" * 20
HANDLER_2 = "0x" + "c2" * 20
HANDLER_3 = "0x" + "c3" * 20
STRANGER = "0x" + "d1" * 20


class FlakyStore(InMemoryContentStore):
    """In-memory store whose unpin can be switched off"""

    def __init__(self):
        super().__init__()
        self.unpin_available = True
        self.unpin_calls = []

    async def unpin(self, content_hash: str) -> None:
        self.unpin_calls.append(content_hash)
        if not self.unpin_available:
            raise StoreUnavailableError("unpin", reason="node_offline")
        await super().unpin(content_hash)


class SlowUnpinStore(InMemoryContentStore):
    """In-memory store whose unpin waits until the test releases it"""

    def __init__(self):
        super().__init__()
        self.unpin_started = asyncio.Event()
        self.release_unpin = asyncio.Event()
        self.put_calls = 0
        self.first_put_done = asyncio.Event()

    async def put(self, data: bytes) -> str:
        digest = await super().put(data)
        self.put_calls += 1
        self.first_put_done.set()
        return digest

    async def unpin(self, content_hash: str) -> None:
        self.unpin_started.set()
        await self.release_unpin.wait()
        await super().unpin(content_hash)


class FailingLedger(LocalLedger):
    """Local ledger that refuses selected mutation kinds"""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.fail_kinds = set()

    async def submit(self, mutation: Mutation):
        if mutation.kind in self.fail_kinds:
            raise LedgerRejectedError(mutation.mutation_id, reason="node_unavailable")
        return await super().submit(mutation)


def make_config(**overrides) -> CustodyConfig:
    settings = {
        "root_admin_address": ROOT,
        "ledger_timeout_seconds": 2.0,
        "store_timeout_seconds": 2.0,
        "ledger_database_url": "sqlite://",
    }
    settings.update(overrides)
    return CustodyConfig(**settings)


def make_services(ledger: Optional[LedgerClient] = None, store: Optional[ContentStore] = None,
                  **config_overrides) -> CustodyServices:
    return build_services(
        ledger=ledger or LocalLedger(),
        store=store or InMemoryContentStore(),
        config=make_config(**config_overrides),
    )


async def populate(services: CustodyServices) -> None:
    """Root admin, one more admin, two subjects and three handlers"""
    await services.start()
    registry = services.registry
    await registry.add_identity(ADMIN, "Ops Admin", Role.ADMINISTRATOR, caller=ROOT)
    await registry.add_identity(SUBJECT, "Alice", Role.SUBJECT, caller=ROOT)
    await registry.add_identity(SUBJECT_2, "Bob", Role.SUBJECT, caller=ROOT)
    await registry.add_identity(HANDLER_1, "Dr. One", Role.HANDLER, caller=ROOT)
    await registry.add_identity(HANDLER_2, "Dr. Two", Role.HANDLER, caller=ROOT)
    await registry.add_identity(HANDLER_3, "Dr. Three", Role.HANDLER, caller=ROOT)


async def grant_access(services: CustodyServices, subject: str, handler: str) -> None:
    await services.consent.request(subject, handler)
    await services.consent.approve(subject, handler, subject)
