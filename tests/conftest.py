from __future__ import annotations

import sys
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import pytest
from sqlalchemy.orm import Session, sessionmaker

from gigledger import crud
from gigledger.core.config import Settings
from gigledger.db import create_ledger_engine, create_session_factory, init_db
from gigledger.domain import GigDraft, MilestoneSpec, ProfileInput
from gigledger.services.contract_service import ContractService
from gigledger.services.escrow_service import EscrowService
from gigledger.services.milestone_service import MilestoneService
from gigledger.services.notification_service import NotificationDispatcher
from gigledger.services.proposal_service import ProposalService
from gigledger.services.unit_of_work import UnitOfWork

OWNER = "user-owner"
BIDDER = "user-bidder"
OTHER_BIDDER = "user-other"
ARBITRATOR = "user-arbitrator"


class FakeClock:
    """Monotonic clock the tests can move forward explicitly."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(microseconds=1)
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@dataclass
class Ledger:
    settings: Settings
    session_factory: sessionmaker[Session]
    uow: UnitOfWork
    clock: FakeClock
    dispatcher: NotificationDispatcher
    proposals: ProposalService
    contracts: ContractService
    milestones: MilestoneService
    escrow: EscrowService

    def session(self) -> Session:
        return self.session_factory()


@pytest.fixture
def test_settings(tmp_path, monkeypatch) -> Settings:
    settings = Settings(
        database_url=f"sqlite:///{tmp_path/'gigledger.db'}",
        write_retry_attempts=2,
        write_retry_backoff_seconds="0",
        notification_dedupe_window_seconds=300,
        notification_delivery_batch_size=50,
        escrow_arbitrator_ids=ARBITRATOR,
    )
    monkeypatch.setattr("gigledger.core.config.get_settings", lambda: settings)
    monkeypatch.setattr("gigledger.core.config.settings", settings)
    return settings


@pytest.fixture
def session_factory(test_settings) -> sessionmaker[Session]:
    engine = create_ledger_engine(test_settings.resolved_database_url)
    init_db(bind=engine)
    yield create_session_factory(engine)
    engine.dispose()


@pytest.fixture
def ledger(test_settings, session_factory) -> Ledger:
    uow = UnitOfWork(session_factory, settings=test_settings, sleep=lambda _: None)
    clock = FakeClock()
    dispatcher = NotificationDispatcher(uow, clock=clock)
    return Ledger(
        settings=test_settings,
        session_factory=session_factory,
        uow=uow,
        clock=clock,
        dispatcher=dispatcher,
        proposals=ProposalService(uow, dispatcher),
        contracts=ContractService(uow, dispatcher),
        milestones=MilestoneService(uow, dispatcher),
        escrow=EscrowService(uow, dispatcher),
    )


@pytest.fixture
def make_gig(ledger):
    """Post a gig as ``OWNER`` and return its id."""

    def _make(budget: str | None = "1000", *, owner_id: str = OWNER, **overrides) -> str:
        draft = GigDraft(
            title=overrides.pop("title", "Mix my EP"),
            budget=Decimal(budget) if budget is not None else None,
            required_skills=["mixing", "mastering"],
            gig_type="mixing_mastering",
            **overrides,
        )
        with ledger.uow.session_scope() as session:
            return crud.create_gig(session, owner_id, draft).gig_id

    return _make


@pytest.fixture
def signed_contract(ledger, make_gig):
    """An active contract for a 1000 budget gig, optionally planned with milestones."""

    def _make(*percentages: str) -> str:
        gig_id = make_gig("1000")
        proposal = ledger.proposals.submit_proposal(gig_id, BIDDER, "I can do it")
        contract = ledger.proposals.accept_proposal(proposal.proposal_id, OWNER)
        specs = [
            MilestoneSpec(title=f"Stage {index}", payment_percentage=Decimal(pct))
            for index, pct in enumerate(percentages, start=1)
        ]
        ledger.contracts.sign_contract(contract.contract_id, BIDDER, milestones=specs or None)
        return contract.contract_id

    return _make


@pytest.fixture
def profiles(ledger):
    with ledger.uow.session_scope() as session:
        crud.upsert_profiles(
            session,
            [
                ProfileInput(user_id=OWNER, full_name="Olive Owner", username="olive"),
                ProfileInput(user_id=BIDDER, full_name="Ben Bidder", username="ben"),
            ],
        )
