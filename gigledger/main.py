from __future__ import annotations

from typing import Annotated

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from loguru import logger

from . import crud, schemas
from .core.config import settings
from .db import get_db, init_db
from .domain import GigDraft, MilestoneSpec, ProfileInput
from .errors import (
    DuplicateProposal,
    InvalidState,
    InvalidTransition,
    LedgerError,
    MilestonesIncomplete,
    NotFound,
    PersistenceFailure,
    Unauthorized,
    ValidationFailure,
)
from .services.contract_service import ContractService
from .services.escrow_service import EscrowService
from .services.marketplace_service import GigQuery, MarketplaceService
from .services.milestone_service import MilestoneService
from .services.notification_service import NotificationDispatcher
from .services.proposal_service import ProposalService
from .services.unit_of_work import UnitOfWork

app = FastAPI(title="GigLedger API", version="0.1.0", debug=settings.debug)

_ERROR_STATUS: dict[type[LedgerError], int] = {
    NotFound: 404,
    Unauthorized: 403,
    InvalidState: 409,
    InvalidTransition: 409,
    DuplicateProposal: 409,
    MilestonesIncomplete: 409,
    ValidationFailure: 422,
    PersistenceFailure: 503,
}


@app.on_event("startup")
def on_startup() -> None:
    """Initialize database connections when the API boots."""

    init_db()


@app.exception_handler(LedgerError)
def handle_ledger_error(request: Request, exc: LedgerError) -> JSONResponse:
    status_code = next(
        (_ERROR_STATUS[cls] for cls in type(exc).__mro__ if cls in _ERROR_STATUS),
        400,
    )
    if status_code >= 500:
        logger.error("{} {} failed: {}", request.method, request.url.path, exc.message)
    content = schemas.ErrorResponse(code=exc.code, detail=exc.message).model_dump()
    if isinstance(exc, MilestonesIncomplete):
        content["pending_milestone_ids"] = exc.pending_milestone_ids
    return JSONResponse(status_code=status_code, content=content)


@app.get("/healthz", tags=["system"])
def healthcheck() -> dict[str, str]:
    """Basic readiness probe consumed by infrastructure monitors."""

    return {"status": "ok"}


# ----------------------------------------------------------------------
# Dependencies


def _acting_user(
    x_user_id: Annotated[str | None, Header(alias="X-User-Id")] = None,
) -> str:
    """Identity supplied by the upstream identity provider."""

    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="X-User-Id header is required")
    return x_user_id.strip()


def _unit_of_work() -> UnitOfWork:
    return UnitOfWork()


def _dispatcher(uow: UnitOfWork = Depends(_unit_of_work)) -> NotificationDispatcher:
    return NotificationDispatcher(uow)


def _proposal_service(
    uow: UnitOfWork = Depends(_unit_of_work),
    dispatcher: NotificationDispatcher = Depends(_dispatcher),
) -> ProposalService:
    return ProposalService(uow, dispatcher)


def _contract_service(
    uow: UnitOfWork = Depends(_unit_of_work),
    dispatcher: NotificationDispatcher = Depends(_dispatcher),
) -> ContractService:
    return ContractService(uow, dispatcher)


def _milestone_service(
    uow: UnitOfWork = Depends(_unit_of_work),
    dispatcher: NotificationDispatcher = Depends(_dispatcher),
) -> MilestoneService:
    return MilestoneService(uow, dispatcher)


def _escrow_service(
    uow: UnitOfWork = Depends(_unit_of_work),
    dispatcher: NotificationDispatcher = Depends(_dispatcher),
) -> EscrowService:
    return EscrowService(uow, dispatcher)


def _marketplace_service(db=Depends(get_db)) -> MarketplaceService:
    """Provide the read facade wired with a SQLAlchemy session."""

    return MarketplaceService(db)


def _gig_query(
    *,
    status: Annotated[str | None, Query(description="Gig status filter", example="open")] = "open",
    owner_id: Annotated[str | None, Query(description="Only gigs posted by this user")] = None,
    gig_type: Annotated[str | None, Query(description="Gig type filter")] = None,
    sort: Annotated[
        str,
        Query(description="Field to sort by", pattern="^(created_at|deadline|budget)$"),
    ] = "created_at",
    order: Annotated[
        str,
        Query(description="Sort order (asc|desc)", pattern="^(asc|desc)$", min_length=3, max_length=4),
    ] = "desc",
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> GigQuery:
    """Normalize gig listing query parameters."""

    return GigQuery(
        status=status,
        owner_id=owner_id,
        gig_type=gig_type,
        sort=sort,
        order=order,
        limit=limit,
        offset=offset,
    )


def _milestone_specs(plan: schemas.MilestonePlan | None) -> list[MilestoneSpec]:
    if plan is None:
        return []
    return [
        MilestoneSpec(
            title=item.title,
            payment_percentage=item.payment_percentage,
            description=item.description,
            due_date=item.due_date,
        )
        for item in plan.milestones
    ]


# ----------------------------------------------------------------------
# Gigs and profiles


@app.get("/gigs", response_model=schemas.GigList, tags=["gigs"])
def list_gigs(
    *,
    query: GigQuery = Depends(_gig_query),
    service: MarketplaceService = Depends(_marketplace_service),
):
    """List gigs with their live proposal counts."""

    result = service.list_gigs(query)
    return schemas.GigList(total=result.total, items=list(result.gigs))


@app.post("/gigs", response_model=schemas.Gig, status_code=201, tags=["gigs"])
def create_gig(
    body: schemas.GigCreate,
    user_id: str = Depends(_acting_user),
    db=Depends(get_db),
):
    draft = GigDraft(
        title=body.title,
        description=body.description,
        budget=body.budget,
        deadline=body.deadline,
        required_skills=body.required_skills,
        category=body.category,
        gig_type=body.gig_type,
        location=body.location,
    )
    gig = crud.create_gig(db, user_id, draft)
    db.commit()
    logger.info("Gig {} posted by {}", gig.gig_id, user_id)
    return schemas.Gig.model_validate(gig)


@app.get("/gigs/{gig_id}", response_model=schemas.GigListing, tags=["gigs"])
def get_gig(gig_id: str, service: MarketplaceService = Depends(_marketplace_service)):
    return service.get_gig(gig_id)


@app.post("/gigs/{gig_id}/cancel", response_model=schemas.Gig, tags=["gigs"])
def cancel_gig(
    gig_id: str,
    user_id: str = Depends(_acting_user),
    service: ContractService = Depends(_contract_service),
):
    return service.cancel_gig(gig_id, user_id)


@app.put("/profiles/me", response_model=schemas.ProfileSummary, tags=["profiles"])
def update_profile(
    body: schemas.ProfileSummary,
    user_id: str = Depends(_acting_user),
    db=Depends(get_db),
):
    profile = crud.upsert_profile(
        db,
        ProfileInput(
            user_id=user_id,
            full_name=body.full_name,
            username=body.username,
            avatar_url=body.avatar_url,
        ),
    )
    db.commit()
    return schemas.ProfileSummary.model_validate(profile)


# ----------------------------------------------------------------------
# Proposals


@app.get(
    "/gigs/{gig_id}/proposals",
    response_model=list[schemas.ProposalWithBidder],
    tags=["proposals"],
)
def list_proposals(
    gig_id: str,
    user_id: str = Depends(_acting_user),
    service: MarketplaceService = Depends(_marketplace_service),
):
    """The gig owner sees every proposal; bidders see their own."""

    return service.list_proposals(gig_id, user_id)


@app.post(
    "/gigs/{gig_id}/proposals",
    response_model=schemas.Proposal,
    status_code=201,
    tags=["proposals"],
)
def submit_proposal(
    gig_id: str,
    body: schemas.ProposalCreate,
    user_id: str = Depends(_acting_user),
    service: ProposalService = Depends(_proposal_service),
):
    return service.submit_proposal(
        gig_id, user_id, body.message, rate=body.rate, timeline=body.timeline
    )


@app.post("/proposals/{proposal_id}/accept", response_model=schemas.Contract, tags=["proposals"])
def accept_proposal(
    proposal_id: str,
    user_id: str = Depends(_acting_user),
    service: ProposalService = Depends(_proposal_service),
):
    """Accept a proposal; retrying a successful accept returns the same contract."""

    return service.accept_proposal(proposal_id, user_id)


@app.post("/proposals/{proposal_id}/reject", response_model=schemas.Proposal, tags=["proposals"])
def reject_proposal(
    proposal_id: str,
    user_id: str = Depends(_acting_user),
    service: ProposalService = Depends(_proposal_service),
):
    return service.reject_proposal(proposal_id, user_id)


@app.post("/proposals/{proposal_id}/withdraw", response_model=schemas.Proposal, tags=["proposals"])
def withdraw_proposal(
    proposal_id: str,
    user_id: str = Depends(_acting_user),
    service: ProposalService = Depends(_proposal_service),
):
    return service.withdraw_proposal(proposal_id, user_id)


# ----------------------------------------------------------------------
# Contracts and milestones


@app.get("/contracts", response_model=schemas.ContractList, tags=["contracts"])
def list_contracts(
    status: Annotated[str | None, Query(description="Contract status filter")] = None,
    user_id: str = Depends(_acting_user),
    service: MarketplaceService = Depends(_marketplace_service),
):
    result = service.list_contracts(user_id, status=status)
    return schemas.ContractList(total=result.total, items=list(result.contracts))


@app.get("/contracts/{contract_id}", response_model=schemas.ContractSummary, tags=["contracts"])
def get_contract(
    contract_id: str,
    user_id: str = Depends(_acting_user),
    service: MarketplaceService = Depends(_marketplace_service),
):
    return service.get_contract(contract_id, user_id)


@app.post("/contracts/{contract_id}/sign", response_model=schemas.Contract, tags=["contracts"])
def sign_contract(
    contract_id: str,
    plan: schemas.MilestonePlan | None = None,
    user_id: str = Depends(_acting_user),
    service: ContractService = Depends(_contract_service),
):
    """Sign as the professional, optionally planning milestones in the same commit."""

    return service.sign_contract(contract_id, user_id, milestones=_milestone_specs(plan) or None)


@app.post("/contracts/{contract_id}/complete", response_model=schemas.Contract, tags=["contracts"])
def complete_contract(
    contract_id: str,
    user_id: str = Depends(_acting_user),
    service: ContractService = Depends(_contract_service),
):
    return service.complete_contract(contract_id, user_id)


@app.post(
    "/contracts/{contract_id}/reviews",
    response_model=schemas.Review,
    status_code=201,
    tags=["contracts"],
)
def leave_review(
    contract_id: str,
    body: schemas.ReviewCreate,
    user_id: str = Depends(_acting_user),
    service: ContractService = Depends(_contract_service),
):
    return service.leave_review(contract_id, user_id, body.rating, comment=body.comment)


@app.get(
    "/contracts/{contract_id}/milestones",
    response_model=list[schemas.Milestone],
    tags=["milestones"],
)
def list_milestones(
    contract_id: str,
    service: MilestoneService = Depends(_milestone_service),
):
    return service.list_milestones(contract_id)


@app.post(
    "/contracts/{contract_id}/milestones",
    response_model=list[schemas.Milestone],
    status_code=201,
    tags=["milestones"],
)
def create_milestones(
    contract_id: str,
    plan: schemas.MilestonePlan,
    user_id: str = Depends(_acting_user),
    service: MilestoneService = Depends(_milestone_service),
):
    return service.create_milestones(contract_id, user_id, _milestone_specs(plan))


@app.post("/milestones/{milestone_id}/advance", response_model=schemas.Milestone, tags=["milestones"])
def advance_milestone(
    milestone_id: str,
    body: schemas.MilestoneAdvance,
    user_id: str = Depends(_acting_user),
    service: MilestoneService = Depends(_milestone_service),
):
    return service.advance(milestone_id, user_id, body.target_status)


# ----------------------------------------------------------------------
# Escrow


@app.get(
    "/contracts/{contract_id}/escrow",
    response_model=list[schemas.EscrowTransaction],
    tags=["escrow"],
)
def list_escrow(
    contract_id: str,
    service: EscrowService = Depends(_escrow_service),
):
    return service.list_for_contract(contract_id)


@app.post(
    "/contracts/{contract_id}/escrow",
    response_model=schemas.EscrowTransaction,
    status_code=201,
    tags=["escrow"],
)
def initiate_escrow(
    contract_id: str,
    body: schemas.EscrowInitiate,
    user_id: str = Depends(_acting_user),
    service: EscrowService = Depends(_escrow_service),
):
    return service.initiate(contract_id, user_id, amount=body.amount, milestone_id=body.milestone_id)


@app.post("/escrow/{escrow_id}/fund", response_model=schemas.EscrowTransaction, tags=["escrow"])
def fund_escrow(
    escrow_id: str,
    user_id: str = Depends(_acting_user),
    service: EscrowService = Depends(_escrow_service),
):
    return service.fund(escrow_id, user_id)


@app.post("/escrow/{escrow_id}/release", response_model=schemas.EscrowTransaction, tags=["escrow"])
def release_escrow(
    escrow_id: str,
    body: schemas.EscrowRelease | None = None,
    user_id: str = Depends(_acting_user),
    service: EscrowService = Depends(_escrow_service),
):
    override = body.override if body is not None else False
    return service.release(escrow_id, user_id, override=override)


@app.post("/escrow/{escrow_id}/dispute", response_model=schemas.EscrowTransaction, tags=["escrow"])
def dispute_escrow(
    escrow_id: str,
    body: schemas.EscrowDispute,
    user_id: str = Depends(_acting_user),
    service: EscrowService = Depends(_escrow_service),
):
    return service.dispute(escrow_id, user_id, body.reason)


@app.post("/escrow/{escrow_id}/resolve", response_model=schemas.EscrowTransaction, tags=["escrow"])
def resolve_escrow(
    escrow_id: str,
    body: schemas.EscrowResolve,
    user_id: str = Depends(_acting_user),
    service: EscrowService = Depends(_escrow_service),
):
    """Arbitrator-only settlement of a disputed escrow."""

    return service.resolve(escrow_id, user_id, body.outcome, note=body.note)


# ----------------------------------------------------------------------
# Notifications


@app.get("/notifications", response_model=schemas.NotificationList, tags=["notifications"])
def list_notifications(
    unread_only: Annotated[bool, Query(description="Only unread notifications")] = False,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
    user_id: str = Depends(_acting_user),
    dispatcher: NotificationDispatcher = Depends(_dispatcher),
):
    """Return the caller's inbox, newest first."""

    items = dispatcher.list_for(user_id, unread_only=unread_only, limit=limit, offset=offset)
    return schemas.NotificationList(unread=dispatcher.unread_count(user_id), items=items)


@app.post("/notifications/read-all", tags=["notifications"])
def mark_all_notifications_read(
    user_id: str = Depends(_acting_user),
    dispatcher: NotificationDispatcher = Depends(_dispatcher),
) -> dict[str, int]:
    return {"updated": dispatcher.mark_all_read(user_id)}


@app.post(
    "/notifications/{notification_id}/read",
    response_model=schemas.Notification,
    tags=["notifications"],
)
def mark_notification_read(
    notification_id: str,
    user_id: str = Depends(_acting_user),
    dispatcher: NotificationDispatcher = Depends(_dispatcher),
):
    return dispatcher.mark_read(notification_id, user_id)
