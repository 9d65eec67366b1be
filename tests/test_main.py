from __future__ import annotations

from datetime import datetime
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from gigledger import schemas
from gigledger.errors import (
    InvalidState,
    MilestonesIncomplete,
    NotFound,
    PersistenceFailure,
    Unauthorized,
)
from gigledger.main import (
    _contract_service,
    _dispatcher,
    _escrow_service,
    _marketplace_service,
    _milestone_service,
    _proposal_service,
    app,
)
from gigledger.services.marketplace_service import ContractQueryResult, GigQueryResult

HEADERS = {"X-User-Id": "user-owner"}


def _contract(**overrides) -> schemas.Contract:
    payload = {
        "contract_id": "c-1",
        "gig_id": "g-1",
        "proposal_id": "p-1",
        "client_id": "user-owner",
        "professional_id": "user-bidder",
        "total_amount": 900,
        "terms": "Mix in two days",
        "status": "pending_signature",
        "created_at": datetime(2026, 1, 1, 12, 0),
    }
    payload.update(overrides)
    return schemas.Contract.model_validate(payload)


@pytest.fixture
def client():
    """Test client that cleans up dependency overrides after each test."""
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_healthcheck(client):
    """Verify the healthcheck endpoint returns a successful response."""
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_list_gigs(client):
    """Verify the /gigs endpoint returns a list of gigs."""
    mock_service = MagicMock()
    mock_service.list_gigs.return_value = GigQueryResult(total=0, gigs=[])
    app.dependency_overrides[_marketplace_service] = lambda: mock_service

    response = client.get("/gigs?sort=budget&order=asc")
    assert response.status_code == 200
    assert response.json() == {"total": 0, "items": []}
    query = mock_service.list_gigs.call_args.args[0]
    assert query.sort == "budget"
    assert query.status == "open"


def test_get_gig_not_found(client):
    """Verify the /gigs/{gig_id} endpoint returns 404 for a missing gig."""
    mock_service = MagicMock()
    mock_service.get_gig.side_effect = NotFound("gig", "missing")
    app.dependency_overrides[_marketplace_service] = lambda: mock_service

    response = client.get("/gigs/missing")
    assert response.status_code == 404
    assert response.json() == {"code": "not_found", "detail": "gig missing does not exist"}


def test_missing_user_header_is_rejected(client):
    mock_service = MagicMock()
    app.dependency_overrides[_proposal_service] = lambda: mock_service

    response = client.post("/proposals/p-1/accept")
    assert response.status_code == 401
    mock_service.accept_proposal.assert_not_called()


def test_accept_proposal(client):
    """Verify accepting a proposal returns the new contract."""
    mock_service = MagicMock()
    mock_service.accept_proposal.return_value = _contract()
    app.dependency_overrides[_proposal_service] = lambda: mock_service

    response = client.post("/proposals/p-1/accept", headers=HEADERS)
    assert response.status_code == 200
    assert response.json()["contract_id"] == "c-1"
    assert response.json()["total_amount"] == 900.0
    mock_service.accept_proposal.assert_called_once_with("p-1", "user-owner")


@pytest.mark.parametrize(
    ("error", "status_code", "code"),
    [
        (Unauthorized("only the gig owner can decide on proposals"), 403, "unauthorized"),
        (InvalidState("this proposal has already been decided"), 409, "invalid_state"),
        (PersistenceFailure("accept_proposal could not be committed"), 503, "persistence_failure"),
    ],
)
def test_ledger_errors_map_to_status_codes(client, error, status_code, code):
    mock_service = MagicMock()
    mock_service.accept_proposal.side_effect = error
    app.dependency_overrides[_proposal_service] = lambda: mock_service

    response = client.post("/proposals/p-1/accept", headers=HEADERS)
    assert response.status_code == status_code
    assert response.json()["code"] == code
    assert response.json()["detail"] == error.message


def test_submit_proposal_validates_body(client):
    mock_service = MagicMock()
    app.dependency_overrides[_proposal_service] = lambda: mock_service

    response = client.post("/gigs/g-1/proposals", headers=HEADERS, json={"message": ""})
    assert response.status_code == 422
    mock_service.submit_proposal.assert_not_called()


def test_sign_contract_with_milestone_plan(client):
    mock_service = MagicMock()
    mock_service.sign_contract.return_value = _contract(status="active")
    app.dependency_overrides[_contract_service] = lambda: mock_service

    response = client.post(
        "/contracts/c-1/sign",
        headers={"X-User-Id": "user-bidder"},
        json={"milestones": [{"title": "Rough mix", "payment_percentage": "60"}]},
    )
    assert response.status_code == 200
    args, kwargs = mock_service.sign_contract.call_args
    assert args == ("c-1", "user-bidder")
    [spec] = kwargs["milestones"]
    assert spec.title == "Rough mix"
    assert str(spec.payment_percentage) == "60"


def test_create_milestones_rejects_empty_title(client):
    mock_service = MagicMock()
    app.dependency_overrides[_milestone_service] = lambda: mock_service

    response = client.post(
        "/contracts/c-1/milestones",
        headers=HEADERS,
        json={"milestones": [{"title": "", "payment_percentage": "50"}]},
    )
    assert response.status_code == 422


def test_release_reports_pending_milestones(client):
    mock_service = MagicMock()
    mock_service.release.side_effect = MilestonesIncomplete(["m-1", "m-2"])
    app.dependency_overrides[_escrow_service] = lambda: mock_service

    response = client.post("/escrow/e-1/release", headers=HEADERS, json={"override": False})
    assert response.status_code == 409
    body = response.json()
    assert body["code"] == "milestones_incomplete"
    assert body["pending_milestone_ids"] == ["m-1", "m-2"]
    mock_service.release.assert_called_once_with("e-1", "user-owner", override=False)


def test_list_contracts(client):
    mock_service = MagicMock()
    mock_service.list_contracts.return_value = ContractQueryResult(total=0, contracts=[])
    app.dependency_overrides[_marketplace_service] = lambda: mock_service

    response = client.get("/contracts?status=active", headers=HEADERS)
    assert response.status_code == 200
    assert response.json() == {"total": 0, "items": []}
    mock_service.list_contracts.assert_called_once_with("user-owner", status="active")


def test_list_notifications(client):
    """Verify the inbox endpoint returns notifications with the unread count."""
    mock_dispatcher = MagicMock()
    notification = schemas.Notification(
        notification_id="n-1",
        recipient_id="user-owner",
        type="proposal_submitted",
        payload={"type": "proposal_submitted", "gigId": "g-1"},
        is_read=False,
        created_at=datetime(2026, 1, 1, 12, 0),
    )
    mock_dispatcher.list_for.return_value = [notification]
    mock_dispatcher.unread_count.return_value = 1
    app.dependency_overrides[_dispatcher] = lambda: mock_dispatcher

    response = client.get("/notifications?unread_only=true", headers=HEADERS)
    assert response.status_code == 200
    body = response.json()
    assert body["unread"] == 1
    assert body["items"][0]["payload"]["gigId"] == "g-1"
    mock_dispatcher.list_for.assert_called_once_with(
        "user-owner", unread_only=True, limit=50, offset=0
    )


def test_mark_all_notifications_read(client):
    mock_dispatcher = MagicMock()
    mock_dispatcher.mark_all_read.return_value = 3
    app.dependency_overrides[_dispatcher] = lambda: mock_dispatcher

    response = client.post("/notifications/read-all", headers=HEADERS)
    assert response.status_code == 200
    assert response.json() == {"updated": 3}
