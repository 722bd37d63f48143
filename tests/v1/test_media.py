import pytest
from fastapi import status

from media_gate.models import ModerationDecision
from media_gate.models.media import (
    PROCESSING_ANALYZING,
    PROCESSING_APPROVED,
    PROCESSING_FAILED,
    PROCESSING_RECEIVED,
    PROCESSING_REJECTED,
)
from media_gate.models.moderation import DECISION_REJECTED
from media_gate.services.errors import ErrorKind


def test_submit_queues_item_and_returns_immediately(client, mock_pool, make_item):
    item = make_item()

    response = client.post(f"/api/v1/media/{item.id}/submit")

    assert response.status_code == status.HTTP_202_ACCEPTED
    assert response.json() == {"item_id": item.id, "accepted": True, "visibility": "processing"}
    mock_pool.submit.assert_called_once_with(item.id)


def test_submit_unknown_item_returns_404(client, mock_pool):
    response = client.post("/api/v1/media/does-not-exist/submit")

    assert response.status_code == status.HTTP_404_NOT_FOUND
    mock_pool.submit.assert_not_called()


def test_submit_terminal_item_is_acknowledged_without_queueing(client, mock_pool, make_item):
    item = make_item(status=PROCESSING_APPROVED, cdn_asset_id="asset-1")

    response = client.post(f"/api/v1/media/{item.id}/submit")

    assert response.status_code == status.HTTP_202_ACCEPTED
    assert response.json()["visibility"] == "published"
    mock_pool.submit.assert_not_called()


def test_submit_with_full_queue_returns_503(client, mock_pool, make_item):
    mock_pool.submit.return_value = False
    item = make_item()

    response = client.post(f"/api/v1/media/{item.id}/submit")

    assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE


@pytest.mark.parametrize(
    ("processing_status", "visibility"),
    [
        (PROCESSING_RECEIVED, "processing"),
        (PROCESSING_ANALYZING, "processing"),
        (PROCESSING_APPROVED, "published"),
        (PROCESSING_REJECTED, "not_available"),
        (PROCESSING_FAILED, "not_available"),
    ],
)
def test_status_maps_processing_status_to_visibility(
    client, make_item, processing_status, visibility
):
    item = make_item(status=processing_status)

    response = client.get(f"/api/v1/media/{item.id}/status")

    assert response.status_code == status.HTTP_200_OK
    body = response.json()
    assert body["item_id"] == item.id
    assert body["processing_status"] == processing_status
    assert body["visibility"] == visibility
    assert body["recovery_attempts"] == 0


def test_status_reports_failure_reason(client, make_item):
    item = make_item(status=PROCESSING_FAILED, rejection_reason=ErrorKind.SOURCE_MISSING.value)

    body = client.get(f"/api/v1/media/{item.id}/status").json()

    assert body["rejection_reason"] == "SourceMissing"
    assert body["cdn_asset_id"] is None


def test_status_unknown_item_returns_404(client):
    response = client.get("/api/v1/media/does-not-exist/status")

    assert response.status_code == status.HTTP_404_NOT_FOUND


def test_decisions_lists_history_in_order(client, make_item, db_session):
    item = make_item(status=PROCESSING_REJECTED, rejection_reason="weapon")
    db_session.add_all(
        [
            ModerationDecision(
                media_item_id=item.id,
                outcome=DECISION_REJECTED,
                reason="weapon",
                reasoning="Disallowed visual content: weapon (1.00)",
                confidence=1.0,
                categories=["weapon"],
                attempt=0,
            ),
        ]
    )
    db_session.commit()

    response = client.get(f"/api/v1/media/{item.id}/decisions")

    assert response.status_code == status.HTTP_200_OK
    decisions = response.json()
    assert len(decisions) == 1
    assert decisions[0]["outcome"] == "rejected"
    assert decisions[0]["categories"] == ["weapon"]
    assert decisions[0]["moderator_id"] is None


def test_decisions_unknown_item_returns_404(client):
    response = client.get("/api/v1/media/does-not-exist/decisions")

    assert response.status_code == status.HTTP_404_NOT_FOUND
