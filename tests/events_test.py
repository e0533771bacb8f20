from unittest.mock import MagicMock, patch
from fastapi import status
from sqlalchemy.exc import OperationalError
from data.database import RecordedEvent, Variant, VariantDailyStat
from celery_tasks.event_tasks import record_variant_event
from models.results import ExperimentResults


def create_experiment(client, headers, start=True):
    payload = {
        "name": "Signup copy test",
        "variants": [
            {"name": "Control", "is_control": True, "traffic_percentage": 50},
            {"name": "Short copy", "traffic_percentage": 50},
        ],
    }
    data = client.post("/experiments", json=payload, headers=headers).json()
    if start:
        client.post(f"/experiments/{data['id']}/status", json={"action": "start"}, headers=headers)
    return data


def visit(variant_id, event_id="evt-1"):
    return {
        "event_id": event_id,
        "variant_id": variant_id,
        "type": "visit",
        "timestamp": "2025-12-08T21:00:00+00:00",
    }


def test_record_event_queues_task(client, auth_headers):
    payload = {"event_id": "evt-42", "variant_id": 7, "type": "conversion", "timestamp": "2025-12-08T21:00:00Z"}

    with patch("api.events_routes.record_variant_event") as mock_task:
        mock_task.delay.return_value = MagicMock(id="task-123")
        response = client.post("/events", json=payload, headers=auth_headers)

    assert response.status_code == status.HTTP_202_ACCEPTED
    assert response.json() == {"status": "success", "task_id": "task-123"}

    task_payload = mock_task.delay.call_args.args[0]
    assert task_payload["event_id"] == "evt-42"
    assert task_payload["variant_id"] == 7
    assert task_payload["type"] == "conversion"
    assert task_payload["timestamp"].startswith("2025-12-08T21:00:00")


def test_record_event_generates_event_id(client, auth_headers):
    with patch("api.events_routes.record_variant_event") as mock_task:
        mock_task.delay.return_value = MagicMock(id="task-123")
        client.post("/events", json={"variant_id": 7, "type": "visit"}, headers=auth_headers)
        client.post("/events", json={"variant_id": 7, "type": "visit"}, headers=auth_headers)

    first, second = [c.args[0]["event_id"] for c in mock_task.delay.call_args_list]
    assert first and second and first != second


def test_record_event_rejects_unknown_type(client, auth_headers):
    payload = {"variant_id": 7, "type": "purchase"}
    with patch("api.events_routes.record_variant_event") as mock_task:
        response = client.post("/events", json=payload, headers=auth_headers)

    assert response.status_code == 422
    mock_task.delay.assert_not_called()


def test_record_event_requires_token(client):
    response = client.post("/events", json={"variant_id": 7, "type": "visit"})
    assert response.status_code == status.HTTP_401_UNAUTHORIZED


def test_task_updates_counters_and_invalidates_results(client, db_session, session_local, cache_client, auth_headers):
    data = create_experiment(client, auth_headers)
    variant_id = data["variants"][1]["id"]
    cache_client.set_results(data["id"], ExperimentResults(variant_results=[], total_visitors=0, total_conversions=0))

    with patch("celery_tasks.event_tasks.SessionLocal", session_local), \
            patch("celery_tasks.event_tasks.get_cache_client", return_value=cache_client):
        for event_id, event_type in (("evt-1", "visit"), ("evt-2", "visit"), ("evt-3", "conversion")):
            record_variant_event.apply(args=({
                "event_id": event_id,
                "variant_id": variant_id,
                "type": event_type,
                "timestamp": "2025-12-08T21:00:00+00:00",
            },))

    variant = db_session.query(Variant).filter(Variant.id == variant_id).one()
    assert (variant.visitors, variant.conversions, variant.total_views) == (2, 1, 2)

    bucket = db_session.query(VariantDailyStat).filter(VariantDailyStat.variant_id == variant_id).one()
    assert (bucket.day.isoformat(), bucket.visitors, bucket.conversions) == ("2025-12-08", 2, 1)

    assert cache_client.get_results(data["id"]) is None


def test_task_retry_after_commit_counts_event_once(client, db_session, session_local, cache_client, auth_headers):
    data = create_experiment(client, auth_headers)
    variant_id = data["variants"][1]["id"]
    cache_client.set_results(data["id"], ExperimentResults(variant_results=[], total_visitors=0, total_conversions=0))
    cache_down = OperationalError("INCR", {}, Exception("connection reset"))

    # The first attempt commits the visit, then fails and is retried
    with patch("celery_tasks.event_tasks.SessionLocal", session_local), \
            patch("celery_tasks.event_tasks.get_cache_client", side_effect=[cache_down, cache_client]) as mock_cache:
        record_variant_event.apply(args=(visit(variant_id),))

    assert mock_cache.call_count == 2

    variant = db_session.query(Variant).filter(Variant.id == variant_id).one()
    assert (variant.visitors, variant.total_views) == (1, 1)
    bucket = db_session.query(VariantDailyStat).filter(VariantDailyStat.variant_id == variant_id).one()
    assert bucket.visitors == 1

    # The retry still drops the cached results
    assert cache_client.get_results(data["id"]) is None


def test_task_redelivery_counts_event_once(client, db_session, session_local, cache_client, auth_headers):
    data = create_experiment(client, auth_headers)
    variant_id = data["variants"][1]["id"]

    with patch("celery_tasks.event_tasks.SessionLocal", session_local), \
            patch("celery_tasks.event_tasks.get_cache_client", return_value=cache_client):
        for _ in range(2):
            result = record_variant_event.apply(args=(visit(variant_id),))
            assert result.successful()

    variant = db_session.query(Variant).filter(Variant.id == variant_id).one()
    assert variant.visitors == 1
    assert db_session.query(RecordedEvent).count() == 1


def test_task_drops_events_for_completed_experiment(client, db_session, session_local, cache_client, auth_headers):
    data = create_experiment(client, auth_headers)
    variant_id = data["variants"][1]["id"]
    client.post(f"/experiments/{data['id']}/status", json={"action": "complete"}, headers=auth_headers)

    with patch("celery_tasks.event_tasks.SessionLocal", session_local), \
            patch("celery_tasks.event_tasks.get_cache_client", return_value=cache_client):
        result = record_variant_event.apply(args=(visit(variant_id),))

    assert result.successful()
    variant = db_session.query(Variant).filter(Variant.id == variant_id).one()
    assert (variant.visitors, variant.total_views) == (0, 0)
    assert db_session.query(VariantDailyStat).count() == 0


def test_task_drops_unknown_variant(session_local, cache_client):
    with patch("celery_tasks.event_tasks.SessionLocal", session_local), \
            patch("celery_tasks.event_tasks.get_cache_client", return_value=cache_client):
        result = record_variant_event.apply(args=(visit(999),))

    assert result.successful()
