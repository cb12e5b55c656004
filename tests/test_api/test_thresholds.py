"""Tests for threshold administration endpoints."""

import pytest

from servmon.alerts.errors import ThresholdNotFoundError, ThresholdValidationError

from tests.test_api.conftest import TS, _make_threshold


def _payload(**overrides) -> dict:
    body = {
        "name": "High CPU",
        "metric_type": "cpu",
        "operator": ">",
        "value": 90.0,
        "severity": "critical",
        "enable_discord": True,
    }
    body.update(overrides)
    return body


class TestListThresholds:
    def test_list(self, client, mock_alert_service):
        mock_alert_service.list_thresholds.return_value = [
            _make_threshold(1),
            _make_threshold(2, server_id=5, last_triggered_at=TS),
        ]

        resp = client.get("/thresholds?enabled=true")

        assert resp.status_code == 200
        data = resp.json()
        assert data["total"] == 2
        assert data["thresholds"][1]["server_id"] == 5
        assert data["thresholds"][1]["last_triggered_at"] is not None
        mock_alert_service.list_thresholds.assert_called_once_with(
            enabled=True,
            metric_type=None,
            server_id=None,
            group_id=None,
            limit=100,
            offset=0,
        )

    def test_applicable_for_server(self, client, mock_alert_service):
        mock_alert_service.get_applicable_thresholds.return_value = [
            _make_threshold(3, server_id=1),
            _make_threshold(4),
            _make_threshold(5, group_id=7),
        ]

        resp = client.get("/thresholds/server/1")

        assert resp.status_code == 200
        assert [t["id"] for t in resp.json()["thresholds"]] == [3, 4, 5]
        mock_alert_service.get_applicable_thresholds.assert_called_once_with(1)

    def test_get_one(self, client, mock_alert_service):
        mock_alert_service.get_threshold.return_value = _make_threshold(9)
        resp = client.get("/thresholds/9")
        assert resp.status_code == 200
        assert resp.json()["name"] == "High CPU"

    def test_get_missing(self, client, mock_alert_service):
        mock_alert_service.get_threshold.side_effect = ThresholdNotFoundError(9)
        assert client.get("/thresholds/9").status_code == 404


class TestCreateThreshold:
    def test_create(self, client, mock_alert_service):
        mock_alert_service.create_threshold.return_value = _make_threshold(11, enable_discord=True)

        resp = client.post("/thresholds", json=_payload())

        assert resp.status_code == 201
        assert resp.json()["id"] == 11
        submitted = mock_alert_service.create_threshold.call_args.args[0]
        assert submitted.metric_type == "cpu"
        assert submitted.enable_discord is True

    def test_default_cooldown_from_config(self, client, mock_alert_service):
        mock_alert_service.create_threshold.return_value = _make_threshold(11)

        client.post("/thresholds", json=_payload())

        submitted = mock_alert_service.create_threshold.call_args.args[0]
        assert submitted.cooldown_minutes == mock_alert_service.config.default_cooldown_minutes

    def test_explicit_cooldown(self, client, mock_alert_service):
        mock_alert_service.create_threshold.return_value = _make_threshold(11)

        client.post("/thresholds", json=_payload(cooldown_minutes=0))

        assert mock_alert_service.create_threshold.call_args.args[0].cooldown_minutes == 0

    def test_unknown_operator_rejected(self, client, mock_alert_service):
        resp = client.post("/thresholds", json=_payload(operator="!="))
        assert resp.status_code == 422
        mock_alert_service.create_threshold.assert_not_called()

    def test_unknown_metric_rejected(self, client):
        resp = client.post("/thresholds", json=_payload(metric_type="load"))
        assert resp.status_code == 422

    def test_service_validation_error(self, client, mock_alert_service):
        mock_alert_service.create_threshold.side_effect = ThresholdValidationError(
            ["server_id and group_id are mutually exclusive"]
        )

        resp = client.post("/thresholds", json=_payload(server_id=1, group_id=2))

        assert resp.status_code == 422
        assert "mutually exclusive" in resp.json()["detail"]


class TestUpdateThreshold:
    def test_partial_update(self, client, mock_alert_service):
        mock_alert_service.update_threshold.return_value = _make_threshold(4, value=80.0)

        resp = client.put("/thresholds/4", json={"value": 80.0})

        assert resp.status_code == 200
        assert resp.json()["value"] == 80.0
        mock_alert_service.update_threshold.assert_called_once_with(4, {"value": 80.0})

    def test_explicit_null_clears_scope(self, client, mock_alert_service):
        mock_alert_service.update_threshold.return_value = _make_threshold(4)

        client.put("/thresholds/4", json={"server_id": None})

        assert mock_alert_service.update_threshold.call_args.args[1] == {"server_id": None}

    @pytest.mark.parametrize("field", ["name", "value", "cooldown_minutes", "enabled"])
    def test_null_rejected_for_required_fields(self, client, mock_alert_service, field):
        resp = client.put("/thresholds/4", json={field: None})

        assert resp.status_code == 422
        assert f"fields cannot be null: {field}" in resp.text
        mock_alert_service.update_threshold.assert_not_called()

    def test_null_webhook_url_passes_through(self, client, mock_alert_service):
        mock_alert_service.update_threshold.return_value = _make_threshold(4)

        resp = client.put("/thresholds/4", json={"webhook_url": None, "group_id": None})

        assert resp.status_code == 200
        assert mock_alert_service.update_threshold.call_args.args[1] == {
            "webhook_url": None,
            "group_id": None,
        }

    def test_missing(self, client, mock_alert_service):
        mock_alert_service.update_threshold.side_effect = ThresholdNotFoundError(4)
        assert client.put("/thresholds/4", json={"value": 1.0}).status_code == 404

    def test_invalid(self, client, mock_alert_service):
        mock_alert_service.update_threshold.side_effect = ThresholdValidationError(["bad"])
        assert client.put("/thresholds/4", json={"group_id": 3}).status_code == 422


class TestDeleteThreshold:
    def test_delete(self, client, mock_alert_service):
        resp = client.delete("/thresholds/4")
        assert resp.status_code == 204
        mock_alert_service.delete_threshold.assert_called_once_with(4)

    def test_missing(self, client, mock_alert_service):
        mock_alert_service.delete_threshold.side_effect = ThresholdNotFoundError(4)
        assert client.delete("/thresholds/4").status_code == 404
