from __future__ import annotations

import importlib
import os
import sqlite3
import tempfile
import unittest
from unittest import mock

from fastapi.testclient import TestClient

DAY_MS = 86_400_000
START_MS = 1710028800000  # 2024-03-10T00:00:00Z


def _api_data(days: int) -> dict:
    return {
        "bucket": [
            {
                "startTimeMillis": str(START_MS + i * DAY_MS),
                "dataset": [
                    {
                        "dataType": {"name": "com.google.step_count.delta"},
                        "point": [{"value": [{"intVal": 5000 + i * 1000}]}],
                    },
                    {
                        "dataSourceId": "raw:com.google.sleep.segment:watch",
                        "point": [
                            {
                                "startTimeNanos": str((START_MS + i * DAY_MS) * 1_000_000),
                                "endTimeNanos": str((START_MS + i * DAY_MS + 8 * 3_600_000) * 1_000_000),
                                "value": [{"intVal": 4}],
                            }
                        ],
                    },
                ],
            }
            for i in range(days)
        ]
    }


class ApiTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.db_path = os.path.join(self._tmp.name, "test_api.db")
        self._old_db_path = os.environ.get("DB_PATH")
        self._old_api_key = os.environ.get("API_KEY")
        os.environ["DB_PATH"] = self.db_path
        os.environ["API_KEY"] = "test-api-key"

        import fitdash.db as db_mod
        importlib.reload(db_mod)
        db_mod.init_db()

        import fitdash.main as main_mod
        import fitdash.google_fit as gf

        self.main_mod = main_mod
        self.gf = gf
        self.client_ctx = TestClient(main_mod.app)
        self.client = self.client_ctx.__enter__()
        self.headers = {"X-Api-Key": "test-api-key", "X-User-Id": "u1"}

    def tearDown(self) -> None:
        self.client_ctx.__exit__(None, None, None)
        for key, old in (("DB_PATH", self._old_db_path), ("API_KEY", self._old_api_key)):
            if old is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = old
        self._tmp.cleanup()

    def test_requires_api_key(self) -> None:
        r = self.client.get("/api/metrics")
        self.assertEqual(r.status_code, 401)
        r = self.client.get("/api/metrics", headers={"X-Api-Key": "wrong"})
        self.assertEqual(r.status_code, 401)

    def test_health_is_open(self) -> None:
        r = self.client.get("/api/health")
        self.assertEqual(r.status_code, 200)
        self.assertTrue(r.json()["ok"])

    def test_auth_user(self) -> None:
        self.assertEqual(self.client.get("/api/auth/user", headers=self.headers).status_code, 404)
        r = self.client.put("/api/auth/user", headers=self.headers, json={"email": "a@example.com"})
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json()["id"], "u1")
        r = self.client.get("/api/auth/user", headers=self.headers)
        self.assertEqual(r.json()["email"], "a@example.com")

    def test_metrics_crud_and_consistency(self) -> None:
        for day, score in (("2024-03-01", 70), ("2024-03-02", 90), ("2024-03-03", 80)):
            r = self.client.post(
                "/api/metrics", headers=self.headers, json={"date": day, "sleep_score": score, "steps": 1000}
            )
            self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json()["sleep_consistency"], 84)

        listing = self.client.get("/api/metrics?days=2", headers=self.headers)
        self.assertEqual([m["date"] for m in listing.json()], ["2024-03-02", "2024-03-03"])

        one = self.client.get("/api/metrics/2024-03-01", headers=self.headers)
        self.assertEqual(one.json()["sleep_score"], 70)
        self.assertEqual(self.client.get("/api/metrics/2024-01-01", headers=self.headers).status_code, 404)

        # other users see nothing
        other = self.client.get("/api/metrics", headers={**self.headers, "X-User-Id": "u2"})
        self.assertEqual(other.json(), [])

    def test_metric_validation(self) -> None:
        bad_date = self.client.post("/api/metrics", headers=self.headers, json={"date": "2024/03/01"})
        self.assertEqual(bad_date.status_code, 422)
        bad_score = self.client.post(
            "/api/metrics", headers=self.headers, json={"date": "2024-03-01", "sleep_score": 150}
        )
        self.assertEqual(bad_score.status_code, 422)

    def test_impossible_calendar_dates_are_rejected(self) -> None:
        for day in ("2024-02-30", "2024-13-01"):
            r = self.client.post("/api/metrics", headers=self.headers, json={"date": day, "steps": 1})
            self.assertEqual(r.status_code, 422, day)
            r = self.client.post("/api/google-fit/sync", headers=self.headers, json={"startDate": day})
            self.assertEqual(r.status_code, 422, day)
            r = self.client.post("/api/google-fit/sync", headers=self.headers, json={"endDate": day})
            self.assertEqual(r.status_code, 422, day)
        self.assertEqual(self.client.get("/api/metrics", headers=self.headers).json(), [])
        self.assertIsNone(self.client.get("/api/google-fit/last-sync", headers=self.headers).json()["lastSync"])

    def test_missing_api_key_config_fails_closed(self) -> None:
        os.environ.pop("API_KEY", None)
        r = self.client.get("/api/metrics", headers=self.headers)
        self.assertEqual(r.status_code, 500)

    def test_insights_endpoints(self) -> None:
        latest = self.client.get("/api/insights/latest", headers=self.headers)
        self.assertEqual(latest.json(), {"content": "No insights yet. Sync your Google Fit data to get started!"})

        with mock.patch.object(self.main_mod, "generate_daily_insight", return_value="• a\n• b\n• c"):
            gen = self.client.post("/api/insights/generate", headers=self.headers)
        self.assertEqual(gen.json(), {"content": "• a\n• b\n• c"})

        from fitdash.insights import save_insight

        saved = save_insight("u1", "hello")
        r = self.client.patch(f"/api/insights/{saved['id']}/read", headers=self.headers)
        self.assertEqual(r.json(), {"success": True})
        self.assertTrue(self.client.get("/api/insights/latest", headers=self.headers).json()["is_read"])
        self.assertEqual(self.client.patch("/api/insights/999/read", headers=self.headers).status_code, 404)

        listing = self.client.get("/api/insights", headers=self.headers).json()
        self.assertEqual(len(listing["insights"]), 1)

    def test_google_fit_connect_status_disconnect(self) -> None:
        r = self.client.get("/api/google-fit/connect", headers=self.headers)
        self.assertEqual(r.status_code, 200)
        self.assertIn("state=u1", r.json()["authUrl"])

        self.assertEqual(self.client.get("/api/google-fit/status", headers=self.headers).json()["connected"], False)

        from datetime import datetime, timezone

        from fitdash.tokens import save_token

        save_token("u1", access_token="a", refresh_token="r", expires_at=datetime.now(timezone.utc), scope="")
        status = self.client.get("/api/google-fit/status", headers=self.headers).json()
        self.assertTrue(status["connected"])
        self.assertIsNotNone(status["expiresAt"])

        r = self.client.delete("/api/google-fit/disconnect", headers=self.headers)
        self.assertEqual(r.json(), {"success": True})
        self.assertFalse(self.client.get("/api/google-fit/status", headers=self.headers).json()["connected"])

    def test_google_fit_callback(self) -> None:
        r = self.client.get("/api/google-fit/callback?error=access_denied", follow_redirects=False)
        self.assertEqual(r.status_code, 302)
        self.assertEqual(r.headers["location"], "/?error=access_denied")

        self.assertEqual(self.client.get("/api/google-fit/callback?code=x").status_code, 400)

        with mock.patch.object(self.main_mod, "exchange_code_for_tokens") as exchange:
            ok = self.client.get("/api/google-fit/callback?code=c&state=u1", follow_redirects=False)
        exchange.assert_called_once_with("c", "u1")
        self.assertEqual(ok.headers["location"], "/?connected=true")

        with mock.patch.object(
            self.main_mod, "exchange_code_for_tokens", side_effect=self.gf.GoogleFitError("nope")
        ):
            failed = self.client.get("/api/google-fit/callback?code=c&state=u1", follow_redirects=False)
        self.assertEqual(failed.headers["location"], "/?error=connection_failed")

    def test_sync_stores_metrics_and_generates_insight(self) -> None:
        with mock.patch("fitdash.sync.fetch_fit_data", return_value=_api_data(4)) as fetch, mock.patch.object(
            self.main_mod, "generate_daily_insight"
        ) as gen:
            r = self.client.post(
                "/api/google-fit/sync",
                headers=self.headers,
                json={"startDate": "2024-03-10", "endDate": "2024-03-14"},
            )
        self.assertEqual(r.status_code, 200)
        body = r.json()
        self.assertTrue(body["success"])
        self.assertEqual(body["synced"], 4)
        self.assertEqual(body["details"], {"startDate": "2024-03-10", "endDate": "2024-03-14", "metricsCount": 4})
        fetch.assert_called_once_with("u1", "2024-03-10", "2024-03-14")
        gen.assert_called_once_with("u1")

        metrics = self.client.get("/api/metrics", headers=self.headers).json()
        self.assertEqual(len(metrics), 4)
        self.assertEqual(metrics[0]["steps"], 5000)
        # 8h of deep sleep every night -> identical scores -> perfect consistency from day 3
        self.assertIsNone(metrics[1]["sleep_consistency"])
        self.assertEqual(metrics[2]["sleep_consistency"], 100)

        last = self.client.get("/api/google-fit/last-sync", headers=self.headers).json()["lastSync"]
        self.assertEqual(last["status"], "ok")
        self.assertEqual(last["days_synced"], 4)

        dash = self.client.get("/api/dashboard?days=7", headers=self.headers).json()
        self.assertEqual(len(dash["metrics"]), 4)
        self.assertEqual(len(dash["charts"]["mindShield"]), 28)

    def test_sync_survives_insight_failure(self) -> None:
        with mock.patch("fitdash.sync.fetch_fit_data", return_value=_api_data(1)), mock.patch.object(
            self.main_mod, "generate_daily_insight", side_effect=RuntimeError("llm down")
        ):
            r = self.client.post("/api/google-fit/sync", headers=self.headers, json={})
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json()["synced"], 1)

    def test_sync_when_not_connected(self) -> None:
        r = self.client.post("/api/google-fit/sync", headers=self.headers, json={})
        self.assertEqual(r.status_code, 400)
        body = r.json()
        self.assertFalse(body["success"])
        self.assertEqual(body["errorType"], "NotConnectedError")

        last = self.client.get("/api/google-fit/last-sync", headers=self.headers).json()["lastSync"]
        self.assertEqual(last["status"], "failed")

    def test_sync_unexpected_failure_returns_json_500(self) -> None:
        with mock.patch("fitdash.sync.fetch_fit_data", return_value=_api_data(2)), mock.patch(
            "fitdash.sync.save_metrics", side_effect=sqlite3.OperationalError("database is locked")
        ):
            r = self.client.post("/api/google-fit/sync", headers=self.headers, json={})
        self.assertEqual(r.status_code, 500)
        self.assertEqual(
            r.json(),
            {"success": False, "message": "database is locked", "errorType": "OperationalError"},
        )
        last = self.client.get("/api/google-fit/last-sync", headers=self.headers).json()["lastSync"]
        self.assertEqual(last["status"], "failed")
        self.assertEqual(last["error"], "database is locked")

    def test_sync_upstream_failure_is_502(self) -> None:
        with mock.patch("fitdash.sync.fetch_fit_data", side_effect=self.gf.GoogleFitError("Failed to fetch Google Fit data: 500")):
            r = self.client.post("/api/google-fit/sync", headers=self.headers, json={})
        self.assertEqual(r.status_code, 502)
        self.assertEqual(r.json()["errorType"], "GoogleFitError")


if __name__ == "__main__":
    unittest.main()
