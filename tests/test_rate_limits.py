"""
Tests — rate limit keying.

Limits are counted per calling employee, falling back to the remote IP.
Flask-Limiter evaluates limits before the actor context runs, so these
tests use a bare Flask app with a tight limit and the real key function.
"""

import pytest
from flask import Flask
from flask_limiter import Limiter

from compliance_desk.middleware.rate_limiter import actor_or_ip_key


@pytest.fixture()
def limited_client():
    app = Flask(__name__)
    limiter = Limiter(key_func=actor_or_ip_key, storage_uri="memory://")
    limiter.init_app(app)

    @app.route("/api/v1/tasks")
    @limiter.limit("2/minute")
    def tasks():
        return {"items": []}

    return app.test_client()


@pytest.mark.unit
class TestActorOrIpKey:

    def test_uses_employee_header(self, app):
        with app.test_request_context("/api/v1/tasks", headers={"X-Employee-Id": " emp-1 "}):
            assert actor_or_ip_key() == "actor:emp-1"

    def test_falls_back_to_remote_addr(self, app):
        with app.test_request_context("/api/v1/tasks", environ_base={"REMOTE_ADDR": "10.0.0.7"}):
            assert actor_or_ip_key() == "10.0.0.7"


class TestPerActorLimits:

    def test_one_actor_does_not_throttle_another(self, limited_client):
        a = {"X-Employee-Id": "emp-a"}
        b = {"X-Employee-Id": "emp-b"}

        statuses = [limited_client.get("/api/v1/tasks", headers=a).status_code for _ in range(3)]

        assert statuses == [200, 200, 429]
        assert limited_client.get("/api/v1/tasks", headers=b).status_code == 200

    def test_anonymous_callers_share_the_ip_bucket(self, limited_client):
        for _ in range(2):
            limited_client.get("/api/v1/tasks")
        assert limited_client.get("/api/v1/tasks").status_code == 429
