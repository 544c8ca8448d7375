import smtplib
from datetime import datetime, timedelta, timezone

import mongomock
import pytest
from fastapi.testclient import TestClient

from context import AppContext
from emailer import EmailService
from main import create_app
from settings import Settings

SUPERUSER_EMAIL = "root@clinic.org"
SUPERUSER_PASSWORD = "rootpass123"
PASSWORD = "pw123456"


class Clock:
    """Settable clock; whole seconds so values survive a BSON round trip."""

    def __init__(self):
        self.current = datetime.now(timezone.utc).replace(tzinfo=None, microsecond=0)

    def __call__(self):
        return self.current

    def advance(self, **kwargs):
        self.current += timedelta(**kwargs)


class RecordingMailer(EmailService):
    def __init__(self, settings):
        super().__init__(settings)
        self.is_configured = True
        self.fail = False
        self.sent = []
        self.reset_tokens = []
        self.verification_tokens = []

    def _deliver(self, msg, to):
        if self.fail:
            raise smtplib.SMTPException("mail server unavailable")
        self.sent.append((to, msg["Subject"]))

    def send_password_reset_email(self, user, token):
        self.reset_tokens.append(token)
        return super().send_password_reset_email(user, token)

    def send_verification_email(self, user, token):
        self.verification_tokens.append(token)
        return super().send_verification_email(user, token)


class Api:
    """Thin wrapper over TestClient that authenticates with Bearer headers only."""

    def __init__(self, client, ctx):
        self.client = client
        self.ctx = ctx

    def request(self, method, path, token=None, **kwargs):
        headers = kwargs.pop("headers", {})
        if token:
            headers["Authorization"] = f"Bearer {token}"
        response = self.client.request(method, path, headers=headers, **kwargs)
        self.client.cookies.clear()
        return response

    def get(self, path, token=None, **kwargs):
        return self.request("GET", path, token, **kwargs)

    def post(self, path, token=None, **kwargs):
        return self.request("POST", path, token, **kwargs)

    def put(self, path, token=None, **kwargs):
        return self.request("PUT", path, token, **kwargs)

    def delete(self, path, token=None, **kwargs):
        return self.request("DELETE", path, token, **kwargs)

    def register(self, email, role="child", name=None, password=PASSWORD, token=None):
        body = {"name": name or email.split("@")[0], "email": email, "password": password, "role": role}
        r = self.post("/api/auth/register", token, json=body)
        assert r.status_code == 201, r.text
        data = r.json()
        return data["token"], data["user"]

    def login(self, email, password=PASSWORD):
        r = self.post("/api/auth/login", json={"email": email, "password": password})
        assert r.status_code == 200, r.text
        return r.json()["token"]

    def superuser(self):
        return self.login(SUPERUSER_EMAIL, SUPERUSER_PASSWORD)

    def activity(self, token, name="Stacking blocks", **extra):
        r = self.post("/api/activities", token, json={"name": name, **extra})
        assert r.status_code == 201, r.text
        return r.json()["data"]

    def assign_therapist(self, token, child_id, therapist_id):
        r = self.put(f"/api/admin/children/{child_id}/assign-therapist", token, json={"therapist_id": therapist_id})
        assert r.status_code == 200, r.text
        return r.json()["data"]

    def assign_activity(self, token, child_id, activity_id, **extra):
        r = self.post(f"/api/therapist/patients/{child_id}/assignments", token,
                      json={"activity_id": activity_id, **extra})
        assert r.status_code == 201, r.text
        return r.json()["data"]


def make_settings(**overrides):
    values = dict(
        app_env="test",
        jwt_secret="test-secret",
        bcrypt_rounds=4,
        unknown_account_delay_ms=0,
        superuser_email=SUPERUSER_EMAIL,
        superuser_password=SUPERUSER_PASSWORD,
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def build(clock):
    clients = []

    def _build(**overrides):
        settings = make_settings(**overrides)
        db = mongomock.MongoClient()["therapy_test"]
        ctx = AppContext(settings=settings, db=db, mailer=RecordingMailer(settings), clock=clock)
        client = TestClient(create_app(ctx))
        client.__enter__()
        clients.append(client)
        return Api(client, ctx)

    yield _build
    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture
def api(build):
    return build()


@pytest.fixture
def ctx(api):
    return api.ctx


@pytest.fixture
def care_team(api):
    """Admin, two therapists and two children; child_a is assigned to therapist_a."""
    admin, _ = api.register("admin@clinic.org", role="admin")
    therapist_a, t_a = api.register("ther.a@clinic.org", role="therapist")
    therapist_b, t_b = api.register("ther.b@clinic.org", role="therapist")
    child_a, c_a = api.register("kid.a@x.com")
    child_b, c_b = api.register("kid.b@x.com")
    api.assign_therapist(admin, c_a["id"], t_a["id"])
    return {
        "admin": admin,
        "therapist_a": therapist_a, "therapist_a_id": t_a["id"],
        "therapist_b": therapist_b, "therapist_b_id": t_b["id"],
        "child_a": child_a, "child_a_id": c_a["id"],
        "child_b": child_b, "child_b_id": c_b["id"],
    }
