"""
Tests for server-side sessions: the session object, both stores and the
session middleware.
"""

import json
from unittest.mock import MagicMock

import pytest
import redis
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from sellerdesk.platform.sessions import (
    OAUTH_STATE,
    ROLE,
    USER_ID,
    InMemorySessionStore,
    RedisSessionStore,
    ServerSession,
    SessionMiddleware,
    flush_session,
)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


# ============================================================================
# TEST SUITE: SESSION OBJECT
# ============================================================================

class TestServerSession:

    def test_new_session_gets_random_id(self):
        first, second = ServerSession(), ServerSession()
        assert first.is_new and second.is_new
        assert first.session_id != second.session_id

    def test_setting_same_value_is_not_a_modification(self):
        session = ServerSession("sid", {ROLE: "admin"})
        session[ROLE] = "admin"
        assert session.modified is False

        session[ROLE] = "operator"
        assert session.modified is True

    def test_pop_removes_and_marks_modified(self):
        session = ServerSession("sid", {OAUTH_STATE: "nonce"})

        assert session.pop(OAUTH_STATE) == "nonce"
        assert OAUTH_STATE not in session
        assert session.modified is True
        assert session.pop(OAUTH_STATE) is None

    def test_destroy_clears_authentication(self):
        session = ServerSession("sid", {USER_ID: 1})
        assert session.is_authenticated is True

        session.destroy()

        assert session.is_authenticated is False
        assert session.to_dict() == {}


# ============================================================================
# TEST SUITE: STORES
# ============================================================================

class TestInMemorySessionStore:

    def test_save_load_delete(self):
        store = InMemorySessionStore()
        store.save("sid", {USER_ID: 1}, 60)

        assert store.load("sid") == {USER_ID: 1}
        store.delete("sid")
        assert store.load("sid") is None

    def test_entries_expire(self):
        clock = FakeClock()
        store = InMemorySessionStore(clock=clock)
        store.save("sid", {USER_ID: 1}, 60)

        clock.now = 59
        assert store.load("sid") is not None
        clock.now = 60
        assert store.load("sid") is None

    def test_loaded_data_is_a_copy(self):
        store = InMemorySessionStore()
        store.save("sid", {USER_ID: 1}, 60)

        store.load("sid")[USER_ID] = 2

        assert store.load("sid") == {USER_ID: 1}

    def test_delete_for_user(self):
        store = InMemorySessionStore()
        store.save("a", {USER_ID: 1}, 60)
        store.save("b", {USER_ID: 1}, 60)
        store.save("c", {USER_ID: 2}, 60)

        assert store.delete_for_user(1) == 2
        assert store.load("a") is None and store.load("b") is None
        assert store.load("c") == {USER_ID: 2}


class TestRedisSessionStore:

    def test_save_writes_session_and_user_index(self):
        client = MagicMock()
        RedisSessionStore(client).save("sid", {USER_ID: 3, ROLE: "admin"}, 120)

        client.setex.assert_called_once_with("session:sid", 120, json.dumps({USER_ID: 3, ROLE: "admin"}))
        client.sadd.assert_called_once_with("session:user:3", "sid")
        client.expire.assert_called_once_with("session:user:3", 120)

    def test_load_parses_json(self):
        client = MagicMock()
        client.get.return_value = json.dumps({USER_ID: 3}).encode("utf-8")
        assert RedisSessionStore(client).load("sid") == {USER_ID: 3}

    def test_load_unreadable_payload_is_no_session(self):
        client = MagicMock()
        client.get.return_value = b"{not json"
        assert RedisSessionStore(client).load("sid") is None

    def test_delete_for_user_removes_indexed_sessions(self):
        client = MagicMock()
        client.smembers.return_value = {b"a", b"b"}
        client.delete.return_value = 1

        removed = RedisSessionStore(client).delete_for_user(3)

        assert removed == 2
        deleted = {call.args[0] for call in client.delete.call_args_list}
        assert deleted == {"session:a", "session:b", "session:user:3"}

    def test_redis_failures_degrade(self):
        client = MagicMock()
        client.get.side_effect = redis.ConnectionError("down")
        client.setex.side_effect = redis.ConnectionError("down")
        client.smembers.side_effect = redis.ConnectionError("down")
        store = RedisSessionStore(client)

        assert store.load("sid") is None
        store.save("sid", {USER_ID: 1}, 60)
        assert store.delete_for_user(1) == 0


# ============================================================================
# TEST SUITE: MIDDLEWARE
# ============================================================================

@pytest.fixture
def store():
    return InMemorySessionStore()


@pytest.fixture
def client(store):
    app = FastAPI()
    app.add_middleware(SessionMiddleware, store=store, cookie_name="sid", ttl_seconds=300)

    @app.get("/whoami")
    async def whoami(request: Request):
        return {"user_id": request.state.session.user_id}

    @app.post("/login/{user_id}")
    async def login(user_id: int, request: Request):
        request.state.session[USER_ID] = user_id
        return {"ok": True}

    @app.post("/logout")
    async def logout(request: Request):
        request.state.session.destroy()
        return {"ok": True}

    @app.post("/flush")
    async def flush(request: Request):
        request.state.session.pop(OAUTH_STATE)
        flush_session(request)
        return {"stored": store.load(request.state.session.session_id)}

    return TestClient(app)


class TestSessionMiddleware:

    def test_untouched_session_is_not_stored(self, client, store):
        response = client.get("/whoami")

        assert response.json() == {"user_id": None}
        assert "sid" not in response.cookies
        assert store._entries == {}

    def test_login_sets_cookie_and_persists(self, client, store):
        response = client.post("/login/7")

        session_id = response.cookies["sid"]
        assert store.load(session_id) == {USER_ID: 7}
        assert client.get("/whoami").json() == {"user_id": 7}

    def test_logout_deletes_session(self, client, store):
        client.post("/login/7")
        session_id = client.cookies["sid"]

        client.post("/logout")

        assert store.load(session_id) is None
        assert client.get("/whoami").json() == {"user_id": None}

    def test_unknown_cookie_starts_fresh_session(self, client):
        client.cookies.set("sid", "forged-session-id")
        assert client.get("/whoami").json() == {"user_id": None}

    def test_flush_persists_before_response(self, client, store):
        store.save("existing", {USER_ID: 1, OAUTH_STATE: "nonce"}, 300)
        client.cookies.set("sid", "existing")

        response = client.post("/flush")

        assert response.json() == {"stored": {USER_ID: 1}}
