"""HTTP endpoint tests using FastAPI TestClient."""
import sys
import os
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from fastapi.testclient import TestClient
import main
from main import app
from models import PlayerSession
from storage import StoreError


@pytest.fixture(autouse=True)
def clear_state():
    """Clear in-memory state before each test."""
    main.store.clear()
    yield
    main.store.clear()


client = TestClient(app)


# ---------------------------------------------------------------------------
# Health & Root
# ---------------------------------------------------------------------------

class TestHealthEndpoints:
    def test_root(self):
        res = client.get("/")
        assert res.status_code == 200
        assert "running" in res.json()["message"].lower()

    def test_health(self):
        res = client.get("/health")
        assert res.status_code == 200
        assert res.json()["status"] == "healthy"
        assert res.json()["connections"] == 0


# ---------------------------------------------------------------------------
# Leaderboard
# ---------------------------------------------------------------------------

def seed_sessions():
    main.store.sessions["post-1"] = {
        "u1": PlayerSession(total_score=300, created_at=1.0, username="Alice"),
        "u2": PlayerSession(total_score=900, created_at=2.0, username="Bob"),
    }


class TestLeaderboard:
    def test_empty_post(self):
        res = client.get("/posts/post-1/leaderboard")
        assert res.status_code == 200
        assert res.json() == {"leaderboard": [], "playerRank": None}

    def test_ranked_entries_use_wire_names(self):
        seed_sessions()
        res = client.get("/posts/post-1/leaderboard")
        board = res.json()["leaderboard"]
        assert [e["userId"] for e in board] == ["u2", "u1"]
        assert board[0] == {"userId": "u2", "username": "Bob", "totalScore": 900, "rank": 1}

    def test_player_rank(self):
        seed_sessions()
        res = client.get("/posts/post-1/leaderboard", params={"user_id": "u1"})
        assert res.json()["playerRank"] == 2

    def test_unknown_player_has_no_rank(self):
        seed_sessions()
        res = client.get("/posts/post-1/leaderboard", params={"user_id": "ghost"})
        assert res.json()["playerRank"] is None

    def test_store_failure_is_503(self, monkeypatch):
        async def broken(post_id):
            raise StoreError("unreachable")

        monkeypatch.setattr(main.store, "get_leaderboard", broken)
        res = client.get("/posts/post-1/leaderboard")
        assert res.status_code == 503
