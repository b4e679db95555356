"""
Tests for GameClient. A scripted connection checks request/response pairing;
a loopback connection drives a real RequestRouter for a full game.
"""
import sys
import os
import json
import random

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import protocol
from answer_capture import CaptureState
from game_client import GameClient, RequestFailed
from host import LocalHostActions, ModeratorDirectory, Requester
from models import Card, Deck, LeaderboardEntry, PlayerSession, Question
from router import RequestRouter
from storage import MemoryStore


# ---------------------------------------------------------------------------
# Connections
# ---------------------------------------------------------------------------

class ScriptedConnection:
    """Replies with canned server messages in order, records what was sent."""

    def __init__(self, *replies):
        self.sent = []
        self.replies = list(replies)
        self.closed = False

    async def send(self, text):
        self.sent.append(json.loads(text))

    async def recv(self):
        return json.dumps(self.replies.pop(0))

    async def close(self):
        self.closed = True


class LoopbackConnection:
    """Hands each sent message to a router and queues its response."""

    def __init__(self, router, requester):
        self.router = router
        self.requester = requester
        self.pending = []

    async def send(self, text):
        response = await self.router.handle(json.loads(text), self.requester)
        if response is not None:
            self.pending.append(response)

    async def recv(self):
        return json.dumps(self.pending.pop(0))

    async def close(self):
        pass


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def make_deck(num_questions=2):
    return Deck(id="deck-1", title="Deck", created_by="alice", questions=[
        Question(id=f"q{i + 1}", prompt="?", cards=[Card(id="a", text="A"), Card(id="b", text="B")])
        for i in range(num_questions)
    ])


def post_data_response(response_cls=protocol.InitResponse):
    return response_cls(payload=protocol.PostData(
        post_id="post-1", deck=make_deck(), player_session=PlayerSession(question_order=["q1", "q2"]),
        username="Alice",
    )).to_wire()


def error_response(message="boom", retryable=True):
    return protocol.error(message, retryable=retryable).to_wire()


# ===========================================================================
# Request/response pairing
# ===========================================================================

class TestPairing:
    @pytest.mark.asyncio
    async def test_init_sends_request_and_caches_post_data(self):
        connection = ScriptedConnection(post_data_response())
        client = GameClient(connection)
        post_data = await client.init()
        assert connection.sent == [{"type": "INIT"}]
        assert post_data.post_id == "post-1"
        assert client.post_data is post_data

    @pytest.mark.asyncio
    async def test_unrelated_responses_skipped(self):
        connection = ScriptedConnection(
            protocol.ConfirmSavePlayerData(payload=protocol.SaveConfirmation(is_saved=True)).to_wire(),
            post_data_response(protocol.GivePostData),
        )
        post_data = await GameClient(connection).refresh()
        assert post_data.username == "Alice"
        assert connection.replies == []

    @pytest.mark.asyncio
    async def test_error_raises_request_failed(self):
        client = GameClient(ScriptedConnection(error_response("store down", retryable=True)))
        with pytest.raises(RequestFailed) as exc_info:
            await client.init()
        assert exc_info.value.retryable is True
        assert "store down" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_close(self):
        connection = ScriptedConnection()
        await GameClient(connection).close()
        assert connection.closed


class TestRequests:
    @pytest.mark.asyncio
    async def test_submit_answer_wire_format(self):
        result = protocol.AnswerResult(payload=protocol.AnswerResultPayload(
            status="success", score=800, total_score=800)).to_wire()
        connection = ScriptedConnection(result)
        question = make_deck().questions[0]
        payload = await GameClient(connection).submit_answer(question, "a", 15, 0)
        assert payload.score == 800
        assert connection.sent[0] == {
            "type": "SUBMIT_ANSWER",
            "payload": {"questionId": "q1", "questionIndex": 0, "answer": "a", "timeRemaining": 15},
        }

    @pytest.mark.asyncio
    async def test_submit_answer_failure_returns_none(self):
        client = GameClient(ScriptedConnection(error_response()))
        assert await client.submit_answer(make_deck().questions[0], "a", 15, 0) is None

    @pytest.mark.asyncio
    async def test_complete_game(self):
        saved = protocol.ConfirmSavePlayerData(payload=protocol.SaveConfirmation(is_saved=True)).to_wire()
        connection = ScriptedConnection(saved)
        assert await GameClient(connection).complete_game([], 1200) is True
        assert connection.sent[0]["payload"]["totalScore"] == 1200

    @pytest.mark.asyncio
    async def test_complete_game_failure_is_false(self):
        assert await GameClient(ScriptedConnection(error_response())).complete_game([], 10) is False

    @pytest.mark.asyncio
    async def test_leaderboard_failure_keeps_cache(self):
        board = protocol.GiveLeaderboardData(payload=protocol.LeaderboardData(leaderboard=[
            LeaderboardEntry(user_id="u1", username="Alice", total_score=10, rank=1)])).to_wire()
        client = GameClient(ScriptedConnection(board, error_response()))
        first = await client.fetch_leaderboard()
        second = await client.fetch_leaderboard()
        assert [e.user_id for e in first] == ["u1"]
        assert second == first

    @pytest.mark.asyncio
    async def test_leaderboard_failure_with_empty_cache(self):
        client = GameClient(ScriptedConnection(error_response()))
        assert await client.fetch_leaderboard() == []

    @pytest.mark.asyncio
    async def test_add_question_waits_for_nothing(self):
        connection = ScriptedConnection()
        await GameClient(connection).add_question(make_deck().questions[0])
        assert connection.sent[0]["type"] == "ADD_QUESTION"

    @pytest.mark.asyncio
    async def test_create_post_sends_deck(self):
        connection = ScriptedConnection()
        await GameClient(connection).create_post(make_deck())
        assert connection.sent[0]["payload"]["postData"]["createdBy"] == "alice"

    def test_new_capture_requires_init(self):
        with pytest.raises(RuntimeError):
            GameClient(ScriptedConnection()).new_capture()


# ===========================================================================
# Full game through a router
# ===========================================================================

class TestFullGame:
    @pytest.mark.asyncio
    async def test_play_through_and_rank(self):
        store = MemoryStore()
        await store.save_deck("post-1", make_deck(2))
        router = RequestRouter(store, LocalHostActions(), ModeratorDirectory(), rng=random.Random(5))
        client = GameClient(LoopbackConnection(router, Requester(post_id="post-1", user_id="u1", username="Alice")))

        await client.init()
        capture = client.new_capture(tick_seconds=10, reveal_ms=10, poll_ms=2)
        capture.start()
        for _ in range(2):
            assert await capture.select_card("a") is True
            await capture.wait_for_reveal()
        assert capture.state == CaptureState.GAME_COMPLETE
        await capture.close()

        session = await store.get_player_session("post-1", "u1")
        assert session.current_question_index == 2
        assert session.total_score == capture.total_score > 0

        board = await client.fetch_leaderboard()
        assert [(e.user_id, e.rank) for e in board] == [("u1", 1)]

    @pytest.mark.asyncio
    async def test_game_continues_after_question_deleted_mid_game(self):
        store = MemoryStore()
        await store.save_deck("post-1", make_deck(3))
        router = RequestRouter(store, LocalHostActions(), ModeratorDirectory(), rng=random.Random(5))
        client = GameClient(LoopbackConnection(router, Requester(post_id="post-1", user_id="u1", username="Alice")))

        post_data = await client.init()
        order = [q.id for q in post_data.deck.questions]
        capture = client.new_capture(tick_seconds=10, reveal_ms=10, poll_ms=2)
        capture.start()
        assert await capture.select_card("a") is True
        await capture.wait_for_reveal()
        assert capture.current_question.id == order[1]

        await store.delete_question_from_deck("post-1", order[1])

        assert await capture.select_card("a") is False
        assert capture.current_question.id == order[2]
        assert capture.accepting_input is True
        assert await capture.select_card("a") is True
        await capture.wait_for_reveal()
        assert capture.state == CaptureState.GAME_COMPLETE
        await capture.close()

        session = await store.get_player_session("post-1", "u1")
        assert session.question_order == [order[0], order[2]]
        assert session.current_question_index == 2

    @pytest.mark.asyncio
    async def test_moderator_edits(self):
        store = MemoryStore()
        await store.save_deck("post-1", make_deck(3))
        router = RequestRouter(store, LocalHostActions(), ModeratorDirectory(), rng=random.Random(5))
        client = GameClient(LoopbackConnection(router, Requester(post_id="post-1", user_id="u1", username="Mod")))

        post_data = await client.delete_question("q2")
        assert [q.id for q in post_data.deck.questions] == ["q1", "q3"]

        edited = post_data.deck.questions[0].model_copy(update={"prompt": "Renamed"})
        post_data = await client.edit_question(edited)
        assert post_data.deck.questions[0].prompt == "Renamed"
