"""WebSocket client for the game protocol.

The server answers each request with at most one response and handles a
connection's messages in order, so a request is paired with the next response
of the expected type.
"""
import json
import logging
from typing import List, Optional, Tuple

import websockets

import protocol
from answer_capture import AnswerCapture
from models import Answer, AnswerRecord, Deck, LeaderboardEntry, PlayerSession, Question, SessionData

logger = logging.getLogger(__name__)


class RequestFailed(Exception):
    def __init__(self, message: str, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


class GameClient:
    def __init__(self, connection):
        self.connection = connection
        self.post_data: Optional[protocol.PostData] = None
        self.leaderboard: List[LeaderboardEntry] = []

    @classmethod
    async def connect(cls, url: str) -> "GameClient":
        return cls(await websockets.connect(url))

    async def close(self):
        await self.connection.close()

    async def _send(self, request):
        await self.connection.send(json.dumps(request.to_wire()))

    async def _request(self, request, expected):
        await self._send(request)
        while True:
            response = protocol.parse_response(json.loads(await self.connection.recv()))
            if isinstance(response, protocol.ErrorResponse):
                raise RequestFailed(response.payload.message, response.payload.retryable)
            if isinstance(response, expected):
                return response
            logger.debug("Ignoring %s while waiting for %s", response.type, expected.__name__)

    async def init(self) -> protocol.PostData:
        response = await self._request(protocol.InitRequest(), protocol.InitResponse)
        self.post_data = response.payload
        return self.post_data

    async def refresh(self) -> protocol.PostData:
        response = await self._request(protocol.GetPostDataRequest(), protocol.GivePostData)
        self.post_data = response.payload
        return self.post_data

    async def submit_answer(self, question: Question, answer: Answer, time_remaining: int,
                            question_index: int) -> Optional[protocol.AnswerResultPayload]:
        request = protocol.SubmitAnswerRequest(payload=protocol.SubmitAnswerPayload(
            question_id=question.id,
            question_index=question_index,
            answer=answer,
            time_remaining=time_remaining,
        ))
        try:
            response = await self._request(request, protocol.AnswerResult)
        except RequestFailed as e:
            logger.warning("Answer submission failed: %s", e)
            return None
        return response.payload

    async def complete_game(self, answers: List[AnswerRecord], total_score: int,
                            session_data: Optional[SessionData] = None) -> bool:
        request = protocol.CompleteGameRequest(payload=protocol.CompleteGamePayload(
            answers=answers, total_score=total_score, session_data=session_data))
        try:
            response = await self._request(request, protocol.ConfirmSavePlayerData)
        except RequestFailed as e:
            logger.warning("Saving game failed: %s", e)
            return False
        return response.payload.is_saved

    async def fetch_leaderboard(self) -> List[LeaderboardEntry]:
        """Latest leaderboard, or the last one seen (possibly empty) if the fetch fails."""
        try:
            response = await self._request(protocol.GetLeaderboardDataRequest(), protocol.GiveLeaderboardData)
        except RequestFailed as e:
            logger.warning("Leaderboard fetch failed, keeping %d cached entries: %s", len(self.leaderboard), e)
            return self.leaderboard
        self.leaderboard = response.payload.leaderboard
        return self.leaderboard

    async def add_question(self, question: Question):
        await self._send(protocol.AddQuestionRequest(payload=protocol.QuestionPayload(question=question)))

    async def edit_question(self, question: Question) -> protocol.PostData:
        request = protocol.EditQuestionRequest(payload=protocol.QuestionPayload(question=question))
        self.post_data = (await self._request(request, protocol.GivePostData)).payload
        return self.post_data

    async def delete_question(self, question_id: str) -> protocol.PostData:
        request = protocol.DeleteQuestionRequest(payload=protocol.DeleteQuestionPayload(question_id=question_id))
        self.post_data = (await self._request(request, protocol.GivePostData)).payload
        return self.post_data

    async def create_post(self, deck: Deck):
        await self._send(protocol.CreateNewPostRequest(payload=protocol.CreateNewPostPayload(post_data=deck)))

    async def _reload_game(self) -> Optional[Tuple[Deck, PlayerSession]]:
        try:
            post_data = await self.refresh()
        except RequestFailed as e:
            logger.warning("Reloading post data failed: %s", e)
            return None
        return post_data.deck, post_data.player_session

    def new_capture(self, **kwargs) -> AnswerCapture:
        """State machine over the delivered deck, submitting through this client.

        When the server reports that the deck changed mid-game, the machine
        reloads the post data through this client and continues from there.
        """
        if self.post_data is None:
            raise RuntimeError("Call init() before starting a game")
        return AnswerCapture(self.post_data.deck, self.post_data.player_session, self.submit_answer,
                             refresh=self._reload_game, **kwargs)
