"""
Persistence adapters for decks and player sessions.

The router only talks to the GameStore interface. MemoryStore keeps everything
in process (development, tests); RedisStore keeps one JSON document per deck and
one hash of JSON sessions per post. Deck edits are read-modify-write, so two
moderators editing the same deck at once resolve as last write wins.
"""
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

import config
import decks
import ranking
from models import AnswerRecord, Deck, LeaderboardEntry, PlayerSession, Question, SessionData

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Raised when the backing store cannot be read or written."""
    pass


class GameStore(ABC):

    @abstractmethod
    async def get_deck(self, post_id: str) -> Optional[Deck]:
        pass

    @abstractmethod
    async def save_deck(self, post_id: str, deck: Deck) -> None:
        pass

    @abstractmethod
    async def get_player_session(self, post_id: str, user_id: str) -> Optional[PlayerSession]:
        pass

    @abstractmethod
    async def save_player_session(self, post_id: str, user_id: str, session: PlayerSession) -> None:
        pass

    @abstractmethod
    async def list_sessions(self, post_id: str) -> Dict[str, PlayerSession]:
        pass

    async def close(self) -> None:
        pass

    # --- derived operations -------------------------------------------------

    async def save_user_game_data(self, post_id: str, user_id: str, answers: List[AnswerRecord],
                                  total_score: int, session_data: Optional[SessionData] = None) -> PlayerSession:
        session = await self.get_player_session(post_id, user_id) or PlayerSession()
        update: dict = {"answers": list(answers), "total_score": total_score}
        if session_data is not None:
            if session_data.current_question_index is not None:
                update["current_question_index"] = session_data.current_question_index
            if session_data.scoring_mode is not None:
                update["scoring_mode"] = session_data.scoring_mode
        session = session.model_copy(update=update)
        await self.save_player_session(post_id, user_id, session)
        logger.info("Saved game data for user %s on post %s (score %d)", user_id, post_id, total_score)
        return session

    async def get_leaderboard(self, post_id: str) -> List[LeaderboardEntry]:
        return ranking.build_leaderboard(await self.list_sessions(post_id))

    async def get_player_rank(self, post_id: str, user_id: Optional[str]) -> Optional[int]:
        if not user_id:
            return None
        return ranking.player_rank(await self.list_sessions(post_id), user_id)

    async def _require_deck(self, post_id: str) -> Deck:
        deck = await self.get_deck(post_id)
        if deck is None:
            raise decks.DeckError(f"No deck stored for post {post_id}")
        return deck

    async def add_question_to_deck(self, post_id: str, question: Question) -> Deck:
        deck = decks.add_question(await self._require_deck(post_id), question)
        await self.save_deck(post_id, deck)
        logger.info("Question %s added to post %s", question.id, post_id)
        return deck

    async def edit_question_in_deck(self, post_id: str, question: Question) -> Deck:
        deck = decks.replace_question(await self._require_deck(post_id), question)
        await self.save_deck(post_id, deck)
        logger.info("Question %s edited on post %s", question.id, post_id)
        return deck

    async def delete_question_from_deck(self, post_id: str, question_id: str) -> Deck:
        deck = decks.remove_question(await self._require_deck(post_id), question_id)
        await self.save_deck(post_id, deck)
        logger.info("Question %s deleted from post %s", question_id, post_id)
        return deck

    async def record_response(self, post_id: str, question_id: str, answer) -> Deck:
        deck = decks.record_response(await self._require_deck(post_id), question_id, answer)
        await self.save_deck(post_id, deck)
        return deck


class MemoryStore(GameStore):
    """In-process store. Copies on the way in and out so callers never share state."""

    def __init__(self):
        self.decks: Dict[str, Deck] = {}
        self.sessions: Dict[str, Dict[str, PlayerSession]] = {}  # post_id -> user_id -> session

    def clear(self):
        self.decks.clear()
        self.sessions.clear()

    async def get_deck(self, post_id):
        deck = self.decks.get(post_id)
        return deck.model_copy(deep=True) if deck else None

    async def save_deck(self, post_id, deck):
        self.decks[post_id] = deck.model_copy(deep=True)

    async def get_player_session(self, post_id, user_id):
        session = self.sessions.get(post_id, {}).get(user_id)
        return session.model_copy(deep=True) if session else None

    async def save_player_session(self, post_id, user_id, session):
        self.sessions.setdefault(post_id, {})[user_id] = session.model_copy(deep=True)

    async def list_sessions(self, post_id):
        return {uid: s.model_copy(deep=True) for uid, s in self.sessions.get(post_id, {}).items()}


class RedisStore(GameStore):
    """Redis-backed store: `<prefix>:deck:<post>` JSON string, `<prefix>:sessions:<post>` hash."""

    def __init__(self, client, prefix: str = config.REDIS_KEY_PREFIX):
        self.client = client
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str = config.REDIS_URL, prefix: str = config.REDIS_KEY_PREFIX) -> "RedisStore":
        return cls(redis.from_url(url, decode_responses=True), prefix=prefix)

    def _deck_key(self, post_id: str) -> str:
        return f"{self.prefix}:deck:{post_id}"

    def _sessions_key(self, post_id: str) -> str:
        return f"{self.prefix}:sessions:{post_id}"

    async def _call(self, coro):
        try:
            return await coro
        except RedisError as e:
            logger.error("Redis operation failed: %s", e)
            raise StoreError(str(e)) from e

    async def get_deck(self, post_id):
        raw = await self._call(self.client.get(self._deck_key(post_id)))
        return Deck.model_validate_json(raw) if raw else None

    async def save_deck(self, post_id, deck):
        await self._call(self.client.set(self._deck_key(post_id), deck.model_dump_json(by_alias=True)))

    async def get_player_session(self, post_id, user_id):
        raw = await self._call(self.client.hget(self._sessions_key(post_id), user_id))
        return PlayerSession.model_validate_json(raw) if raw else None

    async def save_player_session(self, post_id, user_id, session):
        await self._call(self.client.hset(self._sessions_key(post_id), user_id,
                                          session.model_dump_json(by_alias=True)))

    async def list_sessions(self, post_id):
        raw = await self._call(self.client.hgetall(self._sessions_key(post_id)))
        return {uid: PlayerSession.model_validate_json(data) for uid, data in raw.items()}

    async def close(self):
        await self._call(self.client.aclose())


def create_store(backend: str = config.STORE_BACKEND) -> GameStore:
    if backend == "redis":
        logger.info("Using Redis store at %s", config.REDIS_URL)
        return RedisStore.from_url(config.REDIS_URL)
    if backend != "memory":
        logger.warning("Unknown STORE_BACKEND '%s', falling back to memory", backend)
    return MemoryStore()
