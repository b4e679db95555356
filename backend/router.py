import asyncio
import logging
import random
from dataclasses import dataclass
from typing import List, Optional, Tuple

from pydantic import ValidationError

import config
import decks
import protocol
import scoring
from decks import DeckError, DeckSource, ResolvedDeck
from host import HostActions, ModeratorDirectory, Requester, has_elevated_privilege
from models import Answer, AnswerRecord, Deck, PlayerSession, Question, QuestionType
from storage import GameStore, StoreError

logger = logging.getLogger(__name__)


class PreconditionFailed(Exception):
    """The request lacks context it needs (post id, user id)."""
    pass


class InvalidAnswer(ValueError):
    pass


@dataclass
class RequestContext:
    requester: Requester
    resolved: ResolvedDeck
    session: PlayerSession
    session_exists: bool
    player_rank: Optional[int]

    @property
    def post_id(self) -> str:
        return self.requester.post_id

    @property
    def deck(self) -> Deck:
        return self.resolved.deck


def validate_answer(question: Question, answer: Answer) -> Answer:
    if answer is None:
        return None
    card_ids = set(question.card_ids())
    if question.question_type == QuestionType.SEQUENCE:
        if not isinstance(answer, list):
            raise InvalidAnswer("Sequence questions take a list of card ids")
        if len(set(answer)) != len(answer):
            raise InvalidAnswer("A card can appear only once in a sequence")
        if not set(answer) <= card_ids:
            raise InvalidAnswer("Sequence contains unknown cards")
        return list(answer)
    if not isinstance(answer, str) or answer not in card_ids:
        raise InvalidAnswer("Answer must be one of the question's card ids")
    return answer


class RequestRouter:
    """Turns one client request into store operations and at most one response."""

    def __init__(self, store: GameStore, host: HostActions, moderators: ModeratorDirectory,
                 rng: Optional[random.Random] = None,
                 timeout: float = config.REQUEST_TIMEOUT_SECONDS):
        self.store = store
        self.host = host
        self.moderators = moderators
        self.rng = rng
        self.timeout = timeout
        self._handlers = {
            protocol.InitRequest: self._handle_init,
            protocol.GetPostDataRequest: self._handle_get_post_data,
            protocol.SubmitAnswerRequest: self._handle_submit_answer,
            protocol.CompleteGameRequest: self._handle_complete_game,
            protocol.GetLeaderboardDataRequest: self._handle_get_leaderboard_data,
            protocol.AddQuestionRequest: self._handle_add_question,
            protocol.EditQuestionRequest: self._handle_edit_question,
            protocol.DeleteQuestionRequest: self._handle_delete_question,
            protocol.CreateNewPostRequest: self._handle_create_new_post,
        }
        missing = set(protocol.REQUEST_MODELS) - set(self._handlers)
        if missing:
            raise RuntimeError(f"No handler for request types: {sorted(m.__name__ for m in missing)}")

    async def handle(self, message: dict, requester: Requester) -> Optional[dict]:
        try:
            request = protocol.parse_request(message)
        except protocol.UnknownRequestType as e:
            logger.error("Rejected message from user %s: %s", requester.user_id, e)
            request_type = e.request_type if isinstance(e.request_type, str) else None
            return protocol.error(str(e), request_type=request_type).to_wire()
        except ValidationError as e:
            logger.warning("Invalid %s payload from user %s: %d error(s)",
                           message.get("type"), requester.user_id, e.error_count())
            return protocol.error("Invalid message payload", request_type=message.get("type")).to_wire()

        try:
            ctx = await self._resolve_context(requester) if requester.post_id else None
            response = await self._handlers[type(request)](request, requester, ctx)
        except StoreError as e:
            logger.warning("Store failure handling %s on post %s: %s", request.type, requester.post_id, e)
            response = self._failure(request, str(e))
        except (DeckError, PreconditionFailed) as e:
            logger.warning("Rejected %s on post %s: %s", request.type, requester.post_id, e)
            response = protocol.error(str(e), request_type=request.type)
        except Exception:
            logger.exception("Unexpected error handling %s on post %s", request.type, requester.post_id)
            response = protocol.error("Internal error", request_type=request.type)

        return response.to_wire() if response is not None else None

    def _failure(self, request, message: str):
        if isinstance(request, protocol.SubmitAnswerRequest):
            return protocol.AnswerResult(payload=protocol.AnswerResultPayload(status="error", message=message))
        if isinstance(request, protocol.CompleteGameRequest):
            return protocol.ConfirmSavePlayerData(payload=protocol.SaveConfirmation(is_saved=False))
        return protocol.error(message, request_type=request.type, retryable=True)

    async def _io(self, coro):
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise StoreError(f"Store call timed out after {self.timeout}s") from e

    # --- context ------------------------------------------------------------

    async def _resolve_context(self, requester: Requester) -> RequestContext:
        post_id = requester.post_id
        deck = await self._io(self.store.get_deck(post_id))
        if deck is None:
            resolved = ResolvedDeck(decks.get_default_deck(), DeckSource.DEFAULT)
            await self._io(self.store.save_deck(post_id, resolved.deck))
            logger.info("No deck stored for post %s, saved the default deck", post_id)
        else:
            resolved = ResolvedDeck(deck, DeckSource.STORED)

        session = None
        if requester.user_id:
            session = await self._io(self.store.get_player_session(post_id, requester.user_id))
        session_exists = session is not None
        if session is None:
            session = PlayerSession(username=requester.username)

        player_rank = await self._io(self.store.get_player_rank(post_id, requester.user_id))
        return RequestContext(requester, resolved, session, session_exists, player_rank)

    @staticmethod
    def _require_context(ctx: Optional[RequestContext], request) -> RequestContext:
        if ctx is None:
            raise PreconditionFailed(f"{request.type} requires a post id")
        return ctx

    async def _is_admin(self, requester: Requester) -> bool:
        permissions = await self.moderators.get_moderator_permissions(requester.community, requester.username)
        return has_elevated_privilege(permissions)

    # --- delivery -----------------------------------------------------------

    @staticmethod
    def _rebase_session(deck: Deck, session: PlayerSession) -> PlayerSession:
        """Drop deleted questions from the pinned order.

        The index is re-based to the answered questions that still exist, so it
        never exceeds the order's length (and equals it when nothing is left to
        answer).
        """
        deck_ids = {q.id for q in deck.questions}
        pinned = session.question_order or []
        order = [qid for qid in pinned if qid in deck_ids]
        if len(order) == len(pinned):
            return session
        answered = pinned[:session.current_question_index]
        index = len([qid for qid in answered if qid in deck_ids])
        return session.model_copy(update={"question_order": order, "current_question_index": index})

    def _plan_delivery(self, deck: Deck, session: PlayerSession) -> Tuple[List[str], PlayerSession]:
        """Pick the question order for this delivery and re-base the session onto it.

        A game in progress keeps its order minus deleted questions. Anything
        else gets a fresh shuffle.
        """
        if session.question_order and session.current_question_index > 0:
            session = self._rebase_session(deck, session)
            if not session.question_order:
                order = decks.delivery_order(deck, self.rng)
                return order, session.model_copy(update={"question_order": order,
                                                         "current_question_index": len(order)})
            return list(session.question_order), session

        order = decks.delivery_order(deck, self.rng)
        return order, session.model_copy(update={"question_order": order, "current_question_index": 0})

    async def _deliver(self, ctx: RequestContext, response_cls):
        requester = ctx.requester
        order, session = self._plan_delivery(ctx.deck, ctx.session)
        if requester.user_id and (not ctx.session_exists or session != ctx.session):
            await self._io(self.store.save_player_session(ctx.post_id, requester.user_id, session))
        if session.current_question_index != ctx.session.current_question_index and ctx.session_exists:
            logger.info("Re-based session of user %s on post %s from index %d to %d",
                        requester.user_id, ctx.post_id,
                        ctx.session.current_question_index, session.current_question_index)
        return response_cls(payload=protocol.PostData(
            post_id=ctx.post_id,
            deck=decks.deliver(ctx.deck, order),
            player_session=session,
            player_rank=ctx.player_rank,
            user_id=requester.user_id,
            username=requester.display_name,
            is_admin=await self._is_admin(requester),
        ))

    async def _refreshed_snapshot(self, requester: Requester) -> protocol.GivePostData:
        """Full stored deck, unshuffled, for editors right after a change."""
        ctx = await self._resolve_context(requester)
        return protocol.GivePostData(payload=protocol.PostData(
            post_id=ctx.post_id,
            deck=ctx.deck,
            player_session=ctx.session,
            player_rank=ctx.player_rank,
            user_id=requester.user_id,
            username=requester.display_name,
            is_admin=await self._is_admin(requester),
        ))

    # --- handlers -----------------------------------------------------------

    async def _handle_init(self, request, requester, ctx):
        return await self._deliver(self._require_context(ctx, request), protocol.InitResponse)

    async def _handle_get_post_data(self, request, requester, ctx):
        return await self._deliver(self._require_context(ctx, request), protocol.GivePostData)

    async def _handle_submit_answer(self, request, requester, ctx):
        ctx = self._require_context(ctx, request)
        if not requester.user_id:
            raise PreconditionFailed("SUBMIT_ANSWER requires a user id")
        payload = request.payload
        session = ctx.session
        order = session.question_order

        if not ctx.session_exists or not order:
            return protocol.AnswerResult(payload=protocol.AnswerResultPayload(
                status="error", message="No game in progress, request the post data first"))

        session = self._rebase_session(ctx.deck, session)
        deck_changed = session is not ctx.session
        if deck_changed:
            logger.info("Questions were deleted under user %s on post %s, session re-based to index %d of %d",
                        requester.user_id, ctx.post_id, session.current_question_index,
                        len(session.question_order))
        order = session.question_order

        index = payload.question_index
        if (session.is_complete() or index != session.current_question_index
                or order[index] != payload.question_id):
            logger.info("Stale answer from user %s on post %s (index %d, session at %d)",
                        requester.user_id, ctx.post_id, index, session.current_question_index)
            return protocol.AnswerResult(payload=protocol.AnswerResultPayload(
                status="stale",
                total_score=session.total_score,
                is_game_complete=session.is_complete() and not deck_changed,
                refresh_required=deck_changed,
                message="Deck changed, reload the game" if deck_changed else "Question already answered",
            ))

        question = ctx.deck.question(payload.question_id)
        try:
            answer = validate_answer(question, payload.answer)
        except InvalidAnswer as e:
            return protocol.AnswerResult(payload=protocol.AnswerResultPayload(
                status="error", total_score=session.total_score, message=str(e)))

        time_remaining = min(payload.time_remaining, question.time_limit)
        points = scoring.score_answer(session.scoring_mode, question, answer,
                                      ctx.deck.stats_for(question.id), time_remaining)
        await self._io(self.store.record_response(ctx.post_id, question.id, answer))

        record = AnswerRecord(question_id=question.id, answer=answer, score=points, time_remaining=time_remaining)
        session = session.model_copy(update={
            "answers": session.answers + [record],
            "total_score": session.total_score + points,
            "current_question_index": session.current_question_index + 1,
        })
        await self._io(self.store.save_player_session(ctx.post_id, requester.user_id, session))
        logger.info("User %s answered %s on post %s for %d points", requester.user_id, question.id,
                    ctx.post_id, points)
        return protocol.AnswerResult(payload=protocol.AnswerResultPayload(
            status="success",
            score=points,
            total_score=session.total_score,
            is_game_complete=session.is_complete(),
            refresh_required=deck_changed,
        ))

    async def _handle_complete_game(self, request, requester, ctx):
        if ctx is None or not requester.user_id:
            logger.warning("COMPLETE_GAME without post or user id, nothing saved")
            return protocol.ConfirmSavePlayerData(payload=protocol.SaveConfirmation(is_saved=False))
        payload = request.payload
        await self._io(self.store.save_user_game_data(
            ctx.post_id, requester.user_id, payload.answers, payload.total_score, payload.session_data))
        return protocol.ConfirmSavePlayerData(payload=protocol.SaveConfirmation(is_saved=True))

    async def _handle_get_leaderboard_data(self, request, requester, ctx):
        ctx = self._require_context(ctx, request)
        leaderboard = await self._io(self.store.get_leaderboard(ctx.post_id))
        return protocol.GiveLeaderboardData(payload=protocol.LeaderboardData(
            leaderboard=leaderboard,
            player_rank=ctx.player_rank,
            player_score=None,
        ))

    async def _handle_add_question(self, request, requester, ctx):
        ctx = self._require_context(ctx, request)
        question = request.payload.question.model_copy(update={"author_username": requester.display_name})
        await self._io(self.store.add_question_to_deck(ctx.post_id, decks.sanitize_question(question)))
        return None

    async def _handle_edit_question(self, request, requester, ctx):
        ctx = self._require_context(ctx, request)
        question = decks.sanitize_question(request.payload.question)
        await self._io(self.store.edit_question_in_deck(ctx.post_id, question))
        return await self._refreshed_snapshot(requester)

    async def _handle_delete_question(self, request, requester, ctx):
        ctx = self._require_context(ctx, request)
        await self._io(self.store.delete_question_from_deck(ctx.post_id, request.payload.question_id))
        return await self._refreshed_snapshot(requester)

    async def _handle_create_new_post(self, request, requester, ctx):
        deck = decks.sanitize_deck(request.payload.post_data)
        post_id = await self.host.create_post(f"{deck.title} by {deck.created_by}", requester.community)
        await self._io(self.store.save_deck(post_id, deck))
        await self.host.notify("Created post!")
        await self.host.navigate(post_id)
        return None
