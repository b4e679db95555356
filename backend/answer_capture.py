"""
Client-side state machine for answering one question at a time.

    AWAITING_INPUT -> SUBMITTING -> RESULTS_SHOWN -> AWAITING_INPUT | GAME_COMPLETE

The countdown and the reveal window run as asyncio tasks. A countdown belongs to
one (deck id, question index) key: it is cancelled whenever the question changes
or the machine is closed, and a tick that arrives for any other key is dropped.
"""
import asyncio
import json
import logging
import math
import time
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

import config
from models import Answer, Deck, NO_ANSWER, PlayerSession, Question, QuestionStats, QuestionType
from protocol import AnswerResultPayload

logger = logging.getLogger(__name__)

SubmitFn = Callable[[Question, Answer, int, int], Awaitable[Optional[AnswerResultPayload]]]
RefreshFn = Callable[[], Awaitable[Optional[Tuple[Deck, PlayerSession]]]]


class CaptureState(str, Enum):
    AWAITING_INPUT = "awaiting_input"
    SUBMITTING = "submitting"
    RESULTS_SHOWN = "results_shown"
    GAME_COMPLETE = "game_complete"


def animated_score(start: int, target: int, elapsed_ms: float, duration_ms: float) -> int:
    """Score shown `elapsed_ms` into the count-up; exactly `target` once the duration has passed."""
    if duration_ms <= 0 or elapsed_ms >= duration_ms:
        return target
    progress = max(0.0, elapsed_ms / duration_ms)
    return math.floor(start + (target - start) * progress)


def reveal_progress(elapsed_ms: float, duration_ms: float) -> float:
    if duration_ms <= 0:
        return 100.0
    return min(max(elapsed_ms / duration_ms, 0.0), 1.0) * 100


def toggle_sequence(order: Dict[str, int], card_id: str) -> Dict[str, int]:
    """Add a card at the next rank, or remove it and close the gap so ranks stay 1..k."""
    if card_id in order:
        remaining = sorted((rank, cid) for cid, rank in order.items() if cid != card_id)
        return {cid: i + 1 for i, (_, cid) in enumerate(remaining)}
    updated = dict(order)
    updated[card_id] = len(order) + 1
    return updated


def sequence_from_order(order: Dict[str, int]) -> List[str]:
    return [cid for cid, _ in sorted(order.items(), key=lambda item: item[1])]


class TimerCheckpoints:
    """Best-effort recovery slots for a question's remaining seconds.

    Kept in memory, and mirrored to a JSON file when a path is given so a
    restarted client can pick the countdown up where it left off.
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path else None
        self._slots: Dict[str, int] = {}
        if self.path and self.path.exists():
            try:
                self._slots = {k: int(v) for k, v in json.loads(self.path.read_text()).items()}
            except (OSError, ValueError) as e:
                logger.warning("Ignoring unreadable timer checkpoints at %s: %s", self.path, e)

    @staticmethod
    def key(deck_id: str, question_index: int) -> str:
        return f"{config.TIMER_STORAGE_PREFIX}_{deck_id}_{question_index}"

    def load(self, deck_id: str, question_index: int) -> Optional[int]:
        return self._slots.get(self.key(deck_id, question_index))

    def save(self, deck_id: str, question_index: int, seconds: int):
        self._slots[self.key(deck_id, question_index)] = seconds
        self._flush()

    def clear(self, deck_id: str, question_index: int):
        if self._slots.pop(self.key(deck_id, question_index), None) is not None:
            self._flush()

    def _flush(self):
        if not self.path:
            return
        try:
            self.path.write_text(json.dumps(self._slots))
        except OSError as e:
            logger.warning("Could not write timer checkpoints to %s: %s", self.path, e)


class AnswerCapture:
    def __init__(self, deck: Deck, session: PlayerSession, submit: SubmitFn, *,
                 refresh: Optional[RefreshFn] = None,
                 checkpoints: Optional[TimerCheckpoints] = None,
                 clock: Callable[[], float] = time.monotonic,
                 tick_seconds: float = 1.0,
                 reveal_ms: float = config.REVEAL_DURATION_MS,
                 score_animation_ms: float = config.SCORE_ANIMATION_MS,
                 poll_ms: float = config.REVEAL_POLL_MS):
        self.deck = deck
        self.scoring_mode = session.scoring_mode
        self._submit_fn = submit
        self._refresh_fn = refresh
        self.checkpoints = checkpoints or TimerCheckpoints()
        self.clock = clock
        self.tick_seconds = tick_seconds
        self.reveal_ms = reveal_ms
        self.score_animation_ms = score_animation_ms
        self.poll_ms = poll_ms

        self.state = CaptureState.AWAITING_INPUT
        self.live_index = min(session.current_question_index, len(deck.questions))
        self.total_score = session.total_score
        self.displayed_total_score = session.total_score
        self.time_remaining = 0
        self.selected_card_id: Optional[str] = None
        self.sequence_order: Dict[str, int] = {}

        # Snapshot of the question being revealed; the live index has already moved on.
        self.answered_question: Optional[Question] = None
        self.answered_index = -1
        self.last_score = 0
        self.reveal_progress = 0.0

        self._countdown_task: Optional[asyncio.Task] = None
        self._countdown_key: Optional[Tuple[str, int]] = None
        self._reveal_task: Optional[asyncio.Task] = None
        self._reveal_started_at: Optional[float] = None
        self._score_start = session.total_score
        self._closed = False
        self._resync_pending = False

    # --- derived view state -------------------------------------------------

    @property
    def total_questions(self) -> int:
        return len(self.deck.questions)

    @property
    def current_question(self) -> Optional[Question]:
        if 0 <= self.live_index < self.total_questions:
            return self.deck.questions[self.live_index]
        return None

    @property
    def _revealing(self) -> bool:
        return self.answered_question is not None and self.state in (
            CaptureState.RESULTS_SHOWN, CaptureState.GAME_COMPLETE)

    @property
    def displayed_question(self) -> Optional[Question]:
        return self.answered_question if self._revealing else self.current_question

    @property
    def displayed_index(self) -> int:
        return self.answered_index if self._revealing else self.live_index

    @property
    def progress_percentage(self) -> float:
        if not self.total_questions:
            return 100.0
        if self._revealing:
            return (self.answered_index + 1) / self.total_questions * 100
        return self.live_index / self.total_questions * 100

    @property
    def accepting_input(self) -> bool:
        return (not self._closed and self.state == CaptureState.AWAITING_INPUT
                and self.current_question is not None)

    def displayed_stats(self) -> Optional[QuestionStats]:
        question = self.displayed_question
        return self.deck.stats_for(question.id) if question else None

    def card_percentage(self, card_id: str) -> int:
        stats = self.displayed_stats()
        return stats.percentage(card_id) if stats else 0

    def score_at(self, now: float) -> int:
        """Animated total score at clock time `now`."""
        if self._reveal_started_at is None or self.state != CaptureState.RESULTS_SHOWN:
            return self.total_score
        elapsed_ms = (now - self._reveal_started_at) * 1000
        return animated_score(self._score_start, self.total_score, elapsed_ms, self.score_animation_ms)

    # --- lifecycle ----------------------------------------------------------

    def start(self):
        """Begin the current question. Must be called from a running event loop."""
        if self.current_question is None:
            self.state = CaptureState.GAME_COMPLETE
            return
        self._start_countdown()

    async def close(self):
        """Tear down: checkpoint an unanswered question's timer and cancel all tasks."""
        if self._closed:
            return
        self._closed = True
        tasks = [t for t in (self._countdown_task, self._reveal_task) if t is not None]
        self._stop_countdown(checkpoint=self.state in (CaptureState.AWAITING_INPUT, CaptureState.SUBMITTING))
        current = asyncio.current_task()
        for task in tasks:
            if task is not current and not task.done():
                task.cancel()
        await asyncio.gather(*(t for t in tasks if t is not current), return_exceptions=True)
        self._reveal_task = None

    async def wait_for_reveal(self):
        task = self._reveal_task
        if task is not None:
            await task

    # --- input --------------------------------------------------------------

    async def select_card(self, card_id: str) -> bool:
        """Single choice: submit the card. Sequence: toggle it in the order map."""
        if not self.accepting_input:
            return False
        question = self.current_question
        if question.card(card_id) is None:
            logger.warning("Ignoring unknown card %s for question %s", card_id, question.id)
            return False
        if question.question_type == QuestionType.SEQUENCE:
            self.sequence_order = toggle_sequence(self.sequence_order, card_id)
            return True
        self.selected_card_id = card_id
        return await self._submit(card_id)

    async def submit_sequence(self) -> bool:
        if not self.accepting_input or self.current_question.question_type != QuestionType.SEQUENCE:
            return False
        return await self._submit(sequence_from_order(self.sequence_order))

    def _timeout_answer(self) -> Answer:
        if self.current_question.question_type == QuestionType.SEQUENCE:
            return sequence_from_order(self.sequence_order)
        return self.selected_card_id if self.selected_card_id is not None else NO_ANSWER

    async def _submit(self, answer: Answer) -> bool:
        if self._closed or self.state != CaptureState.AWAITING_INPUT:
            return False
        question = self.current_question
        index = self.live_index
        self.state = CaptureState.SUBMITTING
        try:
            result = await self._submit_fn(question, answer, self.time_remaining, index)
        except Exception as e:
            logger.warning("Submitting answer for question %s failed: %s", question.id, e)
            result = None

        if self._closed:
            return False
        if result is not None and result.refresh_required:
            self._resync_pending = True
        if result is None or result.status != "success":
            reloaded = self._resync_pending and await self._resync()
            if self._closed:
                return False
            self.state = CaptureState.AWAITING_INPUT
            if reloaded:
                logger.info("Answer for question %s rejected, game reloaded from the server", question.id)
                self._stop_countdown(checkpoint=False)
                self.start()
            else:
                logger.info("Answer for question %s not accepted, input re-enabled", question.id)
            return False

        self._stop_countdown(checkpoint=False)
        self.answered_question = question
        self.answered_index = index
        self.last_score = result.score
        self.total_score = result.total_score
        self.live_index = index + 1
        self.state = CaptureState.RESULTS_SHOWN
        self._start_reveal(result.is_game_complete)
        return True

    # --- countdown ----------------------------------------------------------

    def _start_countdown(self):
        question = self.current_question
        key = (self.deck.id, self.live_index)
        restored = self.checkpoints.load(*key)
        if restored is not None and 0 < restored <= question.time_limit:
            self.time_remaining = restored
        else:
            self.time_remaining = question.time_limit
        self._countdown_key = key
        self._countdown_task = asyncio.create_task(self._run_countdown(key))

    async def _run_countdown(self, key: Tuple[str, int]):
        try:
            while self.time_remaining > 0:
                await asyncio.sleep(self.tick_seconds)
                if self._countdown_key != key:
                    return
                self.time_remaining -= 1
            if self._countdown_key == key and self.state == CaptureState.AWAITING_INPUT:
                logger.info("Time ran out on question %d of deck %s", key[1], key[0])
                await self._submit(self._timeout_answer())
        except asyncio.CancelledError:
            pass

    def _stop_countdown(self, checkpoint: bool):
        task, key = self._countdown_task, self._countdown_key
        self._countdown_task = None
        self._countdown_key = None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
        if key is None:
            return
        if checkpoint and self.time_remaining > 0:
            self.checkpoints.save(key[0], key[1], self.time_remaining)
        elif not checkpoint:
            self.checkpoints.clear(key[0], key[1])

    # --- reveal -------------------------------------------------------------

    def _start_reveal(self, game_complete: bool):
        self.reveal_progress = 0.0
        self._score_start = self.total_score - self.last_score
        self.displayed_total_score = self._score_start
        self._reveal_started_at = self.clock()
        self._reveal_task = asyncio.create_task(self._run_reveal(game_complete))

    async def _run_reveal(self, game_complete: bool):
        try:
            while True:
                elapsed_ms = (self.clock() - self._reveal_started_at) * 1000
                self.reveal_progress = reveal_progress(elapsed_ms, self.reveal_ms)
                self.displayed_total_score = animated_score(
                    self._score_start, self.total_score, elapsed_ms, self.score_animation_ms)
                if elapsed_ms >= self.reveal_ms:
                    break
                await asyncio.sleep(min(self.poll_ms, self.reveal_ms - elapsed_ms) / 1000)
            if self._resync_pending and not game_complete:
                await self._resync()
            self._finish_reveal(game_complete)
        except asyncio.CancelledError:
            pass

    async def _resync(self) -> bool:
        """Replace the local deck and progress with a fresh server snapshot."""
        self._resync_pending = False
        if self._refresh_fn is None:
            return False
        try:
            snapshot = await self._refresh_fn()
        except Exception as e:
            logger.warning("Reloading the game failed: %s", e)
            snapshot = None
        if snapshot is None or self._closed:
            return False
        deck, session = snapshot
        self.deck = deck
        self.live_index = min(session.current_question_index, len(deck.questions))
        self.total_score = session.total_score
        self.displayed_total_score = session.total_score
        self.selected_card_id = None
        self.sequence_order = {}
        logger.info("Reloaded deck %s at question %d of %d", deck.id, self.live_index, len(deck.questions))
        return True

    def _finish_reveal(self, game_complete: bool):
        self._reveal_task = None
        self.displayed_total_score = self.total_score
        if game_complete or self.current_question is None:
            self.state = CaptureState.GAME_COMPLETE
            logger.info("Game complete on deck %s with %d points", self.deck.id, self.total_score)
            return
        self.selected_card_id = None
        self.sequence_order = {}
        self.reveal_progress = 0.0
        self.state = CaptureState.AWAITING_INPUT
        self._start_countdown()
