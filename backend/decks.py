import re
import random
import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence

import config
from models import Card, Deck, Question, QuestionStats, QuestionType

logger = logging.getLogger(__name__)


class DeckError(Exception):
    """Raised when a deck edit would break the deck's invariants."""
    pass


class DeckSource(str, Enum):
    STORED = "stored"
    DEFAULT = "default"


@dataclass
class ResolvedDeck:
    deck: Deck
    source: DeckSource

    @property
    def is_default(self) -> bool:
        return self.source == DeckSource.DEFAULT


DEFAULT_DECK_ID = "default-duel"


def get_default_deck() -> Deck:
    """Build a fresh copy of the built-in deck used when a post has none stored."""
    return Deck(
        id=DEFAULT_DECK_ID,
        title="Default Duel",
        created_by="DebateDueler",
        flair_text="Hot Takes",
        questions=[
            Question(
                id="q1",
                prompt="Pineapple on pizza?",
                time_limit=config.DEFAULT_TIME_LIMIT,
                cards=[
                    Card(id="c1", text="Absolutely"),
                    Card(id="c2", text="Never"),
                    Card(id="c3", text="Only with ham"),
                    Card(id="c4", text="What is pizza?"),
                ],
            ),
            Question(
                id="q2",
                prompt="Which came first?",
                time_limit=config.DEFAULT_TIME_LIMIT,
                cards=[
                    Card(id="c1", text="The egg"),
                    Card(id="c2", text="The chicken"),
                ],
                correct_card_id="c1",
            ),
            Question(
                id="q3",
                prompt="Order these from oldest to newest",
                question_type=QuestionType.SEQUENCE,
                time_limit=30,
                cards=[
                    Card(id="c1", text="Printing press"),
                    Card(id="c2", text="Telephone"),
                    Card(id="c3", text="Television"),
                    Card(id="c4", text="Smartphone"),
                ],
            ),
            Question(
                id="q4",
                prompt="Best way to spend a rainy Sunday?",
                time_limit=config.DEFAULT_TIME_LIMIT,
                cards=[
                    Card(id="c1", text="Reading"),
                    Card(id="c2", text="Gaming"),
                    Card(id="c3", text="Napping"),
                    Card(id="c4", text="Going out anyway"),
                ],
            ),
        ],
        question_stats=[],
    )


# ---------------------------------------------------------------------------
# Sanitization
# ---------------------------------------------------------------------------

def _sanitize_text(text: str) -> str:
    """Strip HTML tags and control characters from user-supplied text."""
    text = re.sub(r'<[^>]+>', '', text)
    text = re.sub(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]', '', text)
    return text.strip()


def sanitize_question(question: Question) -> Question:
    cards = [
        c.model_copy(update={"text": _sanitize_text(c.text)[:config.MAX_CARD_TEXT_LENGTH]})
        for c in question.cards
    ]
    update = {
        "prompt": _sanitize_text(question.prompt)[:config.MAX_PROMPT_LENGTH],
        "cards": cards,
        # user-authored questions get at least a playable countdown
        "time_limit": max(question.time_limit, config.MIN_TIME_LIMIT),
    }
    if question.author_username is not None:
        update["author_username"] = _sanitize_text(question.author_username)
    return question.model_copy(update=update)


def sanitize_deck(deck: Deck) -> Deck:
    update = {
        "title": _sanitize_text(deck.title)[:config.MAX_TITLE_LENGTH],
        "created_by": _sanitize_text(deck.created_by),
        "questions": [sanitize_question(q) for q in deck.questions],
    }
    if deck.flair_text is not None:
        update["flair_text"] = _sanitize_text(deck.flair_text)[:config.MAX_TITLE_LENGTH]
    return deck.model_copy(update=update)


# ---------------------------------------------------------------------------
# Delivery: shuffle and truncate
# ---------------------------------------------------------------------------

def shuffle_in_place(items: list, rng: Optional[random.Random] = None) -> list:
    """Fisher-Yates shuffle walking from the end; every permutation is equally likely."""
    rng = rng or random.SystemRandom()
    for i in range(len(items) - 1, 0, -1):
        j = rng.randint(0, i)
        items[i], items[j] = items[j], items[i]
    return items


def delivery_order(deck: Deck, rng: Optional[random.Random] = None,
                   limit: int = config.MAX_DELIVERED_QUESTIONS) -> List[str]:
    """Shuffle the deck's question ids, then keep at most `limit` of them."""
    ids = [q.id for q in deck.questions]
    shuffle_in_place(ids, rng)
    return ids[:limit]


def deliver(deck: Deck, order: Sequence[str]) -> Deck:
    """Return a copy of the deck holding only the questions in `order`, in that order.

    The stored deck is never touched; stats are trimmed to the delivered questions.
    """
    by_id = {q.id: q for q in deck.questions}
    questions = [by_id[qid] for qid in order if qid in by_id]
    if not questions:
        raise DeckError("Delivery would contain no questions")
    delivered_ids = {q.id for q in questions}
    stats = [s for s in deck.question_stats if s.question_id in delivered_ids]
    return deck.model_copy(update={"questions": questions, "question_stats": stats}, deep=True)


# ---------------------------------------------------------------------------
# Edits
# ---------------------------------------------------------------------------

def add_question(deck: Deck, question: Question) -> Deck:
    if deck.question(question.id) is not None:
        raise DeckError(f"Question '{question.id}' already exists")
    return deck.model_copy(update={"questions": deck.questions + [question]})


def replace_question(deck: Deck, question: Question) -> Deck:
    if deck.question(question.id) is None:
        raise DeckError(f"Question '{question.id}' not found")
    questions = [question if q.id == question.id else q for q in deck.questions]
    return deck.model_copy(update={"questions": questions})


def remove_question(deck: Deck, question_id: str) -> Deck:
    questions = [q for q in deck.questions if q.id != question_id]
    if len(questions) == len(deck.questions):
        raise DeckError(f"Question '{question_id}' not found")
    if not questions:
        raise DeckError("Cannot delete the last question")
    stats = [s for s in deck.question_stats if s.question_id != question_id]
    return deck.model_copy(update={"questions": questions, "question_stats": stats})


def tally_card(answer) -> Optional[str]:
    """The card an answer counts toward in card stats: the id, or a sequence's first pick."""
    if isinstance(answer, list):
        return answer[0] if answer else None
    return answer


def record_response(deck: Deck, question_id: str, answer) -> Deck:
    """Count one response to a question, tallying its card when there is one."""
    if deck.question(question_id) is None:
        raise DeckError(f"Question '{question_id}' not found")
    existing = deck.stats_for(question_id) or QuestionStats(question_id=question_id)
    card_stats = dict(existing.card_stats)
    card_id = tally_card(answer)
    if card_id is not None:
        card_stats[card_id] = card_stats.get(card_id, 0) + 1
    updated = QuestionStats(
        question_id=question_id,
        total_responses=existing.total_responses + 1,
        card_stats=card_stats,
    )
    others = [s for s in deck.question_stats if s.question_id != question_id]
    logger.debug("Recorded response for question %s in deck %s", question_id, deck.id)
    return deck.model_copy(update={"question_stats": others + [updated]})
