"""Round and scoring rules for the guessing game.

Stats are plain values; every function returns a new ``PlayerStats`` and never
mutates its input. A failed fragment request leaves the caller's stats as
they were.
"""
from __future__ import annotations
import logging
import random
from dataclasses import dataclass, replace

from moirai_archivist.client.fragment_client import FragmentClient
from moirai_archivist.common.schema import RANDOM_GENRE, CausalForce

LOGGER = logging.getLogger("moirai.game")

POINTS_PER_CORRECT = 10
PROMOTION_STREAK = 5
ATTEMPTS_PER_ROUND = 5


@dataclass(frozen=True)
class PlayerStats:
    current_score: int = 0
    current_streak: int = 0
    highest_streak: int = 0
    highest_score: int = 0
    difficulty_tier: int = 1
    total_correct: int = 0
    total_incorrect: int = 0
    total_rounds_played: int = 0
    attempt_count: int = 0

    @property
    def accuracy_rate(self) -> float | None:
        """Percentage of correct classifications, or None before the first guess."""
        total = self.total_correct + self.total_incorrect
        if total == 0:
            return None
        return round(self.total_correct / total * 100, 1)


@dataclass(frozen=True)
class Round:
    """A fragment in play. ``secret_tag`` and ``revelation_text`` stay hidden until classified."""
    fragment_text: str
    revelation_text: str
    secret_tag: CausalForce
    difficulty_tier: int
    genre: str


@dataclass(frozen=True)
class Verdict:
    correct: bool
    true_tag: CausalForce
    revelation_text: str
    stats: PlayerStats
    promotion_message: str | None = None


async def start_round(
    client: FragmentClient,
    stats: PlayerStats,
    genre: str | None = None,
    rng: random.Random | None = None,
    deadline: float | None = None,
) -> tuple[Round, PlayerStats]:
    """
    Pick a secret tag, request its fragment and advance the attempt counters.

    Args:
        client: Fragment client.
        stats: Stats before the round.
        genre: Narrative setting, random when omitted.
        rng: Random source for the secret tag.
        deadline: Passed through to the client.

    Returns:
        The new round and the updated stats.

    Raises:
        ArchivistError: Any client failure. ``stats`` is not advanced.
    """
    secret_tag = (rng or random).choice(list(CausalForce))
    result = await client.request_fragment(stats.difficulty_tier, secret_tag, genre, deadline)

    attempt_count = (stats.attempt_count + 1) % ATTEMPTS_PER_ROUND
    rounds = stats.total_rounds_played + (1 if attempt_count == 0 else 0)
    new_stats = replace(stats, attempt_count=attempt_count, total_rounds_played=rounds)
    rnd = Round(
        fragment_text=result.fragment_text,
        revelation_text=result.revelation_text,
        secret_tag=secret_tag,
        difficulty_tier=stats.difficulty_tier,
        genre=genre or RANDOM_GENRE,
    )
    return rnd, new_stats


def classify(stats: PlayerStats, rnd: Round, guess: CausalForce | str) -> Verdict:
    """
    Score the player's guess for ``rnd``.

    A correct guess earns points and extends the streak; every
    ``PROMOTION_STREAK`` consecutive correct guesses raise the difficulty tier.
    A wrong guess resets the streak.
    """
    guess = CausalForce(guess.strip().upper()) if isinstance(guess, str) else guess
    if guess != rnd.secret_tag:
        new_stats = replace(
            stats,
            current_streak=0,
            total_incorrect=stats.total_incorrect + 1,
        )
        return Verdict(False, rnd.secret_tag, rnd.revelation_text, new_stats)

    score = stats.current_score + POINTS_PER_CORRECT
    streak = stats.current_streak + 1
    tier = stats.difficulty_tier
    promotion = None
    if streak % PROMOTION_STREAK == 0:
        tier += 1
        promotion = (
            f"Archivist Promotion! Difficulty Tier is now {tier}. "
            "Prepare for greater subtlety!"
        )
        LOGGER.info("Promoted to tier %d after streak of %d", tier, streak)
    new_stats = replace(
        stats,
        current_score=score,
        current_streak=streak,
        highest_streak=max(stats.highest_streak, streak),
        highest_score=max(stats.highest_score, score),
        difficulty_tier=tier,
        total_correct=stats.total_correct + 1,
    )
    return Verdict(True, rnd.secret_tag, rnd.revelation_text, new_stats, promotion)
