import asyncio
import logging
import time
from typing import Callable, Optional

import config
from scoring import calculate_score
from session import GameSession, Phase

logger = logging.getLogger(__name__)


def now_ms() -> float:
    return time.time() * 1000


class PhaseController:
    """Drives the session through its phases.

    ``notifier`` is anything with ``send_to(connection_id, message)``,
    ``send_to_host(message)`` and ``broadcast_to_players(message)``; in
    production that is the connection gateway.

    ``scheduler`` needs ``call_later(delay_seconds, callback, *args)``
    returning a handle with ``cancel()``. When omitted the running asyncio
    loop is used.
    """

    def __init__(self, session: GameSession, notifier, scheduler=None,
                 clock: Optional[Callable[[], float]] = None,
                 scoring_formula: str = "",
                 deadline_buffer_ms: Optional[int] = None,
                 reveal_grace_ms: Optional[int] = None):
        self.session = session
        self.notifier = notifier
        self.scheduler = scheduler
        self.clock = clock or now_ms
        self.scoring_formula = scoring_formula or config.SCORING_FORMULA
        self.deadline_buffer_ms = config.DEADLINE_BUFFER_MS if deadline_buffer_ms is None else deadline_buffer_ms
        self.reveal_grace_ms = config.REVEAL_GRACE_MS if reveal_grace_ms is None else reveal_grace_ms
        self.deadline_timer = None
        self.grace_timer = None

    # --- timers ---

    def _call_later(self, delay_ms: float, callback, *args):
        scheduler = self.scheduler or asyncio.get_running_loop()
        return scheduler.call_later(max(0, delay_ms) / 1000, callback, *args)

    def cancel_timers(self):
        if self.deadline_timer:
            self.deadline_timer.cancel()
            self.deadline_timer = None
        if self.grace_timer:
            self.grace_timer.cancel()
            self.grace_timer = None

    # --- outbound helpers ---

    def leaderboard_message(self) -> dict:
        return {
            "type": "LEADERBOARD_UPDATE",
            "entries": self.session.leaderboard(),
            "phase": self.session.phase.value,
        }

    def broadcast_leaderboard(self):
        message = self.leaderboard_message()
        self.notifier.send_to_host(message)
        self.notifier.broadcast_to_players(message)

    # --- transitions ---

    def start_question(self):
        """Enter QUESTION_ACTIVE for the next index and arm the deadline."""
        self.cancel_timers()
        session = self.session
        question = session.begin_question(self.clock())
        serial = session.question_serial

        common = {
            "question_number": session.current_question_index + 1,
            "total_questions": session.total_questions,
            "time_limit": session.time_limit_ms,
            "start_time": session.question_started_at,
            "deadline": session.question_deadline,
        }
        self.notifier.send_to_host({"type": "QUESTION_FOR_HOST", **question.host_view(), **common})
        self.notifier.broadcast_to_players({"type": "QUESTION", **question.player_view(), **common})

        self.deadline_timer = self._call_later(
            session.time_limit_ms + self.deadline_buffer_ms, self._on_deadline, serial
        )
        logger.info("Question %d/%d started (%d players)",
                    session.current_question_index + 1, session.total_questions, len(session.players))

    def _on_deadline(self, serial: int):
        session = self.session
        if serial != session.question_serial or session.phase != Phase.QUESTION_ACTIVE:
            logger.debug("Ignoring stale deadline for question serial %d", serial)
            return
        self.deadline_timer = None
        logger.info("Time is up for question %d (%d/%d answered)",
                    session.current_question_index + 1, len(session.answers), len(session.players))
        self.finalize_question(serial)

    def check_full_participation(self) -> bool:
        """Reveal now if every remaining player has answered."""
        session = self.session
        if session.phase == Phase.QUESTION_ACTIVE and session.all_answered():
            return self.finalize_question(session.question_serial)
        return False

    def finalize_question(self, serial: int) -> bool:
        """Score the in-flight question and publish results, at most once per question."""
        session = self.session
        # Guard against double-fire (deadline + full participation race)
        if (session.phase != Phase.QUESTION_ACTIVE
                or serial != session.question_serial
                or session.revealed_serial >= serial):
            return False

        session.revealed_serial = serial
        session.phase = Phase.REVEALING_RESULTS
        session.ready_for_next = False
        if self.deadline_timer:
            self.deadline_timer.cancel()
            self.deadline_timer = None

        question = session.current_question
        correct_count = 0
        for cid, answer in session.answers.items():
            player = session.players.get(cid)
            if not player:
                continue
            correct = question.is_correct(answer["label"])
            points = 0
            if correct:
                correct_count += 1
                points = calculate_score(answer["elapsed_ms"], session.time_limit_ms,
                                         question.base_points, self.scoring_formula)
                player["score"] += points
            self.notifier.send_to(cid, {
                "type": "ANSWER_FEEDBACK",
                "correct": correct,
                "correct_label": question.correct_label,
                "points_earned": points,
                "score": player["score"],
            })
            session.answer_log.append({
                "question_number": session.current_question_index + 1,
                "name": player["name"],
                "label": answer["label"],
                "correct": correct,
                "elapsed_ms": int(answer["elapsed_ms"]),
                "points": points,
            })

        answered_count = len(session.answers)
        session.answers = {}

        self.broadcast_leaderboard()
        self.notifier.send_to_host({
            "type": "RESULTS_SUMMARY",
            "correct_label": question.correct_label,
            "answered_count": answered_count,
            "correct_count": correct_count,
            "total_players": len(session.players),
            "is_final": session.is_last_question(),
        })
        logger.info("Question %d revealed: %d answered, %d correct",
                    session.current_question_index + 1, answered_count, correct_count)

        self.grace_timer = self._call_later(self.reveal_grace_ms, self._on_grace_elapsed, serial)
        return True

    def _on_grace_elapsed(self, serial: int):
        session = self.session
        if serial != session.question_serial or session.phase != Phase.REVEALING_RESULTS:
            logger.debug("Ignoring stale grace timer for question serial %d", serial)
            return
        self.grace_timer = None
        session.ready_for_next = True
        self.notifier.send_to_host({"type": "READY_FOR_NEXT", "is_final": session.is_last_question()})

    def advance(self):
        """Move on from REVEALING_RESULTS: next question, or the end of the game."""
        if self.session.is_last_question():
            self.end_game()
        else:
            self.start_question()

    def end_game(self):
        self.cancel_timers()
        session = self.session
        session.finish()
        message = {"type": "GAME_OVER", "leaderboard": session.leaderboard()}
        self.notifier.send_to_host({**message, "answer_log": list(session.answer_log)})
        self.notifier.broadcast_to_players(message)
        logger.info("Game over (%d players)", len(session.players))

    def host_lost(self):
        """Void the game: reset the session and tell every player the host left."""
        self.cancel_timers()
        removed = self.session.reset_for_new_host(None)
        for cid in removed:
            self.notifier.send_to(cid, {
                "type": "HOST_LEFT",
                "message": "The quiz master disconnected. Please refresh to join a new game.",
            })
        logger.info("Host disconnected. Game reset (%d players notified)", len(removed))
