from enum import Enum
from typing import Dict, List, Optional

import config
from question_bank import Question, QuestionBank


class Phase(str, Enum):
    IDLE = "IDLE"
    AWAITING_PLAYERS = "AWAITING_PLAYERS"
    QUESTION_ACTIVE = "QUESTION_ACTIVE"
    REVEALING_RESULTS = "REVEALING_RESULTS"
    FINISHED = "FINISHED"


def name_key(name: str, mode: str = "") -> str:
    """Key used for name-collision checks."""
    mode = mode or config.NAME_MATCH
    return name.casefold() if mode == "casefold" else name


class GameSession:
    """The single authoritative record of one quiz session.

    Only the phase controller and the gateway mutate it, and always from
    synchronous code on the event loop, so no two handlers interleave.
    """

    def __init__(self, question_bank: QuestionBank, pin: str = "",
                 time_limit_ms: int = 0, name_match: str = ""):
        self.questions = question_bank
        self.pin = pin or config.GAME_PIN
        self.time_limit_ms = time_limit_ms or config.QUESTION_TIME_LIMIT_MS
        self.name_match = name_match or config.NAME_MATCH
        self.phase = Phase.IDLE
        self.current_question_index = -1
        self.players: Dict[str, dict] = {}  # connection_id -> {name, score}
        self.answers: Dict[str, dict] = {}  # connection_id -> {label, elapsed_ms}
        self.host_id: Optional[str] = None
        self.question_started_at: float = 0  # epoch ms
        self.question_deadline: float = 0  # epoch ms
        # Serial numbers survive resets so stale timers never match a new question
        self.question_serial = 0
        self.revealed_serial = 0
        self.ready_for_next = False
        self.answer_log: List[dict] = []

    # --- lifecycle ---

    def reset_for_new_host(self, host_id: Optional[str]) -> List[str]:
        """Start a fresh session owned by ``host_id``; return removed player ids."""
        removed = list(self.players)
        self.players = {}
        self.answers = {}
        self.host_id = host_id
        self.phase = Phase.AWAITING_PLAYERS
        self.current_question_index = -1
        self.question_started_at = 0
        self.question_deadline = 0
        self.ready_for_next = False
        self.answer_log = []
        return removed

    def begin_question(self, now_ms: float) -> Question:
        self.answers = {}
        self.current_question_index += 1
        self.question_serial += 1
        self.phase = Phase.QUESTION_ACTIVE
        self.ready_for_next = False
        self.question_started_at = now_ms
        self.question_deadline = now_ms + self.time_limit_ms
        return self.current_question

    def finish(self):
        self.answers = {}
        self.phase = Phase.FINISHED
        self.ready_for_next = False

    # --- roster ---

    def find_player_by_name(self, name: str) -> Optional[str]:
        key = name_key(name, self.name_match)
        for cid, player in self.players.items():
            if name_key(player["name"], self.name_match) == key:
                return cid
        return None

    def add_player(self, connection_id: str, name: str) -> dict:
        player = {"name": name, "score": 0}
        self.players[connection_id] = player
        return player

    def remove_player(self, connection_id: str) -> Optional[dict]:
        self.answers.pop(connection_id, None)
        return self.players.pop(connection_id, None)

    def is_player(self, connection_id: str) -> bool:
        return connection_id in self.players

    def is_host(self, connection_id: str) -> bool:
        return self.host_id is not None and self.host_id == connection_id

    # --- answers ---

    def has_answered(self, connection_id: str) -> bool:
        return connection_id in self.answers

    def record_answer(self, connection_id: str, label: str, elapsed_ms: float) -> bool:
        """Record a first answer for the in-flight question. Repeats are dropped."""
        if (self.phase != Phase.QUESTION_ACTIVE
                or connection_id not in self.players
                or connection_id in self.answers):
            return False
        self.answers[connection_id] = {"label": label, "elapsed_ms": elapsed_ms}
        return True

    def all_answered(self) -> bool:
        return len(self.answers) >= len(self.players)

    # --- questions ---

    @property
    def current_question(self) -> Optional[Question]:
        if 0 <= self.current_question_index < len(self.questions):
            return self.questions[self.current_question_index]
        return None

    @property
    def total_questions(self) -> int:
        return len(self.questions)

    def is_last_question(self) -> bool:
        return self.questions.is_last(self.current_question_index)

    # --- views ---

    def leaderboard(self) -> List[dict]:
        # sorted() is stable, so ties keep join order
        sorted_players = sorted(
            self.players.values(),
            key=lambda x: x["score"],
            reverse=True
        )
        return [{"name": p["name"], "score": p["score"]} for p in sorted_players]

    def snapshot(self) -> dict:
        return {
            "phase": self.phase.value,
            "question_number": self.current_question_index + 1,
            "total_questions": self.total_questions,
            "player_count": len(self.players),
            "answered_count": len(self.answers),
            "has_host": self.host_id is not None,
            "leaderboard": self.leaderboard(),
        }
