"""Time-weighted points for a correct answer.

Two formulas are supported and selected by ``config.SCORING_FORMULA``:

``half_floor``
    ``ceil(base * (0.5 + 0.5 * (1 - elapsed / limit)))``. Any correct answer
    inside the limit earns at least half the base points, an instant one earns
    all of them.

``linear``
    ``floor(base * (1 - elapsed / limit) * 1.5)``. Reaches 1.5x base for an
    instant answer and 0 at the deadline.

Both are evaluated in integer arithmetic so equal inputs always round the
same way.
"""
import config


def calculate_score(elapsed_ms: float, time_limit_ms: int, base_points: int,
                    formula: str = "") -> int:
    formula = formula or config.SCORING_FORMULA
    if time_limit_ms <= 0:
        raise ValueError("time_limit_ms must be positive")
    if base_points <= 0:
        return 0

    elapsed = min(max(int(elapsed_ms), 0), time_limit_ms)
    remaining = time_limit_ms - elapsed

    if formula == "half_floor":
        # Rounded up so odd base points never dip below half
        return -(-base_points * (time_limit_ms + remaining) // (2 * time_limit_ms))
    if formula == "linear":
        return (base_points * remaining * 3) // (2 * time_limit_ms)
    raise ValueError(f"Unknown scoring formula: {formula}")
