from datetime import datetime, timedelta, date

from .defaults import DEFAULT_STATS
from .exceptions import CompletionPendingError, GatewayError
from .schedule import calendar_day, find_exercise, generate_schedule


class CoachContext:
    """Who is signed in and where their data lives, passed explicitly to the core."""

    def __init__(self, user_id: str, gateway):
        self.user_id = user_id
        self.gateway = gateway

    def load_schedule(self, day, difficulty: str):
        completed = self.gateway.fetch_completed_exercise_ids(self.user_id, calendar_day(day))
        return generate_schedule(day, difficulty, completed)

    def load_stats(self):
        stats = dict(DEFAULT_STATS)
        stats.update(self.gateway.fetch_user_stats(self.user_id) or {})
        stats["current_streak"] = stats.get("current_streak") or 0
        stats["total_completed"] = stats.get("total_completed") or 0
        return stats


def _as_date(value):
    if not value:
        return None
    if isinstance(value, date):
        return calendar_day(value)
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def next_streak(stats: dict, day) -> int:
    """Streak after every exercise of ``day`` is done; a gap of more than a day restarts it."""
    day = calendar_day(day)
    current = stats.get("current_streak") or 0
    last = _as_date(stats.get("last_completed_date"))
    if last is not None and last < day - timedelta(days=1):
        return 1
    return current + 1


def complete_exercise(ctx: CoachContext, schedule: list, exercise_id: str, day, now=None, recorded=False):
    """
    Record one exercise as done for ``day`` and update the user's stats.

    Raises KeyError when the id is not part of the day's schedule, and lets
    GatewayError propagate so the caller can keep its timer for a retry.
    CompletionPendingError means the row is stored but the stats are not;
    retry with ``recorded=True`` to apply the stats without a second row.
    Returns the stats as written.
    """
    day = calendar_day(day)
    now = now or datetime.now()
    exercise = find_exercise(schedule, exercise_id)
    stats = ctx.load_stats()

    if not recorded:
        if exercise.get("completed"):
            return stats
        ctx.gateway.record_completion(ctx.user_id, exercise_id, exercise["kind"], day)
    exercise["completed"] = True

    stats["total_completed"] += 1
    update = {
        "total_completed": stats["total_completed"],
        "updated_at": now.isoformat(),
    }

    if all(ex.get("completed") for ex in schedule):
        stats["current_streak"] = next_streak(stats, day)
        stats["last_completed_date"] = day.isoformat()
        update["current_streak"] = stats["current_streak"]
        update["last_completed_date"] = stats["last_completed_date"]

    try:
        ctx.gateway.update_user_stats(ctx.user_id, update)
    except GatewayError as e:
        raise CompletionPendingError(str(e), status_code=e.status_code, detail=e.detail) from e
    return stats
