from datetime import date, datetime

from .defaults import (
    KEGEL_CONFIGS,
    KEGEL_TEXT,
    DIFFICULTY_LABELS,
    START_STOP_EXERCISE,
    BREATHING_EXERCISE,
    START_STOP_WEEKDAYS,
    DAILY_TIPS,
)


def calendar_day(day):
    """Reduce a datetime to its calendar date; dates pass through."""
    if isinstance(day, datetime):
        return day.date()
    return day


def parse_day(value: str, fallback: date):
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        return fallback


def has_start_stop(day) -> bool:
    return calendar_day(day).weekday() in START_STOP_WEEKDAYS


def kegel_duration(difficulty: str) -> int:
    config = KEGEL_CONFIGS[difficulty]
    return config["sets"] * (config["contract_seconds"] + config["relax_seconds"])


def _kegel_entry(kind: str, day_key: str, difficulty: str):
    config = KEGEL_CONFIGS[difficulty]
    text = KEGEL_TEXT[kind]
    return {
        "id": f"{kind}-{day_key}",
        "kind": kind,
        "name": text["name"],
        "period": text["period"],
        "duration_seconds": kegel_duration(difficulty),
        "description": f"{text['description']} - {DIFFICULTY_LABELS[difficulty]} level",
        "instructions": [
            f"Contract the pelvic floor muscles for {config['contract_seconds']} seconds",
            f"Relax for {config['relax_seconds']} seconds",
            f"Repeat {config['sets']} times",
            text["closing_instruction"],
        ],
        "difficulty": difficulty,
        "completed": False,
    }


def generate_schedule(day, difficulty: str, completed_ids=()):
    """
    Build the three exercises for a calendar day.

    Two Kegel entries (morning, night) sized by ``difficulty``, then
    Start-Stop on Monday/Wednesday/Friday or Breathing on every other day.
    Ids embed the ISO date so regenerating a day yields the same ids and
    ``completed_ids`` can be merged by equality.
    """
    day = calendar_day(day)
    day_key = day.isoformat()
    completed_ids = set(completed_ids or ())

    exercises = [
        _kegel_entry("kegel-morning", day_key, difficulty),
        _kegel_entry("kegel-night", day_key, difficulty),
    ]

    extra = START_STOP_EXERCISE if has_start_stop(day) else BREATHING_EXERCISE
    entry = dict(extra)
    entry["instructions"] = list(extra["instructions"])
    entry["id"] = f"{extra['kind']}-{day_key}"
    entry["completed"] = False
    exercises.append(entry)

    for ex in exercises:
        ex["completed"] = ex["id"] in completed_ids

    return exercises


def find_exercise(schedule: list, exercise_id: str):
    for ex in schedule:
        if ex["id"] == exercise_id:
            return ex
    raise KeyError(exercise_id)


def day_progress(schedule: list):
    done = sum(1 for ex in schedule if ex.get("completed"))
    total = len(schedule)
    percent = round(done / total * 100) if total else 0
    return {"done": done, "total": total, "percent": percent}


def day_label(day, today) -> str:
    day = calendar_day(day)
    today = calendar_day(today)
    if day == today:
        return "today"
    if day > today:
        return "upcoming"
    return "past"


def daily_tip(day) -> str:
    return DAILY_TIPS["start-stop" if has_start_stop(day) else "breathing"]


def format_time(seconds: int) -> str:
    seconds = max(0, int(seconds))
    return f"{seconds // 60}:{seconds % 60:02d}"
