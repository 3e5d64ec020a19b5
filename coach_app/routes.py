from datetime import date, timedelta
from flask import render_template, request, redirect, url_for, session, current_app, jsonify, g

from . import exercise_bp
from .defaults import DIFFICULTY_LEVELS, DEFAULT_DIFFICULTY, DIFFICULTY_LABELS, DEFAULT_STATS
from .exceptions import AuthenticationError, CompletionPendingError, GatewayError
from .gateway import create_gateway
from .progress import CoachContext, complete_exercise
from .schedule import (
    parse_day,
    find_exercise,
    day_progress,
    day_label,
    daily_tip,
    format_time,
)
from .timer import TimerSession, TimerStore

from coach_core import login_required, log_action, current_user_id

# Ticks arrive once a second; a larger gap means a backgrounded tab catching up
MAX_TICK_SECONDS = 3600

# Live timers stay in process memory, so concurrent requests see one state
active_timers = TimerStore()

TIMER_ENDPOINTS = {
    "exercise.timer_state",
    "exercise.timer_tick",
    "exercise.timer_pause",
    "exercise.timer_resume",
    "exercise.timer_cancel",
    "exercise.timer_complete",
}


def _context():
    gateway = create_gateway(
        current_app.config,
        access_token=session.get("access_token"),
        refresh_token=session.get("refresh_token"),
    )
    g.gateway = gateway
    return CoachContext(current_user_id(), gateway)


@exercise_bp.after_request
def _keep_refreshed_tokens(response):
    gateway = g.get("gateway")
    if gateway is None or not current_user_id():
        return response
    for key in ("access_token", "refresh_token"):
        value = getattr(gateway, key, None)
        if value and session.get(key) != value:
            session[key] = value
    return response


@exercise_bp.errorhandler(AuthenticationError)
def _session_expired(e):
    username = session.get("username")
    user_id = current_user_id()
    if user_id:
        active_timers.discard(user_id)
    session.clear()
    log_action(username, "session_expired", {"error": str(e)})

    if request.endpoint in TIMER_ENDPOINTS:
        return jsonify({"ok": False, "error": "session_expired", "redirect": url_for("auth")}), 401
    return redirect(url_for("auth", next=request.path))


def _difficulty():
    difficulty = session.get("difficulty", DEFAULT_DIFFICULTY)
    if difficulty not in DIFFICULTY_LEVELS:
        difficulty = DEFAULT_DIFFICULTY
    return difficulty


def _selected_day():
    return parse_day(request.values.get("date"), date.today())


def _no_timer():
    return jsonify({"ok": False, "error": "no_active_timer"}), 404


@exercise_bp.route("/", methods=["GET"])
@login_required
def home():
    username = session.get("username")
    day = _selected_day()
    difficulty = _difficulty()
    ctx = _context()

    schedule = ctx.load_schedule(day, difficulty)
    error = None
    try:
        stats = ctx.load_stats()
    except GatewayError as e:
        stats = dict(DEFAULT_STATS)
        error = "Could not load your stats right now. Try again in a moment."
        log_action(username, "exercise_stats_failed", {"error": str(e)})

    for ex in schedule:
        ex["duration_display"] = format_time(ex["duration_seconds"])

    today = date.today()
    log_action(username, "exercise_home_view", {"date": day.isoformat(), "difficulty": difficulty})
    return render_template(
        "exercise/home.html",
        day=day,
        day_label=day_label(day, today),
        is_today=day == today,
        previous_day=(day - timedelta(days=1)).isoformat(),
        next_day=(day + timedelta(days=1)).isoformat(),
        schedule=schedule,
        progress=day_progress(schedule),
        stats=stats,
        tip=daily_tip(day),
        difficulty=difficulty,
        difficulty_levels=DIFFICULTY_LEVELS,
        difficulty_labels=DIFFICULTY_LABELS,
        has_timer=active_timers.get(current_user_id()) is not None,
        error=error,
        name=session.get("name"),
    )


@exercise_bp.route("/difficulty", methods=["POST"])
@login_required
def set_difficulty():
    username = session.get("username")
    difficulty = (request.form.get("difficulty") or DEFAULT_DIFFICULTY).lower()
    if difficulty not in DIFFICULTY_LEVELS:
        difficulty = DEFAULT_DIFFICULTY

    session["difficulty"] = difficulty
    log_action(username, "exercise_difficulty_set", {"difficulty": difficulty})
    return redirect(url_for("exercise.home", date=_selected_day().isoformat()))


@exercise_bp.route("/start/<exercise_id>", methods=["POST"])
@login_required
def start(exercise_id):
    username = session.get("username")
    day = _selected_day()
    schedule = _context().load_schedule(day, _difficulty())

    try:
        exercise = find_exercise(schedule, exercise_id)
    except KeyError:
        log_action(username, "exercise_start_unknown", {"exercise_id": exercise_id})
        return redirect(url_for("exercise.home", date=day.isoformat()))

    previous = active_timers.put(current_user_id(), TimerSession(exercise, day.isoformat()).start())
    if previous:
        log_action(username, "exercise_timer_replaced", {"exercise_id": previous.exercise["id"]})

    log_action(username, "exercise_timer_start", {"exercise_id": exercise_id, "kind": exercise["kind"]})
    return redirect(url_for("exercise.timer_view"))


@exercise_bp.route("/timer", methods=["GET"])
@login_required
def timer_view():
    timer = active_timers.get(current_user_id())
    if not timer:
        return redirect(url_for("exercise.home"))
    return render_template(
        "exercise/timer.html",
        timer=timer.state(),
        exercise=timer.exercise,
        day=timer.day,
    )


@exercise_bp.route("/timer/state", methods=["GET"])
@login_required
def timer_state():
    with active_timers.edit(current_user_id()) as timer:
        if not timer:
            return _no_timer()
        return jsonify({"ok": True, "timer": timer.state()})


@exercise_bp.route("/timer/tick", methods=["POST"])
@login_required
def timer_tick():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        data = {}
    try:
        elapsed = int(data.get("elapsed", request.form.get("elapsed", 1)))
    except (TypeError, ValueError):
        elapsed = 1
    elapsed = min(max(elapsed, 0), MAX_TICK_SECONDS)

    with active_timers.edit(current_user_id()) as timer:
        if not timer:
            return _no_timer()
        was_finished = timer.finished
        timer.tick(elapsed)
        state = timer.state()

    if state["finished"] and not was_finished:
        log_action(session.get("username"), "exercise_timer_finished", {"exercise_id": state["exercise_id"]})
    return jsonify({"ok": True, "timer": state})


@exercise_bp.route("/timer/pause", methods=["POST"])
@login_required
def timer_pause():
    with active_timers.edit(current_user_id()) as timer:
        if not timer:
            return _no_timer()
        timer.pause()
        state = timer.state()
    log_action(session.get("username"), "exercise_timer_pause", {"exercise_id": state["exercise_id"]})
    return jsonify({"ok": True, "timer": state})


@exercise_bp.route("/timer/resume", methods=["POST"])
@login_required
def timer_resume():
    with active_timers.edit(current_user_id()) as timer:
        if not timer:
            return _no_timer()
        timer.resume()
        state = timer.state()
    log_action(session.get("username"), "exercise_timer_resume", {"exercise_id": state["exercise_id"]})
    return jsonify({"ok": True, "timer": state})


@exercise_bp.route("/timer/cancel", methods=["POST"])
@login_required
def timer_cancel():
    timer = active_timers.discard(current_user_id())
    if not timer:
        return _no_timer()
    timer.cancel()
    log_action(session.get("username"), "exercise_timer_cancel", {"exercise_id": timer.exercise["id"]})
    return jsonify({"ok": True, "redirect": url_for("exercise.home", date=timer.day)})


@exercise_bp.route("/timer/complete", methods=["POST"])
@login_required
def timer_complete():
    username = session.get("username")
    user_id = current_user_id()

    # Held across the gateway calls so a double click cannot record twice
    with active_timers.edit(user_id) as timer:
        if not timer:
            return _no_timer()
        if not timer.can_complete:
            return jsonify({"ok": False, "error": "timer_running", "timer": timer.state()}), 409

        day = parse_day(timer.day, date.today())
        exercise_id = timer.exercise["id"]
        ctx = _context()

        try:
            schedule = ctx.load_schedule(day, _difficulty())
            stats = complete_exercise(ctx, schedule, exercise_id, day, recorded=timer.recorded)
        except KeyError:
            # Exercise no longer belongs to that day's schedule
            active_timers.discard(user_id)
            return jsonify({"ok": False, "error": "unknown_exercise"}), 404
        except GatewayError as e:
            if isinstance(e, CompletionPendingError):
                timer.recorded = True
            # Keep the timer so the user can retry
            log_action(username, "exercise_complete_failed", {
                "exercise_id": exercise_id,
                "recorded": timer.recorded,
                "error": str(e),
            })
            return jsonify({"ok": False, "error": "gateway_unavailable", "timer": timer.state()}), 502

        active_timers.discard(user_id)

    log_action(username, "exercise_complete", {
        "exercise_id": exercise_id,
        "current_streak": stats["current_streak"],
        "total_completed": stats["total_completed"],
    })
    return jsonify({
        "ok": True,
        "stats": stats,
        "redirect": url_for("exercise.home", date=day.isoformat()),
    })
