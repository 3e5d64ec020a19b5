import json
from datetime import date

from conftest import FakeHTTP, FakeResponse, USER_EMAIL, USER_PASSWORD
from coach_app.exceptions import GatewayError
from coach_app.routes import active_timers
from coach_app.schedule import generate_schedule
from coach_app.storage import LocalGateway
from coach_app.supabase import SupabaseGateway
from coach_app.timer import TimerSession

MONDAY = "2024-06-03"
TUESDAY = "2024-06-04"


def _start(client, exercise_id, day=MONDAY):
    return client.post(f"/exercise/start/{exercise_id}", data={"date": day})


def _actions(audit_log):
    return [json.loads(line)["action"] for line in audit_log.read_text().splitlines()]


# ───────── Session gate ─────────

def test_unauthenticated_requests_go_to_auth(client):
    for path in ("/", "/exercise/", "/exercise/timer"):
        response = client.get(path)
        assert response.status_code == 302
        assert "/auth" in response.headers["Location"]


def test_timer_api_requires_login(client):
    response = client.post("/exercise/timer/tick")
    assert response.status_code == 302


def test_login_and_logout(client, user, audit_log):
    response = client.post("/auth", data={"email": USER_EMAIL, "password": USER_PASSWORD})
    assert response.status_code == 302

    with client.session_transaction() as sess:
        assert sess["user_id"] == user["id"]
        assert sess["name"] == "Ana"

    # Signed-in users skip the auth page
    assert client.get("/auth").status_code == 302

    client.get("/logout")
    assert client.get("/exercise/").status_code == 302
    assert _actions(audit_log) == ["login", "logout"]


def test_login_follows_local_next_only(client, user):
    response = client.post("/auth?next=/exercise/", data={"email": USER_EMAIL, "password": USER_PASSWORD})
    assert response.headers["Location"].endswith("/exercise/")

    client.get("/logout")
    response = client.post("/auth?next=https://evil.example", data={"email": USER_EMAIL, "password": USER_PASSWORD})
    assert "evil" not in response.headers["Location"]


def test_bad_login_renders_error(client, user):
    response = client.post("/auth", data={"email": USER_EMAIL, "password": "nope"})
    assert response.status_code == 200
    assert b"Invalid email or password" in response.data


def test_signup_logs_in_and_creates_stats(client, data_dir):
    response = client.post("/auth?mode=signup", data={
        "email": "bo@example.com", "password": "pw123456", "name": "Bo",
    })
    assert response.status_code == 302

    with client.session_transaction() as sess:
        user_id = sess["user_id"]
    assert LocalGateway(data_dir).fetch_user_stats(user_id)["total_completed"] == 0


def test_forgot_password_reports_unavailable_locally(client):
    response = client.post("/auth/forgot", data={"email": USER_EMAIL})
    assert response.status_code == 200
    assert b"not available" in response.data


# ───────── Day view ─────────

def test_home_lists_the_days_exercises(logged_in):
    response = logged_in.get(f"/exercise/?date={MONDAY}")
    html = response.data.decode()

    assert response.status_code == 200
    assert 'id="kegel-morning-2024-06-03"' in html
    assert 'id="kegel-night-2024-06-03"' in html
    assert 'id="start-stop-2024-06-03"' in html
    assert "breathing-2024-06-03" not in html
    assert "date=2024-06-02" in html and "date=2024-06-04" in html


def test_home_marks_completed_exercises(logged_in, gateway, user):
    gateway.record_completion(user["id"], "breathing-2024-06-04", "breathing", date(2024, 6, 4))

    html = logged_in.get(f"/exercise/?date={TUESDAY}").data.decode()
    assert 'class="morning completed"' in html
    assert "1/3 done" in html


def test_difficulty_selection_changes_durations(logged_in):
    response = logged_in.post(f"/exercise/difficulty?date={MONDAY}", data={"difficulty": "advanced"})
    assert response.status_code == 302
    with logged_in.session_transaction() as sess:
        assert sess["difficulty"] == "advanced"

    html = logged_in.get(f"/exercise/?date={MONDAY}").data.decode()
    assert "5:20" in html

    logged_in.post("/exercise/difficulty", data={"difficulty": "impossible"})
    with logged_in.session_transaction() as sess:
        assert sess["difficulty"] == "beginner"


# ───────── Timer ─────────

def test_start_and_tick_a_kegel(logged_in):
    response = _start(logged_in, "kegel-morning-2024-06-03")
    assert response.headers["Location"].endswith("/exercise/timer")
    assert logged_in.get("/exercise/timer").status_code == 200

    data = logged_in.post("/exercise/timer/tick", json={"elapsed": 3}).get_json()
    assert data["timer"]["phase"] == "relax"
    assert data["timer"]["remaining_seconds"] == 3

    data = logged_in.post("/exercise/timer/tick", json={"elapsed": 3}).get_json()
    assert data["timer"]["phase"] == "contract"
    assert data["timer"]["current_set"] == 2

    state = logged_in.get("/exercise/timer/state").get_json()["timer"]
    assert state["current_set"] == 2


def test_tick_defaults_to_one_second_and_clamps(logged_in):
    _start(logged_in, "start-stop-2024-06-03")

    assert logged_in.post("/exercise/timer/tick").get_json()["timer"]["remaining_seconds"] == 599
    assert logged_in.post("/exercise/timer/tick", json={"elapsed": -5}).get_json()["timer"]["remaining_seconds"] == 599
    assert logged_in.post("/exercise/timer/tick", json={"elapsed": "x"}).get_json()["timer"]["remaining_seconds"] == 598


def test_tick_with_a_non_object_body_counts_one_second(logged_in):
    _start(logged_in, "start-stop-2024-06-03")

    for body in ([5], "7", 3):
        response = logged_in.post("/exercise/timer/tick", json=body)
        assert response.status_code == 200
    assert logged_in.get("/exercise/timer/state").get_json()["timer"]["remaining_seconds"] == 597


def test_unknown_exercise_does_not_start_a_timer(logged_in):
    response = _start(logged_in, "breathing-2024-06-03")
    assert response.status_code == 302
    assert logged_in.get("/exercise/timer/state").status_code == 404


def test_starting_again_replaces_the_active_timer(logged_in):
    _start(logged_in, "kegel-morning-2024-06-03")
    _start(logged_in, "start-stop-2024-06-03")

    state = logged_in.get("/exercise/timer/state").get_json()["timer"]
    assert state["exercise_id"] == "start-stop-2024-06-03"


def test_pause_resume_keep_counters(logged_in):
    _start(logged_in, "kegel-night-2024-06-03")
    logged_in.post("/exercise/timer/tick", json={"elapsed": 4})

    paused = logged_in.post("/exercise/timer/pause").get_json()["timer"]
    assert not paused["running"]
    ticked = logged_in.post("/exercise/timer/tick", json={"elapsed": 10}).get_json()["timer"]
    assert ticked["remaining_seconds"] == paused["remaining_seconds"]

    resumed = logged_in.post("/exercise/timer/resume").get_json()["timer"]
    assert resumed["running"]
    for key in ("phase", "remaining_seconds", "current_set"):
        assert resumed[key] == paused[key]


def test_cancel_discards_without_touching_storage(logged_in, monkeypatch):
    _start(logged_in, "kegel-morning-2024-06-03")

    def fail(*args, **kwargs):
        raise AssertionError("gateway used on cancel")

    monkeypatch.setattr("coach_app.routes.create_gateway", fail)
    data = logged_in.post("/exercise/timer/cancel").get_json()

    assert data["ok"]
    assert data["redirect"].endswith(f"date={MONDAY}")
    assert logged_in.get("/exercise/timer/state").status_code == 404


def test_timer_endpoints_without_timer(logged_in):
    for action in ("tick", "pause", "resume", "cancel", "complete"):
        response = logged_in.post(f"/exercise/timer/{action}")
        assert response.status_code == 404
        assert response.get_json()["error"] == "no_active_timer"


# ───────── Completion ─────────

def test_complete_refused_while_running(logged_in):
    _start(logged_in, "kegel-morning-2024-06-03")
    response = logged_in.post("/exercise/timer/complete")
    assert response.status_code == 409
    assert logged_in.get("/exercise/timer/state").status_code == 200


def test_complete_records_and_updates_stats(logged_in, gateway, user, audit_log):
    _start(logged_in, "kegel-morning-2024-06-03")
    logged_in.post("/exercise/timer/tick", json={"elapsed": 60})

    response = logged_in.post("/exercise/timer/complete")
    data = response.get_json()

    assert response.status_code == 200
    assert data["stats"]["total_completed"] == 1
    assert data["stats"]["current_streak"] == 0
    assert gateway.fetch_completed_exercise_ids(user["id"], date(2024, 6, 3)) == {"kegel-morning-2024-06-03"}
    assert logged_in.get("/exercise/timer/state").status_code == 404
    assert "exercise_complete" in _actions(audit_log)


def test_completing_the_last_exercise_extends_the_streak(logged_in, gateway, user):
    day = date(2024, 6, 3)
    gateway.record_completion(user["id"], "kegel-night-2024-06-03", "kegel-night", day)
    gateway.record_completion(user["id"], "start-stop-2024-06-03", "start-stop", day)

    _start(logged_in, "kegel-morning-2024-06-03")
    logged_in.post("/exercise/timer/pause")
    stats = logged_in.post("/exercise/timer/complete").get_json()["stats"]

    assert stats["current_streak"] == 1
    assert stats["total_completed"] == 1
    assert gateway.fetch_user_stats(user["id"])["last_completed_date"] == MONDAY


def test_gateway_failure_keeps_the_timer_for_retry(logged_in, gateway, user, monkeypatch):
    _start(logged_in, "kegel-morning-2024-06-03")
    logged_in.post("/exercise/timer/pause")

    def down(self, *args, **kwargs):
        raise GatewayError("backend down")

    original = LocalGateway.record_completion
    monkeypatch.setattr(LocalGateway, "record_completion", down)
    response = logged_in.post("/exercise/timer/complete")
    assert response.status_code == 502
    assert response.get_json()["error"] == "gateway_unavailable"
    assert logged_in.get("/exercise/timer/state").status_code == 200

    monkeypatch.setattr(LocalGateway, "record_completion", original)
    assert logged_in.post("/exercise/timer/complete").status_code == 200
    assert gateway.fetch_user_stats(user["id"])["total_completed"] == 1


def test_failed_stats_update_is_retried_without_a_second_row(logged_in, gateway, user, monkeypatch, audit_log):
    _start(logged_in, "kegel-morning-2024-06-03")
    logged_in.post("/exercise/timer/pause")

    def down(self, *args, **kwargs):
        raise GatewayError("backend down")

    original = LocalGateway.update_user_stats
    monkeypatch.setattr(LocalGateway, "update_user_stats", down)
    response = logged_in.post("/exercise/timer/complete")
    assert response.status_code == 502
    assert gateway.fetch_user_stats(user["id"])["total_completed"] == 0

    monkeypatch.setattr(LocalGateway, "update_user_stats", original)
    data = logged_in.post("/exercise/timer/complete").get_json()

    assert data["ok"]
    assert data["stats"]["total_completed"] == 1
    assert gateway.fetch_user_stats(user["id"])["total_completed"] == 1
    with open(gateway.completions_path) as f:
        assert len(f.read().splitlines()) == 1
    assert _actions(audit_log).count("exercise_complete_failed") == 1


# ───────── Shared timer state ─────────

def test_tick_from_another_tab_cannot_undo_a_pause(app, logged_in, user):
    _start(logged_in, "start-stop-2024-06-03")

    other_tab = app.test_client()
    other_tab.post("/auth", data={"email": USER_EMAIL, "password": USER_PASSWORD})

    logged_in.post("/exercise/timer/pause")
    state = other_tab.post("/exercise/timer/tick", json={"elapsed": 5}).get_json()["timer"]

    assert not state["running"]
    assert state["remaining_seconds"] == 600
    assert not logged_in.get("/exercise/timer/state").get_json()["timer"]["running"]


def test_timer_is_not_kept_in_the_cookie(logged_in):
    _start(logged_in, "kegel-morning-2024-06-03")
    with logged_in.session_transaction() as sess:
        assert "timer" not in sess


def test_logout_discards_the_timer(logged_in, user):
    _start(logged_in, "kegel-morning-2024-06-03")
    assert active_timers.get(user["id"]) is not None

    logged_in.get("/logout")
    assert active_timers.get(user["id"]) is None


# ───────── Hosted backend session expiry ─────────

def _hosted(monkeypatch, *responses):
    http = FakeHTTP(*responses)

    def factory(config=None, access_token=None, refresh_token=None):
        return SupabaseGateway("https://project.supabase.co", "anon-key", access_token=access_token,
                               refresh_token=refresh_token, http=http)

    monkeypatch.setattr("coach_app.routes.create_gateway", factory)
    return http


def _hosted_session(client):
    with client.session_transaction() as sess:
        sess["logged_in"] = True
        sess["user_id"] = "u1"
        sess["username"] = USER_EMAIL
        sess["access_token"] = "jwt-1"
        sess["refresh_token"] = "refresh-1"


def test_expired_access_token_is_refreshed_into_the_session(client, monkeypatch):
    http = _hosted(
        monkeypatch,
        FakeResponse(401, {"message": "JWT expired"}),
        FakeResponse(200, {"access_token": "jwt-2", "refresh_token": "refresh-2"}),
        FakeResponse(200, []),
        FakeResponse(200, [{"user_id": "u1", "total_completed": 6, "current_streak": 2}]),
    )
    _hosted_session(client)

    response = client.get(f"/exercise/?date={MONDAY}")

    assert response.status_code == 200
    assert http.calls[2]["headers"]["Authorization"] == "Bearer jwt-2"
    with client.session_transaction() as sess:
        assert sess["access_token"] == "jwt-2"
        assert sess["refresh_token"] == "refresh-2"


def test_expired_session_redirects_to_sign_in(client, monkeypatch, audit_log):
    _hosted(
        monkeypatch,
        FakeResponse(401, {"message": "JWT expired"}),
        FakeResponse(400, {"error": "invalid_grant", "error_description": "Invalid Refresh Token"}),
    )
    _hosted_session(client)

    response = client.get(f"/exercise/?date={MONDAY}")

    assert response.status_code == 302
    assert "/auth" in response.headers["Location"]
    with client.session_transaction() as sess:
        assert "user_id" not in sess
    assert "session_expired" in _actions(audit_log)


def test_expired_session_on_completion_answers_json(client, monkeypatch):
    _hosted(
        monkeypatch,
        FakeResponse(401, {"message": "JWT expired"}),
        FakeResponse(400, {"error": "invalid_grant", "error_description": "Invalid Refresh Token"}),
    )
    _hosted_session(client)
    exercise = generate_schedule(date(2024, 6, 3), "beginner")[0]
    timer = TimerSession(exercise, MONDAY).start()
    timer.pause()
    active_timers.put("u1", timer)

    response = client.post("/exercise/timer/complete")

    assert response.status_code == 401
    assert response.get_json()["error"] == "session_expired"
    assert active_timers.get("u1") is None
