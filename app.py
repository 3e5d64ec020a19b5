#!/usr/bin/env python3
import os

from flask import Flask, render_template, request, redirect, url_for, session

from coach_app import exercise_bp
from coach_app.exceptions import AuthenticationError, GatewayError
from coach_app.gateway import create_gateway, COACH_BACKEND, COACH_DATA_DIR
from coach_app.routes import active_timers
from coach_core import log_action, current_user_id

app = Flask(__name__)
app.register_blueprint(exercise_bp, url_prefix="/exercise")


# ───────────── Config ─────────────
app.config["SECRET_KEY"] = os.environ.get("FLASK_SECRET_KEY", "change-me-to-something-random")
app.config["COACH_BACKEND"] = COACH_BACKEND
app.config["COACH_DATA_DIR"] = COACH_DATA_DIR


def _safe_next(target):
    # Only follow local paths after signing in
    if target and target.startswith("/") and not target.startswith("//"):
        return target
    return url_for("dashboard")


def _start_session(account):
    session.clear()
    session["logged_in"] = True
    session["user_id"] = account["user_id"]
    session["username"] = account["email"]
    session["name"] = account.get("name") or account["email"]
    if account.get("access_token"):
        session["access_token"] = account["access_token"]
    if account.get("refresh_token"):
        session["refresh_token"] = account["refresh_token"]


# ───────────── Routes ─────────────
@app.route("/auth", methods=["GET", "POST"])
def auth():
    # Signed-in users never see the sign-in page
    if current_user_id():
        return redirect(url_for("dashboard"))

    mode = request.values.get("mode", "login")
    if mode not in ("login", "signup"):
        mode = "login"
    error = None
    success = None

    if request.method == "POST":
        email = request.form.get("email", "").strip()
        password = request.form.get("password", "")
        name = request.form.get("name", "").strip()

        try:
            gateway = create_gateway(app.config)
            if mode == "login":
                account = gateway.sign_in(email, password)
                gateway.ensure_profile(account["user_id"], account.get("name"))
                _start_session(account)
                log_action(email, "login")
                return redirect(_safe_next(request.args.get("next")))

            account = gateway.sign_up(
                email,
                password,
                name,
                redirect_to=url_for("auth", _external=True),
            )
            log_action(email, "signup", {"confirmation_required": account["confirmation_required"]})
            if account["confirmation_required"]:
                success = "Account created! Check your email to confirm it before signing in."
                mode = "login"
            else:
                gateway.ensure_profile(account["user_id"], name)
                _start_session(account)
                return redirect(url_for("dashboard"))
        except AuthenticationError as e:
            error = str(e)
            log_action(email or "unknown", f"{mode}_failed")
        except GatewayError as e:
            error = "The service is unavailable right now. Please try again."
            log_action(email or "unknown", f"{mode}_error", {"error": str(e)})

    return render_template("login.html", mode=mode, error=error, success=success)


@app.route("/auth/forgot", methods=["POST"])
def forgot_password():
    email = request.form.get("email", "").strip()
    error = None
    success = None

    try:
        create_gateway(app.config).request_password_reset(email, redirect_to=url_for("auth", _external=True))
        success = "Recovery email sent! Check your inbox."
        log_action(email, "password_reset_requested")
    except AuthenticationError as e:
        error = str(e)
    except GatewayError as e:
        error = "Could not send the recovery email. Please try again."
        log_action(email or "unknown", "password_reset_error", {"error": str(e)})

    return render_template("login.html", mode="login", error=error, success=success)


@app.route("/logout")
def logout():
    username = session.get("username")
    log_action(username, "logout")
    user_id = current_user_id()
    if user_id:
        active_timers.discard(user_id)
    session.clear()
    return redirect(url_for("auth"))


@app.route("/")
def dashboard():
    if not current_user_id():
        return redirect(url_for("auth"))
    return redirect(url_for("exercise.home"))


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=8000, debug=True)
