import os
import json
import logging
import uuid

from werkzeug.security import check_password_hash, generate_password_hash

from .defaults import DEFAULT_STATS
from .exceptions import AuthenticationError, GatewayError

logger = logging.getLogger(__name__)


def ensure_data_files(data_dir: str) -> str:
    os.makedirs(data_dir, exist_ok=True)

    users_path = os.path.join(data_dir, "users.json")
    stats_path = os.path.join(data_dir, "user_stats.json")
    completions_path = os.path.join(data_dir, "completed_exercises.jsonl")

    if not os.path.exists(users_path):
        with open(users_path, "w") as f:
            json.dump({}, f, indent=2)

    if not os.path.exists(stats_path):
        with open(stats_path, "w") as f:
            json.dump({}, f, indent=2)

    if not os.path.exists(completions_path):
        # JSON Lines file makes it easy to append
        with open(completions_path, "w") as f:
            f.write("")

    return data_dir


def load_json(path: str, fallback):
    try:
        with open(path, "r") as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError):
        return fallback


def save_json(path: str, data):
    tmp_path = path + ".tmp"
    with open(tmp_path, "w") as f:
        json.dump(data, f, indent=2)
    os.replace(tmp_path, path)


class LocalGateway:
    """Accounts, completions and stats kept as JSON files in one directory."""

    def __init__(self, data_dir: str):
        self.data_dir = ensure_data_files(data_dir)
        self.users_path = os.path.join(self.data_dir, "users.json")
        self.stats_path = os.path.join(self.data_dir, "user_stats.json")
        self.completions_path = os.path.join(self.data_dir, "completed_exercises.jsonl")

    # ───────── Users ─────────

    def load_users(self):
        """Return {email: {id, password_hash, name}}."""
        return load_json(self.users_path, {})

    def save_users(self, users: dict):
        save_json(self.users_path, users)

    def add_user(self, email: str, password: str, name: str = ""):
        email = email.strip().lower()
        users = self.load_users()
        if email in users:
            raise AuthenticationError("An account with this email already exists. Please sign in.")
        user = {
            "id": str(uuid.uuid4()),
            "password_hash": generate_password_hash(password),
            "name": name or "User",
        }
        users[email] = user
        self.save_users(users)
        return user

    def sign_in(self, email: str, password: str):
        email = email.strip().lower()
        user = self.load_users().get(email)
        if not user or not check_password_hash(user["password_hash"], password):
            raise AuthenticationError("Invalid email or password. Check your credentials and try again.")
        return {"user_id": user["id"], "email": email, "name": user.get("name") or email, "access_token": None}

    def sign_up(self, email: str, password: str, name: str = "", redirect_to: str | None = None):
        if not email.strip() or not password:
            raise AuthenticationError("Email and password are required.")
        user = self.add_user(email, password, name)
        self.ensure_profile(user["id"], user["name"])
        return {
            "user_id": user["id"],
            "email": email.strip().lower(),
            "name": user["name"],
            "access_token": None,
            "confirmation_required": False,
        }

    def request_password_reset(self, email: str, redirect_to: str | None = None):
        raise AuthenticationError("Password reset by email is not available on this server. Ask an admin to run add_user.py.")

    def ensure_profile(self, user_id: str, name: str = ""):
        # Profiles live alongside the credentials; only the stats row needs creating
        stats = load_json(self.stats_path, {})
        if user_id not in stats:
            stats[user_id] = dict(DEFAULT_STATS)
            self._save(self.stats_path, stats)

    # ───────── Completions & stats ─────────

    def fetch_completed_exercise_ids(self, user_id: str, day):
        day_key = day.isoformat()
        ids = set()
        try:
            with open(self.completions_path, "r") as f:
                for line in f:
                    if not line.strip():
                        continue
                    try:
                        entry = json.loads(line)
                    except json.JSONDecodeError:
                        continue
                    if entry.get("user_id") == user_id and entry.get("date") == day_key:
                        ids.add(entry.get("exercise_id"))
        except OSError as e:
            logger.warning("Could not read completions for %s: %s", user_id, e)
        return ids

    def record_completion(self, user_id: str, exercise_id: str, exercise_kind: str, day):
        entry = {
            "user_id": user_id,
            "exercise_id": exercise_id,
            "exercise_type": exercise_kind,
            "date": day.isoformat(),
        }
        try:
            with open(self.completions_path, "a") as f:
                f.write(json.dumps(entry) + "\n")
        except OSError as e:
            raise GatewayError(f"Could not record completion: {e}") from e

    def fetch_user_stats(self, user_id: str):
        return load_json(self.stats_path, {}).get(user_id)

    def update_user_stats(self, user_id: str, fields: dict):
        stats = load_json(self.stats_path, {})
        row = stats.setdefault(user_id, dict(DEFAULT_STATS))
        row.update(fields)
        self._save(self.stats_path, stats)

    def _save(self, path: str, data):
        try:
            save_json(path, data)
        except OSError as e:
            raise GatewayError(f"Could not write {os.path.basename(path)}: {e}") from e
