import os

from coach_core import BASE_DIR
from .storage import LocalGateway
from .supabase import SupabaseGateway

# ───────────── Backend Configuration ─────────────
COACH_BACKEND = os.environ.get("COACH_BACKEND", "local").lower()
COACH_DATA_DIR = os.environ.get("COACH_DATA_DIR", os.path.join(BASE_DIR, "data"))

SUPABASE_URL = os.environ.get("SUPABASE_URL", "")
SUPABASE_ANON_KEY = os.environ.get("SUPABASE_ANON_KEY", "")
SUPABASE_TIMEOUT = float(os.environ.get("SUPABASE_TIMEOUT", "10"))


def create_gateway(config=None, access_token=None, refresh_token=None):
    """Build the configured persistence gateway; ``config`` is usually ``app.config``."""
    config = config or {}
    backend = (config.get("COACH_BACKEND") or COACH_BACKEND).lower()

    if backend == "supabase":
        url = config.get("SUPABASE_URL") or SUPABASE_URL
        key = config.get("SUPABASE_ANON_KEY") or SUPABASE_ANON_KEY
        if not url or not key:
            raise RuntimeError("SUPABASE_URL and SUPABASE_ANON_KEY must be set for the supabase backend")
        return SupabaseGateway(
            url,
            key,
            access_token=access_token,
            refresh_token=refresh_token,
            timeout=config.get("SUPABASE_TIMEOUT") or SUPABASE_TIMEOUT,
        )

    if backend != "local":
        raise RuntimeError(f"Unknown COACH_BACKEND '{backend}' (expected 'local' or 'supabase')")

    return LocalGateway(config.get("COACH_DATA_DIR") or COACH_DATA_DIR)
