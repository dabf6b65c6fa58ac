import os
import logging
from typing import Any, Dict, Optional

from supabase import create_client, Client
from dotenv import load_dotenv
from jose import jwt, JWTError

load_dotenv()

logger = logging.getLogger(__name__)

SUPABASE_URL = os.environ.get("SUPABASE_URL") or os.environ.get("NEXT_PUBLIC_SUPABASE_URL")
SUPABASE_KEY = os.environ.get("SUPABASE_SERVICE_ROLE_KEY")  # Use service role for backend
SUPABASE_ANON_KEY = os.environ.get("SUPABASE_ANON_KEY") or os.environ.get("NEXT_PUBLIC_SUPABASE_ANON_KEY")
SUPABASE_JWT_SECRET = os.environ.get("SUPABASE_JWT_SECRET")  # JWT secret for token verification

if not SUPABASE_URL:
    logger.warning("SUPABASE_URL not set. Supabase features will be disabled.")
    supabase: Client | None = None
else:
    # Use service role key if available (full access), otherwise anon key
    key_to_use = SUPABASE_KEY or SUPABASE_ANON_KEY
    if key_to_use:
        supabase: Client = create_client(SUPABASE_URL, key_to_use)
    else:
        logger.warning("No Supabase key found. Supabase features will be disabled.")
        supabase = None


def get_supabase() -> Client | None:
    """Get the Supabase client instance."""
    return supabase


def verify_supabase_token(token: str) -> Optional[dict]:
    """
    Verify a Supabase access token and return the user data.

    The signature is checked locally when SUPABASE_JWT_SECRET is configured,
    otherwise the token is validated by Supabase Auth.
    Returns None if verification fails or neither check is available.
    """
    if not token:
        logger.debug("[Auth] No token provided")
        return None

    if not SUPABASE_JWT_SECRET:
        return _verify_with_auth_server(token)

    try:
        decoded = jwt.decode(
            token,
            SUPABASE_JWT_SECRET,
            algorithms=["HS256"],
            options={"verify_aud": False},
        )
    except JWTError as decode_error:
        logger.warning(f"[Auth] JWT decode error: {decode_error}")
        return None

    user_id = decoded.get("sub")
    if not user_id:
        logger.warning("[Auth] No user_id (sub) in decoded token")
        return None

    return {
        "id": user_id,
        "email": decoded.get("email"),
        "role": decoded.get("role", "authenticated"),
        "user_metadata": decoded.get("user_metadata") or {},
    }


def _verify_with_auth_server(token: str) -> Optional[dict]:
    if not supabase:
        logger.warning("[Auth] Cannot verify token: no JWT secret and no Supabase client")
        return None

    try:
        response = supabase.auth.get_user(token)
    except Exception as e:
        logger.warning(f"[Auth] Supabase rejected token: {e}")
        return None

    user = getattr(response, "user", None) if response else None
    if not user or not getattr(user, "id", None):
        logger.warning("[Auth] No user returned for token")
        return None

    return {
        "id": user.id,
        "email": user.email,
        "role": getattr(user, "role", None) or "authenticated",
        "user_metadata": user.user_metadata or {},
    }


def _user_to_dict(user: Any) -> Dict[str, Any]:
    def _iso(value):
        return value.isoformat() if hasattr(value, "isoformat") else value

    return {
        "id": user.id,
        "email": user.email,
        "user_metadata": user.user_metadata or {},
        "created_at": _iso(getattr(user, "created_at", None)),
        "last_sign_in_at": _iso(getattr(user, "last_sign_in_at", None)),
        "email_confirmed_at": _iso(getattr(user, "email_confirmed_at", None)),
        "phone": getattr(user, "phone", None),
    }


def get_auth_user(user_id: str) -> Optional[dict]:
    """Fetch a user record from Supabase Auth via the admin API."""
    if not supabase or not user_id:
        return None

    try:
        response = supabase.auth.admin.get_user_by_id(user_id)
    except Exception as e:
        logger.error(f"Error fetching auth user {user_id}: {e}")
        return None

    if not response or not response.user:
        return None
    return _user_to_dict(response.user)


def get_public_user_info(user_id: str, cache: Optional[Dict[str, dict]] = None) -> dict:
    """
    Author info shown next to forum content.
    Falls back to a bare record when the auth lookup fails.
    """
    if cache is not None and user_id in cache:
        return cache[user_id]

    user = get_auth_user(user_id)
    if user:
        info = {
            "id": user["id"],
            "email": user["email"],
            "raw_user_meta_data": user["user_metadata"],
        }
    else:
        info = {"id": user_id, "email": None, "raw_user_meta_data": {}}

    if cache is not None:
        cache[user_id] = info
    return info


def update_user_metadata(user_id: str, metadata: Dict[str, Any]) -> dict:
    """Merge keys into a user's auth metadata. None values remove keys."""
    if not supabase:
        raise RuntimeError("Supabase is not configured")

    response = supabase.auth.admin.update_user_by_id(user_id, {"user_metadata": metadata})
    return _user_to_dict(response.user)
