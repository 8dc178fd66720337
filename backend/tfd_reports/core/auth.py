"""
Authentication utilities and dependencies.
"""
from fastapi import Depends, HTTPException, status, Cookie
from sqlalchemy.orm import Session
from typing import Optional
from tfd_reports.core.database import get_db
from tfd_reports.models.user import User
from tfd_reports.core.config import SESSION_COOKIE_NAME, SESSION_SECRET
import hashlib
import hmac
import json
from datetime import datetime, timedelta, timezone

SESSION_MAX_AGE = timedelta(hours=24)

# Verified sessions cache; tokens stay valid across restarts through the signature
_sessions: dict[str, dict] = {}


def _sign(payload: str) -> str:
    secret = SESSION_SECRET.encode() if SESSION_SECRET else b'default-secret-change-in-prod'
    return hmac.new(secret, payload.encode(), hashlib.sha256).hexdigest()


def _is_expired(session_data: dict) -> bool:
    try:
        created_at = datetime.fromisoformat(session_data['created_at'])
    except (KeyError, TypeError, ValueError):
        return True
    return datetime.now(timezone.utc) - created_at.replace(tzinfo=timezone.utc) > SESSION_MAX_AGE


def _remember_session(session_token: str, session_data: dict):
    """Cache a verified session, dropping expired entries first."""
    for token in [t for t, data in _sessions.items() if _is_expired(data)]:
        _sessions.pop(token, None)
    _sessions[session_token] = session_data


def create_session(user_id: int, email: str, role: str = 'user') -> str:
    """Create a signed session token."""
    session_data = {
        'user_id': user_id,
        'email': email,
        'role': role,
        'created_at': datetime.now(timezone.utc).isoformat(),
    }
    session_json = json.dumps(session_data, sort_keys=True)
    session_token = f"{session_json}.{_sign(session_json)}"
    _remember_session(session_token, session_data)
    return session_token


def verify_session(session_token: str) -> Optional[dict]:
    """Verify a session token and return its data, or None if invalid or expired."""
    if not session_token:
        return None

    session_data = _sessions.get(session_token)
    if session_data is None:
        parts = session_token.rsplit('.', 1)
        if len(parts) != 2:
            return None

        session_json, signature = parts
        if not hmac.compare_digest(signature, _sign(session_json)):
            return None

        try:
            session_data = json.loads(session_json)
        except ValueError:
            return None

    if _is_expired(session_data):
        _sessions.pop(session_token, None)
        return None

    if session_token not in _sessions:
        _remember_session(session_token, session_data)
    return session_data


def delete_session(session_token: str):
    """Delete a session."""
    _sessions.pop(session_token, None)


def get_current_user_dependency(
    session_token: Optional[str] = Cookie(None, alias=SESSION_COOKIE_NAME),
    db: Session = Depends(get_db)
) -> User:
    """Dependency to get current authenticated user."""
    if not session_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated"
        )

    session_data = verify_session(session_token)
    if not session_data:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired session"
        )

    user = db.query(User).filter(User.id == session_data['user_id']).first()
    if not user or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or inactive"
        )
    return user


def get_current_admin_user_dependency(
    current_user: User = Depends(get_current_user_dependency)
) -> User:
    """Dependency to get current platform admin user."""
    if not current_user.is_platform_admin():
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return current_user
