from functools import wraps

from firebase_admin import exceptions as firebase_exceptions
from flask import g, jsonify, request

from app import firestore_dao as dao
from app.firebase_init import get_auth

ROLE_ADMIN = 'admin'
ROLE_PORTAL = 'portal'


def _verify_token():
    """Verify the bearer ID token and return the principal dict, or None."""
    header = request.headers.get('Authorization', '')
    scheme, _, token = header.partition(' ')
    if scheme.lower() != 'bearer' or not token.strip():
        return None

    try:
        decoded = get_auth().verify_id_token(token.strip(), check_revoked=True)
    except (ValueError, firebase_exceptions.FirebaseError):
        return None

    uid = decoded.get('uid') or decoded.get('sub')
    if not uid:
        return None

    user_data = dao.get_user(uid) or {}
    role = decoded.get('role') or user_data.get('role')
    if role not in (ROLE_ADMIN, ROLE_PORTAL):
        return None
    if user_data.get('active') is False:
        return None

    user_data['uid'] = uid
    user_data['id'] = uid
    user_data['role'] = role
    return user_data


class CurrentUser:
    """The authenticated principal for the current request."""

    def __init__(self, data=None):
        self._data = data or {}

    @property
    def is_authenticated(self):
        return bool(self._data)

    @property
    def uid(self):
        return self._data.get('uid', '')

    @property
    def role(self):
        return self._data.get('role', '')

    def is_admin(self):
        return self.role == ROLE_ADMIN


def load_current_user():
    """Load current user into g before each request."""
    if hasattr(g, '_current_user'):
        return
    g._current_user = CurrentUser(_verify_token())


def get_current_user():
    if not hasattr(g, '_current_user'):
        load_current_user()
    return g._current_user


def role_required(*roles):
    def decorator(f):
        @wraps(f)
        def decorated(*args, **kwargs):
            user = get_current_user()
            if not user.is_authenticated:
                return jsonify({'error': 'Authentication required'}), 401
            if user.role not in roles:
                return jsonify({'error': 'Forbidden'}), 403
            g.current_user = user
            return f(*args, **kwargs)
        return decorated
    return decorator
