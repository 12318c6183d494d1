"""Middleware for the authenticated operator context."""
from functools import wraps
from flask import session, g

from pdv.exceptions import UnauthorizedError


def load_current_user():
    """
    Load the operator id into g (Flask's per-request global).

    Login itself belongs to the surrounding application; it only has to put
    ``user_id`` in the session.
    """
    user_id = session.get('user_id')
    g.user_id = str(user_id) if user_id is not None else None


def require_login(f):
    """
    Decorator: Require user to be logged in.

    Raises UnauthorizedError (401 JSON) when there is no operator in session.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if g.get('user_id') is None:
            raise UnauthorizedError()
        return f(*args, **kwargs)
    return decorated_function
