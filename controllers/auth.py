# controllers/auth.py
# Identity comes from the host commerce core: it signs the user into the
# Flask session (flask_login's "_user_id"), this app only reads it.
from functools import wraps
from flask import session, abort
from flask_login import LoginManager, UserMixin, current_user

login_manager = LoginManager()


class User(UserMixin):
    def __init__(self, user_id, role="user"):
        self.id = str(user_id)
        self.role = role

    @property
    def is_admin(self):
        return self.role == "admin"


@login_manager.user_loader
def load_user(user_id):
    if not user_id:
        return None
    return User(user_id, session.get("role") or "user")


def admin_required(f):
    @wraps(f)
    def wrapper(*args, **kwargs):
        if not current_user.is_authenticated:
            return login_manager.unauthorized()
        if not getattr(current_user, "is_admin", False):
            abort(403)
        return f(*args, **kwargs)
    return wrapper
