# salesdesk/extensions.py
from flask import current_app
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_login import LoginManager
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

# ======================
# Persistence
# ======================
# Sales records, their status logs and the schema migrations for them.
db = SQLAlchemy()
migrate = Migrate()

# ======================
# Admin authentication
# ======================
# Bearer tokens only, no session cookies; loaders are in salesdesk/auth.py.
login_manager = LoginManager()

# ======================
# Rate limiting
# ======================
# Storage and on/off switch come from RATELIMIT_* in settings at init_app.
limiter = Limiter(key_func=get_remote_address, default_limits=[])


def login_rate_limit() -> str:
    return current_app.config.get("LOGIN_RATE_LIMIT", "5 per minute")
