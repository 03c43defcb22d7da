"""
quotedesk/extensions.py

Flask extension singletons for QuoteDesk.

Models, the repository and blueprints import these objects; create_app() binds them
to the application (see quotedesk/__init__.py).

- db: Flask-SQLAlchemy (projects, assets, suppliers, quotes, audit log)
- migrate: Alembic migrations via `flask db ...`
- login_manager: session login for producers / viewers / admins
- csrf: CSRF protection for mutating requests (the supplier portal is exempt)
"""

from flask_login import LoginManager
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy
from flask_wtf import CSRFProtect

db = SQLAlchemy()
migrate = Migrate()
login_manager = LoginManager()
csrf = CSRFProtect()
