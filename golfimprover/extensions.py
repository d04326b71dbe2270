"""Application-wide Flask extensions."""

from flask_sqlalchemy import SQLAlchemy


# Backs the server-side session table. The engine is configured in
# :func:`golfimprover.create_app` so it follows the deployment environment.
db = SQLAlchemy()
