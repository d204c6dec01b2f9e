# Overview: Flask extension instances for the database session, Alembic migrations and outbound mail.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_mail import Mail

db = SQLAlchemy()
migrate = Migrate(compare_type=True)
mail = Mail()
