# Overview: Flask extension instances for database and migrations.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

db = SQLAlchemy()
# Column type changes (money columns, JSON) must show up in autogenerate;
# batch mode lets SQLite rebuild tables for ALTERs.
migrate = Migrate(compare_type=True, render_as_batch=True)
