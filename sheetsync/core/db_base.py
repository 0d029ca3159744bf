# sheetsync/core/db_base.py
from sqlalchemy.orm import declarative_base

# Base class for the SQL record store models
Base = declarative_base()
