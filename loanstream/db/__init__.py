from loanstream.db.database import create_engine, create_session_factory, get_db, init_models
from loanstream.db.models import Base, Loan

__all__ = [
    "create_engine",
    "create_session_factory",
    "get_db",
    "init_models",
    "Base",
    "Loan",
]
