from tradectl.persistence.sqlite.control_state_repo import SqliteControlStateRepo
from tradectl.persistence.sqlite.decisions_repo import SqliteDecisionsRepo

__all__ = ["SqliteControlStateRepo", "SqliteDecisionsRepo"]
