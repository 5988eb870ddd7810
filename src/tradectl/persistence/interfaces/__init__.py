from tradectl.persistence.interfaces.control_state_repo import ControlStateRepoProtocol
from tradectl.persistence.interfaces.decisions_repo import DecisionStats, DecisionsRepoProtocol

__all__ = [
    "ControlStateRepoProtocol",
    "DecisionStats",
    "DecisionsRepoProtocol",
]
