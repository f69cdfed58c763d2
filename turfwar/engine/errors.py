"""
Error taxonomy for territory and war operations.
All errors are reported synchronously to the caller and never retried here.
"""


class TerritoryWarError(ValueError):
    """Base class. `code` is stable and safe to expose to clients."""
    code = "territory_war_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code, "detail": self.message}


class NotFound(TerritoryWarError):
    """Unknown territory, war, mission or participant id."""
    code = "not_found"


class InvalidTransition(TerritoryWarError):
    """Action submitted for the wrong phase, or the war is not active."""
    code = "invalid_transition"


class AlreadyContested(TerritoryWarError):
    """declare_war on a territory that already has an active war."""
    code = "already_contested"


class Ineligible(TerritoryWarError):
    """Player or family lacks a capability, rank or membership, or is on cooldown."""
    code = "ineligible"


class InsufficientResources(TerritoryWarError):
    """The resource collaborator refused the cost deduction."""
    code = "insufficient_resources"


def phase_mismatch(war_id: str, expected: str, actual: str) -> InvalidTransition:
    return InvalidTransition(
        f"Phase mismatch for war {war_id}: event is for '{expected}' "
        f"but the war is in '{actual}'"
    )
