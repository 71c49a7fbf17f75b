"""Pet module — needs, decay and the life/death state machine.

Public API: StatusEngine, LifecycleController + schema types.
"""

from duckling.pet.lifecycle import LifecycleController, snapshot
from duckling.pet.schemas import DeathCause, LifePolicy, Mood, Need, PetStatus
from duckling.pet.status import StatusEngine

__all__ = [
    "DeathCause",
    "LifecycleController",
    "LifePolicy",
    "Mood",
    "Need",
    "PetStatus",
    "StatusEngine",
    "snapshot",
]
