"""Repository layer.

These repositories encapsulate common query patterns for the app's entities.
Keep them focused on persistence/query shaping; business logic lives in services.
"""

from gymgo.db.repos.class_templates import ClassTemplateRepository
from gymgo.db.repos.generation_log import ClassGenerationLogRepository, LedgerOutcome
from gymgo.db.repos.gym_classes import GymClassRepository
from gymgo.db.repos.organizations import OrganizationRepository

__all__ = [
    "ClassGenerationLogRepository",
    "ClassTemplateRepository",
    "GymClassRepository",
    "LedgerOutcome",
    "OrganizationRepository",
]
