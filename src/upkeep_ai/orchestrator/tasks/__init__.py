"""Task definitions grouped by capability."""

from upkeep_ai.orchestrator.tasks.admin import ADMIN_TASKS
from upkeep_ai.orchestrator.tasks.base import JsonObject, Prompt, TaskDefinition
from upkeep_ai.orchestrator.tasks.crm import CRM_TASKS
from upkeep_ai.orchestrator.tasks.intake import INTAKE_TASKS
from upkeep_ai.orchestrator.tasks.provider import PROVIDER_TASKS
from upkeep_ai.orchestrator.tasks.sponsor import SPONSOR_TASKS

ALL_TASK_DEFINITIONS: tuple[TaskDefinition, ...] = (
    *ADMIN_TASKS,
    *CRM_TASKS,
    *SPONSOR_TASKS,
    *INTAKE_TASKS,
    *PROVIDER_TASKS,
)

__all__ = [
    "ALL_TASK_DEFINITIONS",
    "JsonObject",
    "Prompt",
    "TaskDefinition",
]
