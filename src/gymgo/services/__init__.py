from gymgo.services.materialization_service import (
    ExecutionResult,
    ItemError,
    MaterializationPlan,
    MaterializationPreview,
    MaterializationSummary,
    TemplatePlan,
    TemplatePreview,
    apply_materialization,
    execute_plan,
    plan_materialization,
    preview_materialization,
    select_templates,
)

__all__ = [
    "ExecutionResult",
    "ItemError",
    "MaterializationPlan",
    "MaterializationPreview",
    "MaterializationSummary",
    "TemplatePlan",
    "TemplatePreview",
    "apply_materialization",
    "execute_plan",
    "plan_materialization",
    "preview_materialization",
    "select_templates",
]
