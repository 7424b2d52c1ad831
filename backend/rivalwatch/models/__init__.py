"""Models package: re-export all ORM classes for Alembic auto-detection."""
from rivalwatch.models.diff import DiffRecord  # noqa: F401
from rivalwatch.models.competitor import Competitor, CompetitorUrl, Subscription  # noqa: F401
from rivalwatch.models.workflow import WorkflowInstance, WorkflowState, WorkflowStepRecord  # noqa: F401
