# ========================================================================================
# GOAL CONFIGURATION MODELS
# Typed goal configuration, validated once before orchestration
# ========================================================================================

import logging
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

GoalType = Literal['collect_info', 'validate_info', 'schedule_appointment', 'trigger_intent', 'custom']
GoalPriority = Literal['critical', 'high', 'medium', 'low']
GoalTimingStrategy = Literal['immediate', 'early', 'mid_conversation', 'late', 'conditional']
Directness = Literal['direct', 'moderate', 'contextual', 'subtle']
Approach = Literal['direct', 'contextual', 'subtle']

PRIORITY_VALUES = {'critical': 4, 'high': 3, 'medium': 2, 'low': 1}


class GoalConfigurationError(ValueError):
    """Raised when a goal configuration cannot be used for orchestration"""

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.errors = errors or []


class _ConfigModel(BaseModel):
    # Persona JSON uses camelCase, Python callers may use snake_case
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# ========================================================================================
# CONDITIONS AND TRIGGERS
# ========================================================================================

class GoalCondition(_ConfigModel):
    type: Literal['message_count', 'interest_level', 'urgency_level', 'has_info', 'time_elapsed', 'intent_detected']
    operator: Literal['equals', 'greater_than', 'less_than', 'contains', 'not_contains']
    value: Union[bool, int, float, str]


class GoalTrigger(_ConfigModel):
    conditions: List[GoalCondition] = Field(default_factory=list)
    logic: Literal['AND', 'OR'] = 'AND'


# ========================================================================================
# GOAL DEFINITION
# ========================================================================================

class GoalTarget(_ConfigModel):
    field: Optional[str] = None
    intent: Optional[str] = None
    action: Optional[str] = None


class GoalTiming(_ConfigModel):
    strategy: Optional[GoalTimingStrategy] = None
    min_messages: Optional[int] = Field(default=None, ge=0)
    max_messages: Optional[int] = Field(default=None, ge=0)
    triggers: Optional[List[GoalTrigger]] = None
    cooldown: Optional[float] = Field(default=None, ge=0)  # minutes


class GoalApproach(_ConfigModel):
    directness: Directness = 'moderate'
    contextual: bool = True
    value_proposition: Optional[str] = None
    fallback_strategies: List[str] = Field(default_factory=list)


class GoalDependencies(_ConfigModel):
    requires: Optional[List[str]] = None
    blocks: Optional[List[str]] = None
    mutually_exclusive: Optional[List[str]] = None


class GoalTracking(_ConfigModel):
    attempts: int = 0
    last_attempt: Optional[datetime] = None
    completed: bool = False
    completed_at: Optional[datetime] = None
    declined_count: int = 0


class ConversationGoal(_ConfigModel):
    id: str = Field(min_length=1)
    name: str
    description: str = ''
    type: GoalType = 'collect_info'
    priority: GoalPriority = 'medium'
    target: GoalTarget = Field(default_factory=GoalTarget)
    timing: GoalTiming
    approach: GoalApproach = Field(default_factory=GoalApproach)
    dependencies: Optional[GoalDependencies] = None
    tracking: GoalTracking = Field(default_factory=GoalTracking)

    @property
    def priority_value(self) -> int:
        return PRIORITY_VALUES[self.priority]


# ========================================================================================
# GLOBAL CONFIGURATION
# ========================================================================================

class GlobalSettings(_ConfigModel):
    max_active_goals: int = Field(default=3, ge=0)


class GoalCombination(_ConfigModel):
    goal_ids: List[str]
    trigger_intent: str
    description: str = ''


class CompletionTriggers(_ConfigModel):
    all_critical_complete: Optional[str] = None
    all_high_complete: Optional[str] = None
    custom_combinations: Optional[List[GoalCombination]] = None


class GoalConfiguration(_ConfigModel):
    enabled: bool = False
    goals: List[ConversationGoal] = Field(default_factory=list)
    global_settings: GlobalSettings = Field(default_factory=GlobalSettings)
    completion_triggers: CompletionTriggers = Field(default_factory=CompletionTriggers)
    # goal id -> approach -> template
    message_templates: Dict[str, Dict[Approach, str]] = Field(default_factory=dict)


def load_goal_configuration(data: Union[GoalConfiguration, Dict[str, Any]]) -> GoalConfiguration:
    """Validate a raw persona/company goal configuration"""

    if isinstance(data, GoalConfiguration):
        return data

    if not isinstance(data, dict):
        raise GoalConfigurationError(
            f"Goal configuration must be a mapping, got {type(data).__name__}"
        )

    try:
        config = GoalConfiguration.model_validate(data)
    except ValidationError as e:
        problems = [
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
            for err in e.errors()
        ]
        logger.error(f"❌ Invalid goal configuration: {'; '.join(problems)}")
        raise GoalConfigurationError(
            f"Invalid goal configuration: {'; '.join(problems)}",
            errors=e.errors(),
        ) from e

    goal_ids = [goal.id for goal in config.goals]
    duplicates = sorted({goal_id for goal_id in goal_ids if goal_ids.count(goal_id) > 1})
    if duplicates:
        raise GoalConfigurationError(f"Duplicate goal ids: {', '.join(duplicates)}")

    for goal in config.goals:
        timing = goal.timing
        if (timing.min_messages is not None and timing.max_messages
                and timing.min_messages > timing.max_messages):
            raise GoalConfigurationError(
                f"Goal '{goal.id}': minMessages ({timing.min_messages}) exceeds maxMessages ({timing.max_messages})"
            )

    return config


__all__ = [
    'PRIORITY_VALUES',
    'GoalConfigurationError',
    'GoalCondition',
    'GoalTrigger',
    'GoalTarget',
    'GoalTiming',
    'GoalApproach',
    'GoalDependencies',
    'GoalTracking',
    'ConversationGoal',
    'GlobalSettings',
    'GoalCombination',
    'CompletionTriggers',
    'GoalConfiguration',
    'load_goal_configuration',
]
