# ========================================================================================
# GOAL CONFIGURATION RESOLUTION
# Company-level goals win over persona-level goals; defaults fill the gaps
# ========================================================================================

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from goal_models import (
    PRIORITY_VALUES,
    ConversationGoal,
    GoalConfiguration,
    load_goal_configuration,
)

logger = logging.getLogger(__name__)

# Intent emitted once every critical goal is done, unless the configuration names one
DEFAULT_ALL_CRITICAL_INTENT = "lead_qualified"

RawConfig = Optional[Union[GoalConfiguration, Dict[str, Any]]]


@dataclass
class EffectiveGoalConfig:
    config: GoalConfiguration
    source: str  # company | persona | none

    @property
    def is_enabled(self) -> bool:
        return self.config.enabled and len(self.config.goals) > 0

    @property
    def source_description(self) -> str:
        return {
            "company": "company-level",
            "persona": "persona-level",
            "none": "none"
        }.get(self.source, "unknown")


def _with_defaults(config: GoalConfiguration) -> GoalConfiguration:
    triggers = config.completion_triggers
    if triggers.all_critical_complete is not None:
        return config
    return config.model_copy(update={
        "completion_triggers": triggers.model_copy(update={"all_critical_complete": DEFAULT_ALL_CRITICAL_INTENT})
    })


def get_effective_config(company_config: RawConfig, persona_config: RawConfig) -> EffectiveGoalConfig:
    """Pick which goal configuration applies: company > persona > none"""

    for source, raw in (("company", company_config), ("persona", persona_config)):
        if raw is None:
            continue
        config = load_goal_configuration(raw)
        if config.enabled and config.goals:
            logger.info(f"🎯 Using {source}-level goal configuration ({len(config.goals)} goals)")
            return EffectiveGoalConfig(config=_with_defaults(config), source=source)

    logger.info("ℹ️ No goal configuration enabled")
    return EffectiveGoalConfig(config=_with_defaults(GoalConfiguration()), source="none")


def find_goal(goal_config: GoalConfiguration, goal_id: str) -> Optional[ConversationGoal]:
    """Find a goal by full id, or by short name ('collect' matches 'collect_email')"""
    for goal in goal_config.goals:
        if goal.id == goal_id or goal.id.startswith(goal_id + "_"):
            return goal
    return None


def find_goals(goal_config: GoalConfiguration, goal_ids: List[str]) -> List[ConversationGoal]:
    found = [find_goal(goal_config, goal_id) for goal_id in goal_ids]
    return [goal for goal in found if goal is not None]


def get_most_urgent_goal(active_goal_ids: List[str], goal_config: GoalConfiguration) -> Optional[ConversationGoal]:
    """Highest priority active goal; configuration order breaks ties"""

    active = find_goals(goal_config, active_goal_ids)
    if not active:
        return None

    order = {goal.id: index for index, goal in enumerate(goal_config.goals)}
    return sorted(active, key=lambda goal: (-PRIORITY_VALUES[goal.priority], order[goal.id]))[0]


def format_goal_for_log(goal: ConversationGoal) -> Dict[str, Any]:
    return {
        "id": goal.id,
        "name": goal.name,
        "type": goal.type,
        "priority": goal.priority,
        "field": goal.target.field
    }


__all__ = [
    'DEFAULT_ALL_CRITICAL_INTENT',
    'EffectiveGoalConfig',
    'get_effective_config',
    'find_goal',
    'find_goals',
    'get_most_urgent_goal',
    'format_goal_for_log',
]
