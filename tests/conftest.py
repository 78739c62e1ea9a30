from typing import Any, Dict, Optional

import pytest

from goal_orchestrator import GoalOrchestrator
from goal_state_manager import GoalStateManager, InMemoryGoalStateStore

SESSION = ("session-1", "user-1", "tenant-1")


def make_goal(goal_id: str, priority: str = "medium", goal_type: str = "collect_info",
              timing: Optional[Dict[str, Any]] = None, **extra: Any) -> Dict[str, Any]:
    """Persona-style (camelCase) goal definition"""
    goal = {
        "id": goal_id,
        "name": goal_id.replace("_", " ").title(),
        "type": goal_type,
        "priority": priority,
        "timing": timing or {},
    }
    goal.update(extra)
    return goal


def make_config(*goals: Dict[str, Any], enabled: bool = True, max_active_goals: int = 3,
                **extra: Any) -> Dict[str, Any]:
    config = {
        "enabled": enabled,
        "goals": list(goals),
        "globalSettings": {"maxActiveGoals": max_active_goals},
    }
    config.update(extra)
    return config


@pytest.fixture
def state_manager() -> GoalStateManager:
    return GoalStateManager(store=InMemoryGoalStateStore(ttl_minutes=60, max_conversations=100), lock_timeout=0.5)


@pytest.fixture
def orchestrator(state_manager: GoalStateManager) -> GoalOrchestrator:
    return GoalOrchestrator(state_manager=state_manager)
