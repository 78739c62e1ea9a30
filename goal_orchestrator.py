# ========================================================================================
# GOAL ORCHESTRATOR
# Decides, message by message, which conversation goals to pursue and how
# ========================================================================================

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from goal_models import (
    PRIORITY_VALUES,
    ConversationGoal,
    GoalConfiguration,
    GoalTrigger,
    load_goal_configuration,
)
from goal_state_manager import INTEREST_VALUES, ConversationGoalState, GoalStateManager
from info_extractor import ExtractedInfo, InfoExtractor
from interest_detector import InterestAnalysis, InterestDetector

logger = logging.getLogger(__name__)

# Extracted field -> goal it satisfies. lastName alone completes nothing.
FIELD_GOALS = {
    "email": "collect_email",
    "phone": "collect_phone",
    "firstName": "collect_name_first",
    "fullName": "collect_name",
}

# goal id -> approach -> phrasing. Configuration templates take precedence.
GOAL_MESSAGE_TEMPLATES = {
    "collect_name_first": {
        "direct": "What's your name? {value_proposition}",
        "contextual": "{value_proposition} - what should I call you?",
        "subtle": "By the way, what's your first name so I can personalize this for you?"
    },
    "collect_email": {
        "direct": "What's your email address? {value_proposition}",
        "contextual": "{value_proposition} - what's the best email to send that to?",
        "subtle": "By the way, {value_proposition_lower} if you'd like. What email should I use?"
    },
    "collect_phone": {
        "direct": "What's your phone number? {value_proposition}",
        "contextual": "{value_proposition} - what's your phone number?",
        "subtle": "If you'd like text updates, what's your phone number?"
    },
    "collect_name": {
        "direct": "What's your name? {value_proposition}",
        "contextual": "{value_proposition} - what should I call you?",
        "subtle": "I'd love to personalize this for you - what's your first name?"
    },
    "schedule_class": {
        "direct": "Would you like to schedule a class? {value_proposition}",
        "contextual": "{value_proposition} - want to book your first class?",
        "subtle": "We have some great classes coming up if you're interested in trying one out."
    },
}

DEFAULT_GOAL_MESSAGE = "Let me help you with {goal_name_lower}."

DIRECTNESS_TO_APPROACH = {
    "direct": "direct",
    "moderate": "contextual",
    "contextual": "contextual",
    "subtle": "subtle",
}


class _TemplateValues(dict):
    """Leaves unknown placeholders untouched in persona-authored templates"""

    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


@dataclass
class GoalRecommendation:
    goal_id: str
    goal: ConversationGoal
    priority: float
    reason: str
    approach: str  # direct | contextual | subtle
    message: str
    should_pursue: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "goal_id": self.goal_id,
            "goal": self.goal.model_dump(mode="json", by_alias=True, exclude_none=True),
            "priority": self.priority,
            "reason": self.reason,
            "approach": self.approach,
            "message": self.message,
            "should_pursue": self.should_pursue
        }


@dataclass
class StateUpdates:
    newly_completed: List[str] = field(default_factory=list)
    newly_activated: List[str] = field(default_factory=list)
    declined: List[str] = field(default_factory=list)


@dataclass
class GoalOrchestrationResult:
    extracted_info: ExtractedInfo
    interest_analysis: InterestAnalysis
    recommendations: List[GoalRecommendation] = field(default_factory=list)
    state_updates: StateUpdates = field(default_factory=StateUpdates)
    triggered_intents: List[str] = field(default_factory=list)

    @property
    def pursued(self) -> List[GoalRecommendation]:
        return [r for r in self.recommendations if r.should_pursue]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recommendations": [r.to_dict() for r in self.recommendations],
            "extracted_info": asdict(self.extracted_info),
            "interest_analysis": asdict(self.interest_analysis),
            "state_updates": asdict(self.state_updates),
            "triggered_intents": list(self.triggered_intents)
        }


class GoalOrchestrator:
    """Single entry point: analyze a message, update goal state, recommend goals"""

    def __init__(self, state_manager: Optional[GoalStateManager] = None,
                 interest_detector: Optional[InterestDetector] = None,
                 info_extractor: Optional[InfoExtractor] = None):
        self.state_manager = state_manager or GoalStateManager()
        self.interest_detector = interest_detector or InterestDetector()
        self.info_extractor = info_extractor or InfoExtractor()

    def orchestrate_goals(self, message: str, session_id: str, user_id: str, tenant_id: str,
                          goal_config: Union[GoalConfiguration, Dict[str, Any]],
                          conversation_history: Optional[List[str]] = None) -> GoalOrchestrationResult:
        """Analyze a message and determine goal actions"""

        # Fail before touching any state
        goal_config = load_goal_configuration(goal_config)

        with self.state_manager.conversation_lock(session_id, user_id, tenant_id):
            self.state_manager.increment_message(session_id, user_id, tenant_id)

            interest_analysis = self.interest_detector.analyze_message(message, conversation_history)
            extracted_info = self.info_extractor.extract_info(message)

            # Second pass records the fresh levels (and counts the message again)
            state = self.state_manager.increment_message(
                session_id, user_id, tenant_id,
                interest_analysis.interest_level,
                interest_analysis.urgency_level
            )

            logger.info(
                f"🎯 Message #{state.message_count} for {state.key}: "
                f"interest={interest_analysis.interest_level}, urgency={interest_analysis.urgency_level}, "
                f"indicators={interest_analysis.total_indicators}"
            )

            result = GoalOrchestrationResult(
                extracted_info=extracted_info,
                interest_analysis=interest_analysis
            )

            state = self._process_extracted_info(extracted_info, state, result)
            state = self._process_information_declines(message, state, result)

            if goal_config.enabled:
                result.recommendations = self._generate_recommendations(goal_config, state, interest_analysis)

            self._check_completion_triggers(goal_config, state, result)

            if result.triggered_intents:
                self.state_manager.record_intents(session_id, user_id, tenant_id, result.triggered_intents)
                logger.info(f"🚀 Triggered intents: {result.triggered_intents}")

        logger.info(
            f"🎯 {len(result.recommendations)} recommendations, {len(result.pursued)} to pursue "
            f"({[r.goal_id for r in result.pursued]})"
        )
        return result

    def analyze_without_goals(self, message: str,
                              conversation_history: Optional[List[str]] = None) -> GoalOrchestrationResult:
        """Analysis only, for conversations with no goal configuration; state is left untouched"""

        return GoalOrchestrationResult(
            extracted_info=self.info_extractor.extract_info(message),
            interest_analysis=self.interest_detector.analyze_message(message, conversation_history)
        )

    # ====================================================================================
    # STATE UPDATES FROM THE MESSAGE
    # ====================================================================================

    def _process_extracted_info(self, extracted_info: ExtractedInfo, state: ConversationGoalState,
                                result: GoalOrchestrationResult) -> ConversationGoalState:
        """Store extracted fields and complete the goals they satisfy"""

        fields = [
            ("email", extracted_info.email, extracted_info.email.validated if extracted_info.email else False),
            ("phone", extracted_info.phone, extracted_info.phone.validated if extracted_info.phone else False),
            ("firstName", extracted_info.first_name, True),
            ("lastName", extracted_info.last_name, True),
            ("fullName", extracted_info.full_name, True),
        ]

        for field_name, extracted, validated in fields:
            if extracted is None:
                continue

            state = self.state_manager.collect_information(
                state.session_id, state.user_id, state.tenant_id,
                field_name, extracted.value, validated
            )

            goal_id = FIELD_GOALS.get(field_name)
            if goal_id and goal_id in state.active_goals:
                state = self.state_manager.complete_goal(
                    state.session_id, state.user_id, state.tenant_id,
                    goal_id, 'extracted_from_message'
                )
                result.state_updates.newly_completed.append(goal_id)

        return state

    def _process_information_declines(self, message: str, state: ConversationGoalState,
                                      result: GoalOrchestrationResult) -> ConversationGoalState:
        decline = self.info_extractor.detect_information_decline(message)

        if decline["declined"] and decline["confidence"] > 0.7:
            active_info_goals = [goal_id for goal_id in state.active_goals if goal_id.startswith('collect_')]

            # Assume the user is refusing the earliest outstanding request
            if active_info_goals:
                declined_goal = active_info_goals[0]
                state = self.state_manager.decline_goal(
                    state.session_id, state.user_id, state.tenant_id, declined_goal
                )
                result.state_updates.declined.append(declined_goal)

        return state

    # ====================================================================================
    # RECOMMENDATIONS
    # ====================================================================================

    def _generate_recommendations(self, goal_config: GoalConfiguration, state: ConversationGoalState,
                                  interest_analysis: InterestAnalysis) -> List[GoalRecommendation]:
        recommendations: List[GoalRecommendation] = []
        max_active_goals = goal_config.global_settings.max_active_goals

        eligible_goals = [
            goal for goal in goal_config.goals
            if goal.id not in state.completed_goals and
            goal.id not in state.declined_goals and
            self._check_goal_dependencies(goal, state) and
            self._check_goal_timing(goal, state)
        ]

        for goal in self._sort_goals_by_priority(eligible_goals, interest_analysis):
            if sum(1 for r in recommendations if r.should_pursue) >= max_active_goals:
                break
            recommendations.append(self._evaluate_goal(goal, goal_config, state, interest_analysis))

        return recommendations

    def _check_goal_dependencies(self, goal: ConversationGoal, state: ConversationGoalState) -> bool:
        if not goal.dependencies or not goal.dependencies.requires:
            return True

        return all(required in state.completed_goals for required in goal.dependencies.requires)

    def _check_goal_timing(self, goal: ConversationGoal, state: ConversationGoalState) -> bool:
        """Message window, cooldown and conditional triggers"""

        timing = goal.timing

        if timing.min_messages is not None and state.message_count < timing.min_messages:
            return False
        # maxMessages 0 means no upper bound
        if timing.max_messages and state.message_count > timing.max_messages:
            return False

        last_attempt = self.state_manager.get_last_attempt(state, goal.id) or goal.tracking.last_attempt
        if last_attempt is not None and timing.cooldown:
            if _minutes_since(last_attempt) < timing.cooldown:
                return False

        if timing.triggers:
            return any(self._evaluate_trigger(trigger, state) for trigger in timing.triggers)

        return True

    def _evaluate_trigger(self, trigger: GoalTrigger, state: ConversationGoalState) -> bool:
        results = [self.state_manager.evaluate_condition(state, condition) for condition in trigger.conditions]
        return all(results) if trigger.logic == 'AND' else any(results)

    def _sort_goals_by_priority(self, goals: List[ConversationGoal],
                                interest_analysis: InterestAnalysis) -> List[ConversationGoal]:
        """Highest priority first; with high interest, info collection wins ties"""

        favour_collection = interest_analysis.interest_level == 'high'

        def sort_key(goal: ConversationGoal):
            collection_rank = 0 if favour_collection and goal.type == 'collect_info' else 1
            return (-PRIORITY_VALUES[goal.priority], collection_rank)

        return sorted(goals, key=sort_key)

    def _evaluate_goal(self, goal: ConversationGoal, goal_config: GoalConfiguration,
                       state: ConversationGoalState, interest_analysis: InterestAnalysis) -> GoalRecommendation:
        priority: float = PRIORITY_VALUES[goal.priority]

        if interest_analysis.interest_level == 'high':
            priority += 1
        if interest_analysis.urgency_level == 'urgent':
            priority += 0.5
        if interest_analysis.interest_level == 'low':
            priority -= 1

        # Urgency overrides a low-interest softening
        approach = DIRECTNESS_TO_APPROACH[goal.approach.directness]
        if interest_analysis.interest_level == 'low':
            approach = 'subtle'
        if interest_analysis.urgency_level == 'urgent':
            approach = 'direct'

        return GoalRecommendation(
            goal_id=goal.id,
            goal=goal,
            priority=priority,
            reason=self._generate_pursuit_reason(goal, state, interest_analysis),
            approach=approach,
            message=self._generate_goal_message(goal, approach, goal_config),
            should_pursue=self._should_pursue_goal(goal, state, interest_analysis, priority)
        )

    def _generate_goal_message(self, goal: ConversationGoal, approach: str,
                               goal_config: GoalConfiguration) -> str:
        value_proposition = goal.approach.value_proposition or ''

        template = (
            goal_config.message_templates.get(goal.id, {}).get(approach) or
            GOAL_MESSAGE_TEMPLATES.get(goal.id, {}).get(approach)
        )

        if template is None:
            return value_proposition or DEFAULT_GOAL_MESSAGE.format(goal_name_lower=goal.name.lower())

        values = _TemplateValues(
            value_proposition=value_proposition,
            value_proposition_lower=value_proposition.lower(),
            goal_name=goal.name,
            goal_name_lower=goal.name.lower()
        )
        return template.format_map(values).strip()

    def _should_pursue_goal(self, goal: ConversationGoal, state: ConversationGoalState,
                            interest_analysis: InterestAnalysis, priority: float) -> bool:
        if goal.id in state.active_goals:
            return False

        if goal.priority == 'critical' and priority >= 4:
            return True

        # At least medium interest unless the goal is critical
        if INTEREST_VALUES[interest_analysis.interest_level] < INTEREST_VALUES['medium'] and goal.priority != 'critical':
            return False

        return priority >= 3

    def _generate_pursuit_reason(self, goal: ConversationGoal, state: ConversationGoalState,
                                 interest_analysis: InterestAnalysis) -> str:
        reasons = []

        if goal.priority == 'critical':
            reasons.append('critical priority')
        if interest_analysis.interest_level == 'high':
            reasons.append('high user interest')
        if interest_analysis.urgency_level == 'urgent':
            reasons.append('user urgency detected')
        if state.message_count >= (goal.timing.min_messages or 0):
            reasons.append('timing conditions met')

        return ', '.join(reasons) or 'standard goal progression'

    # ====================================================================================
    # COMPLETION TRIGGERS
    # ====================================================================================

    def _check_completion_triggers(self, goal_config: GoalConfiguration, state: ConversationGoalState,
                                   result: GoalOrchestrationResult) -> None:
        triggers = goal_config.completion_triggers

        def add_intent(intent: str) -> None:
            if intent not in result.triggered_intents:
                result.triggered_intents.append(intent)

        for combo in triggers.custom_combinations or []:
            if all(goal_id in state.completed_goals for goal_id in combo.goal_ids):
                add_intent(combo.trigger_intent)

        # An empty priority tier counts as complete
        if triggers.all_critical_complete:
            critical_goals = [goal for goal in goal_config.goals if goal.priority == 'critical']
            if all(goal.id in state.completed_goals for goal in critical_goals):
                add_intent(triggers.all_critical_complete)

        if triggers.all_high_complete:
            high_goals = [goal for goal in goal_config.goals if goal.priority == 'high']
            if all(goal.id in state.completed_goals for goal in high_goals):
                add_intent(triggers.all_high_complete)

    # ====================================================================================
    # FOLLOW-UP AND DEBUGGING
    # ====================================================================================

    def activate_recommendations(self, result: GoalOrchestrationResult,
                                 session_id: str, user_id: str, tenant_id: str) -> List[str]:
        """Mark the pursued recommendations as active once they have been asked"""

        activated = []
        with self.state_manager.conversation_lock(session_id, user_id, tenant_id):
            for recommendation in result.pursued:
                state = self.state_manager.get_goal_state(session_id, user_id, tenant_id)
                if recommendation.goal_id in state.active_goals:
                    continue
                state = self.state_manager.activate_goal(session_id, user_id, tenant_id, recommendation.goal_id)
                if recommendation.goal_id in state.active_goals:
                    activated.append(recommendation.goal_id)

        result.state_updates.newly_activated.extend(activated)
        return activated

    def get_goal_state(self, session_id: str, user_id: str, tenant_id: str) -> Dict[str, Any]:
        return self.state_manager.get_state_summary(session_id, user_id, tenant_id)

    def reset_goal_state(self, session_id: str, user_id: str, tenant_id: str) -> None:
        self.state_manager.clear_state(session_id, user_id, tenant_id)


def _minutes_since(timestamp: datetime) -> float:
    now = datetime.now(timezone.utc) if timestamp.tzinfo else datetime.now()
    return (now - timestamp).total_seconds() / 60


__all__ = [
    'FIELD_GOALS',
    'GOAL_MESSAGE_TEMPLATES',
    'GoalRecommendation',
    'StateUpdates',
    'GoalOrchestrationResult',
    'GoalOrchestrator',
]
