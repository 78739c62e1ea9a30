# ========================================================================================
# CONVERSATION GOAL STATE
# Per-conversation bookkeeping: message counts, goal progress, collected fields
# ========================================================================================

import logging
import os
import threading
import weakref
from abc import ABC, abstractmethod
from collections import OrderedDict
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Iterator, List, Optional, Sequence

from goal_models import GoalCondition

logger = logging.getLogger(__name__)

GOAL_STATE_TTL_MINUTES = float(os.getenv("GOAL_STATE_TTL_MINUTES", "1440"))
GOAL_STATE_MAX_CONVERSATIONS = int(os.getenv("GOAL_STATE_MAX_CONVERSATIONS", "10000"))
GOAL_STATE_LOCK_TIMEOUT = float(os.getenv("GOAL_STATE_LOCK_TIMEOUT", "5"))

INTEREST_VALUES = {"low": 1, "medium": 2, "high": 3}
URGENCY_VALUES = {"casual": 1, "normal": 2, "urgent": 3}


class GoalStateConcurrencyError(RuntimeError):
    """Raised when a conversation's state is held by another caller for too long"""


@dataclass
class CollectedField:
    value: Any
    validated: bool
    collected_at: datetime = field(default_factory=datetime.now)


@dataclass
class GoalAttempt:
    goal_id: str
    timestamp: datetime
    successful: Optional[bool] = None  # None while the goal is still being pursued
    attempts: int = 1


@dataclass
class ConversationGoalState:
    session_id: str
    user_id: str
    tenant_id: str

    collected_information: Dict[str, CollectedField] = field(default_factory=dict)

    # A goal id lives in at most one of these
    active_goals: List[str] = field(default_factory=list)
    completed_goals: List[str] = field(default_factory=list)
    declined_goals: List[str] = field(default_factory=list)

    message_count: int = 0
    interest_level: str = "medium"
    urgency_level: str = "normal"

    goal_tracking: Dict[str, GoalAttempt] = field(default_factory=dict)
    last_goal_attempt: Optional[GoalAttempt] = None
    detected_intents: List[str] = field(default_factory=list)

    started_at: datetime = field(default_factory=datetime.now)
    last_updated: datetime = field(default_factory=datetime.now)

    @property
    def key(self) -> str:
        return state_key(self.session_id, self.user_id, self.tenant_id)


def state_key(session_id: str, user_id: str, tenant_id: str) -> str:
    return f"{tenant_id}:{user_id}:{session_id}"


# ========================================================================================
# STATE STORES
# ========================================================================================

class GoalStateStore(ABC):
    """Key-value storage for conversation goal state"""

    @abstractmethod
    def get(self, key: str) -> Optional[ConversationGoalState]:
        ...

    @abstractmethod
    def put(self, state: ConversationGoalState) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...

    @abstractmethod
    def values(self) -> List[ConversationGoalState]:
        ...


class InMemoryGoalStateStore(GoalStateStore):
    """Process-local store with idle expiry and a size bound (least recently updated evicted first)"""

    def __init__(self, ttl_minutes: Optional[float] = GOAL_STATE_TTL_MINUTES,
                 max_conversations: Optional[int] = GOAL_STATE_MAX_CONVERSATIONS):
        self.ttl = timedelta(minutes=ttl_minutes) if ttl_minutes else None
        self.max_conversations = max_conversations or None
        self._states: "OrderedDict[str, ConversationGoalState]" = OrderedDict()
        self._lock = threading.Lock()

    def _is_expired(self, state: ConversationGoalState, now: datetime) -> bool:
        return self.ttl is not None and now - state.last_updated > self.ttl

    def get(self, key: str) -> Optional[ConversationGoalState]:
        with self._lock:
            state = self._states.get(key)
            if state is not None and self._is_expired(state, datetime.now()):
                del self._states[key]
                logger.info(f"🧹 Goal state expired: {key}")
                return None
            return state

    def put(self, state: ConversationGoalState) -> None:
        with self._lock:
            self._states[state.key] = state
            self._states.move_to_end(state.key)

            if self.max_conversations is not None:
                while len(self._states) > self.max_conversations:
                    evicted_key, _ = self._states.popitem(last=False)
                    logger.warning(f"⚠️ Goal state store full, evicted: {evicted_key}")

    def delete(self, key: str) -> None:
        with self._lock:
            self._states.pop(key, None)

    def values(self) -> List[ConversationGoalState]:
        with self._lock:
            return list(self._states.values())

    def evict_expired(self) -> int:
        """Drop every expired conversation, returns how many were removed"""
        now = datetime.now()
        with self._lock:
            expired = [key for key, state in self._states.items() if self._is_expired(state, now)]
            for key in expired:
                del self._states[key]
        if expired:
            logger.info(f"🧹 Evicted {len(expired)} expired goal states")
        return len(expired)

    def __len__(self) -> int:
        return len(self._states)


# ========================================================================================
# STATE MANAGER
# ========================================================================================

class GoalStateManager:
    """Owns the mutable goal state of every conversation"""

    def __init__(self, store: Optional[GoalStateStore] = None,
                 lock_timeout: float = GOAL_STATE_LOCK_TIMEOUT):
        self.store = store if store is not None else InMemoryGoalStateStore()
        self.lock_timeout = lock_timeout
        # A lock lives only while a caller holds or waits on it
        self._key_locks: "weakref.WeakValueDictionary[str, threading.RLock]" = weakref.WeakValueDictionary()
        self._key_locks_guard = threading.Lock()

    # ------------------------------------------------------------------------------------
    # Concurrency
    # ------------------------------------------------------------------------------------

    def _lock_for(self, key: str) -> threading.RLock:
        with self._key_locks_guard:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._key_locks[key] = lock
            return lock

    @contextmanager
    def conversation_lock(self, session_id: str, user_id: str, tenant_id: str) -> Iterator[None]:
        """Serialize every mutation of one conversation; re-entrant for the holding thread"""

        key = state_key(session_id, user_id, tenant_id)
        lock = self._lock_for(key)

        if not lock.acquire(timeout=self.lock_timeout):
            logger.error(f"❌ Timed out waiting for goal state lock: {key}")
            raise GoalStateConcurrencyError(
                f"Conversation {key} is busy (lock not acquired within {self.lock_timeout}s)"
            )
        try:
            yield
        finally:
            lock.release()

    # ------------------------------------------------------------------------------------
    # Reads and writes
    # ------------------------------------------------------------------------------------

    def get_goal_state(self, session_id: str, user_id: str, tenant_id: str) -> ConversationGoalState:
        """Fetch the conversation state, creating it on first reference"""

        key = state_key(session_id, user_id, tenant_id)
        state = self.store.get(key)

        if state is None:
            state = ConversationGoalState(session_id=session_id, user_id=user_id, tenant_id=tenant_id)
            self.store.put(state)
            logger.info(f"🆕 Goal state created: {key}")

        return state

    def update_goal_state(self, state: ConversationGoalState) -> None:
        state.last_updated = datetime.now()
        self.store.put(state)

    def increment_message(self, session_id: str, user_id: str, tenant_id: str,
                          interest_level: Optional[str] = None,
                          urgency_level: Optional[str] = None) -> ConversationGoalState:
        """Count a message and refresh the conversation's interest/urgency"""

        with self.conversation_lock(session_id, user_id, tenant_id):
            state = self.get_goal_state(session_id, user_id, tenant_id)
            state.message_count += 1

            if interest_level:
                state.interest_level = interest_level

            if urgency_level:
                state.urgency_level = urgency_level

            self.update_goal_state(state)
            return state

    def collect_information(self, session_id: str, user_id: str, tenant_id: str,
                            field_name: str, value: Any, validated: bool = False) -> ConversationGoalState:
        with self.conversation_lock(session_id, user_id, tenant_id):
            state = self.get_goal_state(session_id, user_id, tenant_id)
            state.collected_information[field_name] = CollectedField(value=value, validated=validated)
            self.update_goal_state(state)
            logger.info(f"📥 Collected '{field_name}' (validated={validated}) for {state.key}")
            return state

    def complete_goal(self, session_id: str, user_id: str, tenant_id: str,
                      goal_id: str, method: Optional[str] = None) -> ConversationGoalState:
        with self.conversation_lock(session_id, user_id, tenant_id):
            state = self.get_goal_state(session_id, user_id, tenant_id)

            self._remove_goal(state, goal_id)
            state.completed_goals.append(goal_id)
            self._track_attempt(state, goal_id, successful=True)

            self.update_goal_state(state)
            logger.info(f"✅ Goal completed: {goal_id} ({method or 'unspecified'}) for {state.key}")
            return state

    def decline_goal(self, session_id: str, user_id: str, tenant_id: str,
                     goal_id: str) -> ConversationGoalState:
        with self.conversation_lock(session_id, user_id, tenant_id):
            state = self.get_goal_state(session_id, user_id, tenant_id)

            self._remove_goal(state, goal_id)
            state.declined_goals.append(goal_id)
            self._track_attempt(state, goal_id, successful=False)

            self.update_goal_state(state)
            logger.info(f"🚫 Goal declined: {goal_id} for {state.key}")
            return state

    def activate_goal(self, session_id: str, user_id: str, tenant_id: str,
                      goal_id: str) -> ConversationGoalState:
        """Start pursuing a goal; finished or declined goals are left alone"""

        with self.conversation_lock(session_id, user_id, tenant_id):
            state = self.get_goal_state(session_id, user_id, tenant_id)

            if (goal_id not in state.active_goals and
                    goal_id not in state.completed_goals and
                    goal_id not in state.declined_goals):
                state.active_goals.append(goal_id)
                self._track_attempt(state, goal_id, successful=None)
                logger.info(f"🎯 Goal activated: {goal_id} for {state.key}")

            self.update_goal_state(state)
            return state

    def record_intents(self, session_id: str, user_id: str, tenant_id: str,
                       intents: Sequence[str]) -> ConversationGoalState:
        with self.conversation_lock(session_id, user_id, tenant_id):
            state = self.get_goal_state(session_id, user_id, tenant_id)
            for intent in intents:
                if intent not in state.detected_intents:
                    state.detected_intents.append(intent)
            self.update_goal_state(state)
            return state

    def _remove_goal(self, state: ConversationGoalState, goal_id: str) -> None:
        state.active_goals = [g for g in state.active_goals if g != goal_id]
        state.completed_goals = [g for g in state.completed_goals if g != goal_id]
        state.declined_goals = [g for g in state.declined_goals if g != goal_id]

    def _track_attempt(self, state: ConversationGoalState, goal_id: str, successful: Optional[bool]) -> None:
        now = datetime.now()
        previous = state.goal_tracking.get(goal_id)
        attempt = GoalAttempt(
            goal_id=goal_id,
            timestamp=now,
            successful=successful,
            attempts=previous.attempts + 1 if previous else 1
        )
        state.goal_tracking[goal_id] = attempt
        state.last_goal_attempt = attempt

    def get_last_attempt(self, state: ConversationGoalState, goal_id: str) -> Optional[datetime]:
        attempt = state.goal_tracking.get(goal_id)
        return attempt.timestamp if attempt else None

    # ------------------------------------------------------------------------------------
    # Conditions
    # ------------------------------------------------------------------------------------

    def evaluate_condition(self, state: ConversationGoalState, condition: GoalCondition) -> bool:
        """Check a single trigger condition against the conversation state"""

        if condition.type == 'message_count':
            return self._compare_values(state.message_count, condition.operator, condition.value)

        if condition.type == 'interest_level':
            current = INTEREST_VALUES.get(state.interest_level)
            target = INTEREST_VALUES.get(condition.value) if isinstance(condition.value, str) else condition.value
            return self._compare_values(current, condition.operator, target)

        if condition.type == 'urgency_level':
            current = URGENCY_VALUES.get(state.urgency_level)
            target = URGENCY_VALUES.get(condition.value) if isinstance(condition.value, str) else condition.value
            return self._compare_values(current, condition.operator, target)

        if condition.type == 'has_info':
            has_info = str(condition.value) in state.collected_information
            return has_info if condition.operator == 'equals' else not has_info

        if condition.type == 'time_elapsed':
            elapsed_minutes = (datetime.now() - state.started_at).total_seconds() / 60
            return self._compare_values(elapsed_minutes, condition.operator, condition.value)

        if condition.type == 'intent_detected':
            detected = str(condition.value) in state.detected_intents
            if condition.operator in ('equals', 'contains'):
                return detected
            if condition.operator == 'not_contains':
                return not detected
            return False

        return False

    def _compare_values(self, actual: Any, operator: str, expected: Any) -> bool:
        if actual is None or expected is None:
            return False

        if operator == 'equals':
            return actual == expected

        if operator in ('greater_than', 'less_than'):
            try:
                return actual > expected if operator == 'greater_than' else actual < expected
            except TypeError:
                return False

        if operator == 'contains':
            return str(expected).lower() in str(actual).lower()

        if operator == 'not_contains':
            return str(expected).lower() not in str(actual).lower()

        return False

    # ------------------------------------------------------------------------------------
    # Inspection and reset
    # ------------------------------------------------------------------------------------

    def is_lead_complete(self, state: ConversationGoalState,
                         required_fields: Sequence[str] = ('email', 'phone', 'fullName')) -> bool:
        return all(
            field_name in state.collected_information and
            state.collected_information[field_name].validated is not False
            for field_name in required_fields
        )

    def get_state_summary(self, session_id: str, user_id: str, tenant_id: str) -> Dict[str, Any]:
        with self.conversation_lock(session_id, user_id, tenant_id):
            state = self.get_goal_state(session_id, user_id, tenant_id)
            session_age = round((datetime.now() - state.started_at).total_seconds() / 60)

            return {
                "message_count": state.message_count,
                "interest_level": state.interest_level,
                "urgency_level": state.urgency_level,
                "collected_fields": list(state.collected_information.keys()),
                "active_goals": list(state.active_goals),
                "completed_goals": list(state.completed_goals),
                "declined_goals": list(state.declined_goals),
                "detected_intents": list(state.detected_intents),
                "is_lead_complete": self.is_lead_complete(state),
                "session_age": f"{session_age} minutes"
            }

    def clear_state(self, session_id: str, user_id: str, tenant_id: str) -> None:
        key = state_key(session_id, user_id, tenant_id)
        with self.conversation_lock(session_id, user_id, tenant_id):
            self.store.delete(key)
        logger.info(f"🔄 Goal state cleared: {key}")

    def get_all_states(self) -> List[ConversationGoalState]:
        return self.store.values()


__all__ = [
    'GOAL_STATE_TTL_MINUTES',
    'GOAL_STATE_MAX_CONVERSATIONS',
    'GOAL_STATE_LOCK_TIMEOUT',
    'INTEREST_VALUES',
    'URGENCY_VALUES',
    'GoalStateConcurrencyError',
    'CollectedField',
    'GoalAttempt',
    'ConversationGoalState',
    'state_key',
    'GoalStateStore',
    'InMemoryGoalStateStore',
    'GoalStateManager',
]
