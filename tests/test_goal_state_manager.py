import threading
from datetime import datetime, timedelta

import pytest

from goal_models import GoalCondition
from goal_state_manager import (
    ConversationGoalState,
    GoalStateConcurrencyError,
    GoalStateManager,
    InMemoryGoalStateStore,
)
from tests.conftest import SESSION


def condition(type_: str, operator: str, value) -> GoalCondition:
    return GoalCondition(type=type_, operator=operator, value=value)


class TestStateLifecycle:

    def test_state_is_created_lazily(self, state_manager):
        state = state_manager.get_goal_state(*SESSION)

        assert state.message_count == 0
        assert state.interest_level == "medium"
        assert state.urgency_level == "normal"
        assert state.key == "tenant-1:user-1:session-1"

    def test_increment_message_updates_levels(self, state_manager):
        state_manager.increment_message(*SESSION)
        state = state_manager.increment_message(*SESSION, interest_level="high", urgency_level="urgent")

        assert state.message_count == 2
        assert state.interest_level == "high"
        assert state.urgency_level == "urgent"

    def test_collect_information_last_write_wins(self, state_manager):
        state_manager.collect_information(*SESSION, "email", "old@example.com", True)
        state = state_manager.collect_information(*SESSION, "email", "new@example.com", True)

        assert state.collected_information["email"].value == "new@example.com"
        assert state.collected_information["email"].validated is True

    def test_clear_state(self, state_manager):
        state_manager.increment_message(*SESSION)
        state_manager.clear_state(*SESSION)

        assert state_manager.get_goal_state(*SESSION).message_count == 0

    def test_conversations_are_isolated(self, state_manager):
        state_manager.increment_message("s1", "u1", "t1")
        state_manager.increment_message("s1", "u1", "t2")
        state_manager.increment_message("s1", "u1", "t2")

        assert state_manager.get_goal_state("s1", "u1", "t1").message_count == 1
        assert state_manager.get_goal_state("s1", "u1", "t2").message_count == 2
        assert len(state_manager.get_all_states()) == 2


class TestGoalTransitions:
    """A goal id lives in at most one of active, completed and declined"""

    def test_activate_then_complete(self, state_manager):
        state_manager.activate_goal(*SESSION, "collect_email")
        state = state_manager.complete_goal(*SESSION, "collect_email", "extracted_from_message")

        assert state.active_goals == []
        assert state.completed_goals == ["collect_email"]
        assert state.goal_tracking["collect_email"].successful is True
        assert state.goal_tracking["collect_email"].attempts == 2

    def test_decline_removes_from_completed(self, state_manager):
        state_manager.complete_goal(*SESSION, "collect_phone")
        state = state_manager.decline_goal(*SESSION, "collect_phone")

        assert state.completed_goals == []
        assert state.declined_goals == ["collect_phone"]
        assert state.last_goal_attempt.successful is False

    def test_activate_skips_finished_goals(self, state_manager):
        state_manager.complete_goal(*SESSION, "collect_email")
        state_manager.decline_goal(*SESSION, "collect_phone")
        state_manager.activate_goal(*SESSION, "collect_email")
        state = state_manager.activate_goal(*SESSION, "collect_phone")

        assert state.active_goals == []

    def test_activate_is_idempotent(self, state_manager):
        state_manager.activate_goal(*SESSION, "collect_email")
        state = state_manager.activate_goal(*SESSION, "collect_email")

        assert state.active_goals == ["collect_email"]
        assert state.goal_tracking["collect_email"].attempts == 1

    def test_last_attempt_for_cooldown(self, state_manager):
        state = state_manager.activate_goal(*SESSION, "collect_email")

        assert state_manager.get_last_attempt(state, "collect_email") is not None
        assert state_manager.get_last_attempt(state, "collect_phone") is None

    def test_record_intents_deduplicates(self, state_manager):
        state_manager.record_intents(*SESSION, ["lead_qualified"])
        state = state_manager.record_intents(*SESSION, ["lead_qualified", "book_class"])

        assert state.detected_intents == ["lead_qualified", "book_class"]


class TestEvaluateCondition:

    @pytest.fixture
    def state(self, state_manager) -> ConversationGoalState:
        state_manager.increment_message(*SESSION)
        state_manager.increment_message(*SESSION)
        state_manager.increment_message(*SESSION, interest_level="high", urgency_level="casual")
        state_manager.collect_information(*SESSION, "email", "jane@example.com", True)
        return state_manager.record_intents(*SESSION, ["pricing_inquiry"])

    @pytest.mark.parametrize("cond, expected", [
        (("message_count", "greater_than", 2), True),
        (("message_count", "less_than", 3), False),
        (("message_count", "equals", 3), True),
        (("interest_level", "equals", "high"), True),
        (("interest_level", "greater_than", "medium"), True),
        (("interest_level", "greater_than", 2), True),
        (("urgency_level", "less_than", "normal"), True),
        (("urgency_level", "equals", "urgent"), False),
        (("has_info", "equals", "email"), True),
        (("has_info", "equals", "phone"), False),
        (("has_info", "not_contains", "phone"), True),
        (("time_elapsed", "less_than", 5), True),
        (("intent_detected", "contains", "pricing_inquiry"), True),
        (("intent_detected", "not_contains", "pricing_inquiry"), False),
        (("intent_detected", "greater_than", "pricing_inquiry"), False),
    ])
    def test_conditions(self, state_manager, state, cond, expected):
        assert state_manager.evaluate_condition(state, condition(*cond)) is expected

    def test_incomparable_values_are_false(self, state_manager, state):
        assert state_manager.evaluate_condition(state, condition("message_count", "greater_than", "many")) is False

    def test_unknown_interest_value_is_false(self, state_manager, state):
        assert state_manager.evaluate_condition(state, condition("interest_level", "equals", "extreme")) is False


class TestLeadAndSummary:

    def test_lead_complete(self, state_manager):
        state_manager.collect_information(*SESSION, "email", "jane@example.com", True)
        state_manager.collect_information(*SESSION, "phone", "9546823329", True)
        state = state_manager.get_goal_state(*SESSION)
        assert state_manager.is_lead_complete(state) is False

        state = state_manager.collect_information(*SESSION, "fullName", "Jane Doe", True)
        assert state_manager.is_lead_complete(state) is True

    def test_invalid_field_does_not_complete_lead(self, state_manager):
        state = state_manager.collect_information(*SESSION, "email", "jane@", False)
        assert state_manager.is_lead_complete(state, required_fields=("email",)) is False

    def test_summary(self, state_manager):
        state_manager.increment_message(*SESSION)
        state_manager.activate_goal(*SESSION, "collect_email")
        state_manager.collect_information(*SESSION, "firstName", "Jane", True)

        summary = state_manager.get_state_summary(*SESSION)

        assert summary["message_count"] == 1
        assert summary["collected_fields"] == ["firstName"]
        assert summary["active_goals"] == ["collect_email"]
        assert summary["is_lead_complete"] is False
        assert summary["session_age"] == "0 minutes"


class TestInMemoryStore:

    def test_expired_state_is_dropped(self):
        store = InMemoryGoalStateStore(ttl_minutes=30, max_conversations=10)
        state = ConversationGoalState(*SESSION)
        state.last_updated = datetime.now() - timedelta(minutes=31)
        store.put(state)

        assert store.get(state.key) is None
        assert len(store) == 0

    def test_evict_expired(self):
        store = InMemoryGoalStateStore(ttl_minutes=30, max_conversations=10)
        stale = ConversationGoalState("old", "u", "t")
        stale.last_updated = datetime.now() - timedelta(hours=2)
        store.put(stale)
        store.put(ConversationGoalState("new", "u", "t"))

        assert store.evict_expired() == 1
        assert [s.session_id for s in store.values()] == ["new"]

    def test_least_recently_updated_is_evicted(self):
        store = InMemoryGoalStateStore(ttl_minutes=None, max_conversations=2)
        first = ConversationGoalState("s1", "u", "t")
        store.put(first)
        store.put(ConversationGoalState("s2", "u", "t"))
        store.put(first)
        store.put(ConversationGoalState("s3", "u", "t"))

        assert sorted(s.session_id for s in store.values()) == ["s1", "s3"]

    def test_zero_disables_bounds(self):
        store = InMemoryGoalStateStore(ttl_minutes=0, max_conversations=0)
        for i in range(5):
            state = ConversationGoalState(f"s{i}", "u", "t")
            state.last_updated = datetime.now() - timedelta(days=30)
            store.put(state)

        assert len(store.values()) == 5
        assert store.get("t:u:s0") is not None


class TestConcurrency:

    def test_lock_timeout_raises(self):
        manager = GoalStateManager(store=InMemoryGoalStateStore(), lock_timeout=0.05)
        locked = threading.Event()
        release = threading.Event()

        def hold_lock():
            with manager.conversation_lock(*SESSION):
                locked.set()
                release.wait(2)

        holder = threading.Thread(target=hold_lock)
        holder.start()
        try:
            assert locked.wait(2)
            with pytest.raises(GoalStateConcurrencyError):
                manager.increment_message(*SESSION)
        finally:
            release.set()
            holder.join()

        assert manager.increment_message(*SESSION).message_count == 1

    def test_lock_map_stays_within_store_bound(self):
        manager = GoalStateManager(store=InMemoryGoalStateStore(ttl_minutes=60, max_conversations=10))

        for i in range(200):
            manager.increment_message(f"session-{i}", "user-1", "tenant-1")

        assert len(manager.get_all_states()) == 10
        assert len(manager._key_locks) <= 10

    def test_lock_is_kept_while_held(self, state_manager):
        with state_manager.conversation_lock(*SESSION):
            assert len(state_manager._key_locks) == 1
            state_manager.increment_message(*SESSION)
            assert len(state_manager._key_locks) == 1

    def test_summary_waits_for_conversation_lock(self):
        manager = GoalStateManager(store=InMemoryGoalStateStore(), lock_timeout=0.05)
        locked = threading.Event()
        release = threading.Event()

        def hold_lock():
            with manager.conversation_lock(*SESSION):
                locked.set()
                release.wait(2)

        holder = threading.Thread(target=hold_lock)
        holder.start()
        try:
            assert locked.wait(2)
            with pytest.raises(GoalStateConcurrencyError):
                manager.get_state_summary(*SESSION)
        finally:
            release.set()
            holder.join()

        assert manager.get_state_summary(*SESSION)["message_count"] == 0

    def test_lock_is_reentrant(self, state_manager):
        with state_manager.conversation_lock(*SESSION):
            state = state_manager.increment_message(*SESSION)

        assert state.message_count == 1

    def test_concurrent_increments_are_not_lost(self, state_manager):
        def worker():
            for _ in range(50):
                state_manager.increment_message(*SESSION)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert state_manager.get_goal_state(*SESSION).message_count == 200
