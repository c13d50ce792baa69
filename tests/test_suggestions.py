from __future__ import annotations

from typing import List

import pytest

from claimflow.blackboard import PipelinePolicy, TaskQueue, TaskType, UserDecisionTask, of_type
from claimflow.suggestions import SuggestionQueue


def _payload(title: str, conversation_id: str = "conv-1", due: str = "Today") -> dict:
    return {"title": title, "due_window": due, "evidence": [f"said {title}"], "conversation_id": conversation_id}


def test_four_rapid_suggestions_show_one_plus_badge() -> None:
    suggestions = SuggestionQueue()
    for title in ("Buy tea", "Call mom", "Book dentist", "Pay rent"):
        suggestions(_payload(title))

    assert suggestions.current.title == "Buy tea"
    assert [s.title for s in suggestions.visible] == ["Buy tea"]
    assert suggestions.remaining_count == 3
    assert suggestions.badge == "+3"
    assert suggestions.evicted_count == 0


def test_fifth_suggestion_at_capacity_evicts_the_oldest() -> None:
    suggestions = SuggestionQueue()
    for title in ("Buy tea", "Call mom", "Book dentist", "Pay rent", "Water plants"):
        suggestions(_payload(title))

    assert [s.title for s in suggestions.entries()] == ["Call mom", "Book dentist", "Pay rent", "Water plants"]
    assert suggestions.current.title == "Call mom"
    assert suggestions.badge == "+3"
    assert suggestions.evicted_count == 1


def test_capacity_follows_policy() -> None:
    suggestions = SuggestionQueue.from_policy(PipelinePolicy(suggestion_backlog_capacity=1, max_visible_suggestions=2))
    for title in ("a", "b", "c", "d"):
        suggestions(_payload(title))

    assert suggestions.capacity == 3
    assert [s.title for s in suggestions.visible] == ["b", "c"]
    assert suggestions.badge == "+1"


def test_repeat_of_a_queued_suggestion_is_ignored() -> None:
    suggestions = SuggestionQueue()
    first = suggestions(_payload("Buy tea"))
    assert suggestions(_payload(" Buy tea ")) is None
    assert suggestions({"title": "   "}) is None

    assert suggestions.entries() == [first]
    assert suggestions.badge == ""


def test_same_title_from_another_conversation_is_kept() -> None:
    suggestions = SuggestionQueue()
    first = suggestions(_payload("Buy tea", conversation_id="conv-1"))
    second = suggestions(_payload("Buy tea", conversation_id="conv-2"))
    third = suggestions(_payload("buy tea", conversation_id="conv-1"))

    assert suggestions.entries() == [first, second, third]
    assert suggestions.badge == "+2"


def test_payload_keys_are_normalised() -> None:
    suggestions = SuggestionQueue()
    item = suggestions({"title": "Buy tea", "dueWindow": "This Week"})
    other = suggestions({"title": "Call mom", "due_window": "someday"})

    assert item.due_window == "This Week"
    assert other.due_window == "Everything else"
    assert item.conversation_id is None


def test_accept_advances_current_and_enqueues_decision() -> None:
    queue = TaskQueue()
    suggestions = SuggestionQueue(queue)
    first = suggestions(_payload("Buy tea"))
    suggestions(_payload("Call mom"))

    resolved = suggestions.accept(first.id)

    assert resolved is first
    assert suggestions.current.title == "Call mom"
    assert suggestions.badge == ""
    task = queue.take(of_type(TaskType.ACTION_USER_DECISION))
    assert isinstance(task, UserDecisionTask)
    assert task.conversation_id == "conv-1"
    assert task.decision.title == "Buy tea"
    assert task.decision.due_window == "Today"
    assert task.decision.accepted is True


def test_dismiss_enqueues_rejected_decision() -> None:
    queue = TaskQueue()
    suggestions = SuggestionQueue(queue)
    item = suggestions(_payload("Buy tea"))

    suggestions.dismiss(item.id)

    task = queue.take(of_type(TaskType.ACTION_USER_DECISION))
    assert task.decision.accepted is False
    assert suggestions.current is None


def test_unknown_suggestion_raises_key_error() -> None:
    suggestions = SuggestionQueue(TaskQueue())
    with pytest.raises(KeyError):
        suggestions.accept("sug_missing")


def test_unbound_queue_resolves_locally() -> None:
    suggestions = SuggestionQueue()
    item = suggestions(_payload("Buy tea"))

    suggestions.accept(item.id)

    assert len(suggestions) == 0


def test_listeners_see_every_change() -> None:
    suggestions = SuggestionQueue()
    seen: List[str] = []
    subscription = suggestions.subscribe(lambda q: seen.append(q.badge))

    item = suggestions(_payload("Buy tea"))
    suggestions(_payload("Call mom"))
    suggestions.dismiss(item.id)
    subscription.close()
    suggestions(_payload("Pay rent"))

    assert seen == ["", "+1", ""]


def test_rejects_invalid_sizes() -> None:
    with pytest.raises(ValueError):
        SuggestionQueue(backlog_capacity=-1)
    with pytest.raises(ValueError):
        SuggestionQueue(max_visible=0)
