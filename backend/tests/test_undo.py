"""Undo history."""

import pytest

from carebase.services.undo import UndoStack


@pytest.mark.unit
class TestUndoStack:
    def test_lifo(self):
        stack = UndoStack()
        stack.push({"title": "one"})
        stack.push({"title": "two"})
        assert stack.pop() == {"title": "two"}
        assert stack.pop() == {"title": "one"}
        assert stack.pop() is None
        assert not stack.can_undo()

    def test_snapshots_are_copies(self):
        stack = UndoStack()
        record = {"goals": ["walk"]}
        stack.push(record)
        record["goals"].append("swim")
        assert stack.pop() == {"goals": ["walk"]}

    def test_limit_drops_oldest(self):
        stack = UndoStack(limit=2)
        for i in range(3):
            stack.push({"n": i})
        assert len(stack) == 2
        assert stack.pop() == {"n": 2}
        assert stack.pop() == {"n": 1}
        assert stack.pop() is None

    def test_clear(self):
        stack = UndoStack()
        stack.push({})
        stack.clear()
        assert not stack.can_undo()
