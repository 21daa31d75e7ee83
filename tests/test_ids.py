"""Tests for session-scoped id generation."""

from nodeflow.core.ids import IdGenerator


class TestIdGenerator:
    def test_counters_are_per_prefix(self):
        ids = IdGenerator()

        assert ids.next_id("prompt") == "prompt-1"
        assert ids.next_id("prompt") == "prompt-2"
        assert ids.next_id("image") == "image-1"

    def test_existing_ids_are_skipped(self):
        ids = IdGenerator(["prompt-4", "prompt-2", "output-1", "custom"])

        assert ids.next_id("prompt") == "prompt-5"
        assert ids.next_id("output") == "output-2"
        assert ids.next_id("custom") == "custom-1"

    def test_observe_never_moves_backwards(self):
        ids = IdGenerator()
        for _ in range(3):
            ids.next_id("code")

        ids.observe(["code-1"])

        assert ids.next_id("code") == "code-4"

    def test_generators_are_independent(self):
        first, second = IdGenerator(), IdGenerator()
        first.next_id("edge")

        assert second.next_id("edge") == "edge-1"
