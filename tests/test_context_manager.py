"""Tests for ContextManager budgeting."""

from __future__ import annotations

import pytest

from parley.context.manager import TRUNCATION_MARKER, ContextManager
from parley.models.config import ContextConfig
from parley.models.message import Attachment
from tests.conftest import make_history, make_message


def manager(**overrides) -> ContextManager:
    return ContextManager(ContextConfig().with_overrides(**overrides))


class TestPrepareContext:
    def test_all_messages_fit(self) -> None:
        """Three short messages under a large budget are all included."""
        cm = manager(max_tokens=1000)
        history = make_history("a" * 20, "b" * 20, "c" * 20)

        ctx = cm.prepare_context(history, "Next question")

        assert ctx.stats.messages_included == 3
        assert ctx.stats.messages_excluded == 0
        assert ctx.stats.messages_summarized == 0
        assert ctx.stats.has_reached_limit is False
        assert [m.content for m in ctx.messages] == ["a" * 20, "b" * 20, "c" * 20, "Next question"]
        assert ctx.stats.total_tokens == 15 + cm.estimate_tokens("Next question")

    def test_prompt_is_always_last(self) -> None:
        cm = manager(max_tokens=1000)
        ctx = cm.prepare_context(make_history("one", "two"), "three")
        last = ctx.messages[-1]
        assert last.role == "user"
        assert last.content == "three"

    def test_empty_history(self) -> None:
        ctx = manager().prepare_context([], "Hello")
        assert len(ctx.messages) == 1
        assert ctx.stats.messages_included == 0
        assert ctx.stats.messages_excluded == 0

    def test_forced_truncated_inclusion(self) -> None:
        """The newest message is truncated in rather than leaving the floor unmet."""
        cm = manager(max_tokens=100, min_messages_included=1)
        history = make_history(*["x" * 200 for _ in range(50)])
        prompt = "p" * 240  # 60 tokens, leaving 40 for history

        ctx = cm.prepare_context(history, prompt)

        assert ctx.stats.messages_included == 1
        assert ctx.stats.messages_excluded == 49
        forced = ctx.messages[0]
        assert forced.content == "x" * 140 + TRUNCATION_MARKER
        assert forced.is_original is False
        assert forced.token_count == cm.estimate_tokens(forced.content) == 39
        assert ctx.stats.total_tokens == 99
        assert ctx.stats.has_reached_limit is True

    def test_floor_already_met_excludes_without_truncation(self) -> None:
        cm = manager(max_tokens=100, min_messages_included=1)
        history = make_history(*["x" * 200 for _ in range(50)])

        ctx = cm.prepare_context(history, "Hi")

        assert ctx.stats.messages_included == 1
        assert ctx.messages[0].content == "x" * 200
        assert ctx.messages[0].is_original is True

    def test_at_most_one_message_truncated(self) -> None:
        cm = manager(max_tokens=100, min_messages_included=5)
        history = make_history(*["y" * 200 for _ in range(10)])

        ctx = cm.prepare_context(history, "Hi")

        truncated = [m for m in ctx.messages if m.content.endswith(TRUNCATION_MARKER)]
        assert len(truncated) == 1
        assert ctx.stats.messages_included == 2
        assert ctx.messages[0] is truncated[0]

    def test_marker_only_inclusion_counts_marker_tokens(self) -> None:
        cm = manager(max_tokens=65, min_messages_included=1)
        history = make_history("x" * 200)

        ctx = cm.prepare_context(history, "p" * 240)

        forced = ctx.messages[0]
        assert forced.content == TRUNCATION_MARKER
        assert forced.token_count == 4
        assert ctx.stats.total_tokens == 64

    def test_forced_inclusion_skipped_when_marker_does_not_fit(self) -> None:
        cm = manager(max_tokens=63, min_messages_included=1)
        history = make_history("x" * 200)

        ctx = cm.prepare_context(history, "p" * 240)

        assert [m.content for m in ctx.messages] == ["p" * 240]
        assert ctx.stats.messages_included == 0
        assert ctx.stats.total_tokens == 60

    def test_prompt_larger_than_budget_does_not_raise(self) -> None:
        cm = manager(max_tokens=100)
        history = make_history("short one", "short two")

        ctx = cm.prepare_context(history, "z" * 1000)

        assert [m.content for m in ctx.messages] == ["z" * 1000]
        assert ctx.stats.messages_included == 0
        assert ctx.stats.messages_excluded == 2
        assert ctx.stats.has_reached_limit is True

    def test_no_gaps_in_selection(self) -> None:
        """Excluded messages are exactly the oldest ones."""
        cm = manager(max_tokens=60, min_messages_included=0)
        history = make_history(*[f"{i}" * 40 for i in range(8)])

        ctx = cm.prepare_context(history, "q")

        included = [m.content for m in ctx.messages[:-1]]
        assert included == [m.content for m in history[-len(included):]]
        assert ctx.stats.messages_included + ctx.stats.messages_excluded == len(history)

    def test_invalid_messages_are_filtered(self) -> None:
        cm = manager(max_tokens=1000)
        history = [
            make_message(content="kept"),
            make_message(role="assistant", content="partial", is_streaming=True),
            make_message(role="assistant", content="   "),
            make_message(role="assistant", content="boom", status="error"),
            make_message(role="assistant", content="also kept"),
        ]

        ctx = cm.prepare_context(history, "next")

        assert [m.content for m in ctx.messages] == ["kept", "also kept", "next"]
        assert ctx.stats.messages_included == 2
        assert ctx.stats.messages_excluded == 0

    def test_history_is_not_modified(self) -> None:
        cm = manager(max_tokens=100, min_messages_included=1)
        history = make_history(*["x" * 200 for _ in range(3)])
        before = [m.model_copy() for m in history]

        cm.prepare_context(history, "p" * 240)

        assert history == before

    def test_system_prompt_first_and_counted(self) -> None:
        cm = manager(max_tokens=1000)
        ctx = cm.prepare_context(make_history("hello"), "again", system_prompt="s" * 40)

        assert ctx.messages[0].role == "system"
        assert ctx.messages[0].content == "s" * 40
        assert ctx.stats.total_tokens == 10 + 2 + 2

    def test_system_messages_are_pinned(self) -> None:
        cm = manager(max_tokens=100, min_messages_included=0)
        history = [
            make_message(role="system", content="Be brief."),
            *make_history(*["x" * 200 for _ in range(4)]),
        ]

        ctx = cm.prepare_context(history, "Hi", system_prompt="You are helpful.")

        assert [m.role for m in ctx.messages[:2]] == ["system", "system"]
        assert ctx.messages[1].content == "Be brief."
        assert ctx.stats.messages_included == 2
        assert ctx.stats.messages_excluded == 3

    def test_pinned_system_message_respects_budget(self) -> None:
        cm = manager(max_tokens=10)
        history = [make_message(role="system", content="s" * 400), make_message(content="hi")]

        ctx = cm.prepare_context(history, "x" * 80)

        assert [m.content for m in ctx.messages] == ["x" * 80]
        assert ctx.stats.messages_included == 0
        assert ctx.stats.messages_excluded == 2
        assert ctx.stats.total_tokens == 20

    def test_oversized_system_message_excluded_others_still_fit(self) -> None:
        cm = manager(max_tokens=100)
        history = [make_message(role="system", content="s" * 400), make_message(content="hi")]

        ctx = cm.prepare_context(history, "next")

        assert [m.content for m in ctx.messages] == ["hi", "next"]
        assert ctx.stats.messages_included == 1
        assert ctx.stats.messages_excluded == 1
        assert ctx.stats.total_tokens <= 100

    def test_system_messages_compete_when_not_preserved(self) -> None:
        cm = manager(max_tokens=100, min_messages_included=0, preserve_system_messages=False)
        history = [
            make_message(role="system", content="Be brief."),
            *make_history(*["x" * 200 for _ in range(4)]),
        ]

        ctx = cm.prepare_context(history, "Hi")

        assert all(m.role != "system" for m in ctx.messages)

    def test_attachments_ride_along_uncounted(self) -> None:
        cm = manager(max_tokens=1000)
        attachment = Attachment(name="plot.png", url="https://files.test/plot.png", size=500_000)
        history = [
            make_message(content="see this", attachments=[attachment]),
            make_message(role="assistant", content="nice plot"),
        ]

        ctx = cm.prepare_context(history, "thanks")

        assert ctx.messages[0].attachments == [attachment]
        assert ctx.messages[0].token_count == 2
        assert ctx.payload()[0]["attachments"][0]["name"] == "plot.png"
        assert "attachments" not in ctx.payload()[1]

    def test_recency_flag_off_behaves_like_on(self) -> None:
        history = make_history(*["x" * 200 for _ in range(6)])
        on = manager(max_tokens=120).prepare_context(history, "Hi")
        off = manager(max_tokens=120, prioritize_recent_messages=False).prepare_context(
            history, "Hi"
        )
        assert on.messages == off.messages


    def test_identical_inputs_give_identical_output(self) -> None:
        cm = manager(max_tokens=120, min_messages_included=2, summarize_older_messages=True)
        history = [
            make_message(role="system", content="Be brief."),
            *make_history(*["x" * 150 for _ in range(6)]),
        ]

        first = cm.prepare_context(history, "Hi", system_prompt="You are helpful.")
        second = cm.prepare_context(history, "Hi", system_prompt="You are helpful.")

        assert first.messages == second.messages
        assert first.stats == second.stats

    @pytest.mark.parametrize("max_tokens", [1, 5, 10, 30, 60, 100, 150, 250, 400, 1000])
    @pytest.mark.parametrize("min_included", [0, 1, 4])
    def test_included_plus_excluded_is_filtered_count(self, max_tokens, min_included) -> None:
        cm = manager(max_tokens=max_tokens, min_messages_included=min_included)
        history = [
            make_message(role="system", content="Be brief."),
            *make_history(*[c * (20 + 30 * i) for i, c in enumerate("abcdefg")]),
            make_message(role="assistant", content="", status="error"),
        ]

        ctx = cm.prepare_context(history, "q" * 20)

        filtered = cm.filter_valid_messages(history)
        assert ctx.stats.messages_included + ctx.stats.messages_excluded == len(filtered)
        assert ctx.stats.total_tokens == sum(m.token_count for m in ctx.messages)
        if ctx.stats.messages_included:
            assert ctx.stats.total_tokens <= max_tokens


class TestSummarization:
    def test_summary_inserted_when_it_fits(self) -> None:
        cm = manager(max_tokens=200, min_messages_included=0, summarize_older_messages=True)
        history = make_history(*["x" * 200 for _ in range(5)])

        ctx = cm.prepare_context(history, "Hi")

        summary = ctx.messages[0]
        assert summary.is_summary is True
        assert summary.role == "system"
        assert "2 messages exchanged (1 from user, 1 responses)" in summary.content
        assert ctx.stats.messages_included == 3
        assert ctx.stats.messages_excluded == 2
        assert ctx.stats.messages_summarized == 2
        assert ctx.stats.total_tokens == 151 + summary.token_count
        assert len(ctx.messages) == 5

    def test_summary_omitted_when_it_does_not_fit(self) -> None:
        cm = manager(max_tokens=170, min_messages_included=0, summarize_older_messages=True)
        history = make_history(*["x" * 200 for _ in range(5)])

        ctx = cm.prepare_context(history, "Hi")

        assert not any(m.is_summary for m in ctx.messages)
        assert ctx.stats.messages_summarized == 0
        assert ctx.stats.messages_excluded == 2

    def test_no_summary_without_exclusions(self) -> None:
        cm = manager(max_tokens=1000, summarize_older_messages=True)
        ctx = cm.prepare_context(make_history("a", "b"), "c")
        assert not any(m.is_summary for m in ctx.messages)


class TestTruncate:
    def test_marker_appended(self) -> None:
        cm = manager()
        assert cm.truncate("a" * 1000, 10) == "a" * 20 + TRUNCATION_MARKER

    def test_tiny_budget_keeps_only_marker(self) -> None:
        assert manager().truncate("a" * 1000, 2) == TRUNCATION_MARKER


class TestForModel:
    def test_uses_registry(self) -> None:
        cm = ContextManager.for_model("gpt-4")
        assert cm.model == "gpt-4"
        assert cm.config.max_tokens == 8_192

    def test_unknown_model_uses_defaults(self) -> None:
        cm = ContextManager.for_model("unknown")
        assert cm.config == ContextConfig()


class TestUtilization:
    def test_context_info(self) -> None:
        cm = manager(max_tokens=1000)
        ctx = cm.prepare_context(make_history("x" * 400), "y" * 400)

        info = cm.context_info(ctx.messages)

        assert info.total_tokens == 200
        assert info.utilization == pytest.approx(20.0)
        assert info.remaining_tokens == 800
        assert info.can_fit_more is True

    def test_report_empty_history(self) -> None:
        report = manager().report([])
        assert report.stats is None
        assert report.recommendation == "Ready for conversation"
        assert report.remaining_tokens == 4_000

    @pytest.mark.parametrize(
        ("chars", "recommendation", "near_limit", "suggest_new"),
        [
            (80, "Context window healthy", False, False),
            (240, "Context filling up, consider conversation length", False, False),
            (340, "Context nearly full, older messages may be excluded", True, False),
            (400, "Context window full, consider starting new conversation", True, True),
        ],
    )
    def test_report_thresholds(self, chars, recommendation, near_limit, suggest_new) -> None:
        report = manager(max_tokens=100).report(make_history("x" * chars))

        assert report.recommendation == recommendation
        assert report.is_near_limit is near_limit
        assert report.should_suggest_new_conversation is suggest_new
        assert report.stats is not None
        assert report.remaining_tokens == 100 - chars // 4
