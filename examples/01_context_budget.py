"""
Example 01: Context Budgeting
=============================

Demonstrates how ContextManager fits a long conversation into a model's
token budget:
- Looking up a model's policy from the registry
- Preparing context for a new prompt
- Forced truncation when the recent-message floor would be missed
- Placeholder summaries for excluded messages
- Utilization reports for display

No network access or API key needed:
    uv run python examples/01_context_budget.py
"""

import sys
from pathlib import Path

# Add project root to path when running directly
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


def main() -> None:
    from parley import ContextConfig, ContextManager, Message

    print("=== Parley Context Budgeting Example ===\n")

    history = [
        Message(
            id=f"msg_{i:03d}",
            role="user" if i % 2 == 0 else "assistant",
            content=f"Turn {i}: " + "lorem ipsum dolor sit amet " * 30,
        )
        for i in range(40)
    ]

    # A registered model: large window, everything fits
    flash = ContextManager.for_model("gemini-1.5-flash")
    ctx = flash.prepare_context(history, "What did we decide?")
    print(f"gemini-1.5-flash: {ctx.stats.messages_included} included, "
          f"{ctx.stats.messages_excluded} excluded, {ctx.stats.total_tokens:,} tokens")

    # gpt-3.5-turbo summarizes what it has to drop
    turbo = ContextManager.for_model("gpt-3.5-turbo")
    ctx = turbo.prepare_context(history, "What did we decide?", system_prompt="Be concise.")
    print(f"gpt-3.5-turbo:    {ctx.stats.messages_included} included, "
          f"{ctx.stats.messages_excluded} excluded, {ctx.stats.messages_summarized} summarized")
    summary = next((m for m in ctx.messages if m.is_summary), None)
    if summary:
        print(f"  Summary: {summary.content}")

    # A tiny budget forces one truncated message in
    tiny = ContextManager(ContextConfig(max_tokens=300, min_messages_included=2))
    ctx = tiny.prepare_context(history, "What did we decide?")
    truncated = [m for m in ctx.messages if not m.is_original]
    print(f"\nTiny budget: {ctx.stats.messages_included} included, "
          f"limit reached: {ctx.stats.has_reached_limit}")
    for m in truncated:
        print(f"  Truncated ({m.token_count} tokens): ...{m.content[-40:]}")

    # Utilization report
    print()
    for name, manager in [("gemini-1.5-flash", flash), ("gpt-3.5-turbo", turbo)]:
        report = manager.report(history)
        print(f"{name}: {report.utilization:.1f}% used, {report.remaining_tokens:,} left")
        print(f"  {report.recommendation}")


if __name__ == "__main__":
    main()
