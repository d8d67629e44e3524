"""Interactive prompts for the expense CLI."""

import logging
from typing import Any

from prompt_toolkit import PromptSession
from prompt_toolkit.completion import Completer, Completion
from prompt_toolkit.document import Document

from .models import ExpenseRecord

logger = logging.getLogger(__name__)


class MemberCompleter(Completer):
    """Fuzzy search completer for trip members."""

    def __init__(self, members: list[str]):
        """Initialize the completer with the trip's members."""
        self.members = members

    def get_completions(self, document: Document, complete_event: Any):
        """Get fuzzy-matched completions."""
        query = document.text.lower()

        for name in self.members:
            if not query or fuzzy_match(query, name.lower()):
                yield Completion(
                    text=name,
                    start_position=-len(document.text),
                    display=name,
                )


def fuzzy_match(query: str, text: str) -> bool:
    """
    Fuzzy match: all characters in query must appear in order in text.

    Example:
        query="isb" matches "isabelle"
    """
    query_idx = 0
    for char in text:
        if query_idx < len(query) and char == query[query_idx]:
            query_idx += 1
    return query_idx == len(query)


def select_member_interactive(members: list[str], default: str = "") -> str | None:
    """
    Interactive payer selection with fuzzy search.

    Args:
        members: Trip members to choose from
        default: Pre-filled name (e.g. the current payer when editing)

    Returns:
        Selected member name, or None if the user skipped
    """
    print("\nWho paid? Type to search, press Enter to confirm, Ctrl+C to skip\n")

    session: PromptSession[str] = PromptSession(completer=MemberCompleter(members))

    try:
        default_text = default
        while True:
            result = session.prompt(
                "Payer: ",
                default=default_text,
                complete_while_typing=True,
            ).strip()

            if not result:
                return None

            if result in members:
                logger.debug(f"User selected payer: {result}")
                return result

            print("Not a trip member. Pick a name from the list or press Tab.")
            default_text = ""

    except (KeyboardInterrupt, EOFError):
        print("\nSkipped")
        return None


def confirm_removal(record: ExpenseRecord) -> bool:
    """Yes/no confirmation before an expense is deleted."""
    print(f"\n{record.title}: {record.amount} {record.currency}")
    print(f"   Paid by {record.payer}, split {record.split_count} ways")

    try:
        response = input("   Delete this expense? [y/N] ").strip().lower()
    except (KeyboardInterrupt, EOFError):
        return False

    return response in ("y", "yes")
