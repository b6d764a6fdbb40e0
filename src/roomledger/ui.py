"""Interactive pickers for the command line."""

import logging
from typing import Any

from prompt_toolkit import PromptSession
from prompt_toolkit.completion import Completer, Completion
from prompt_toolkit.document import Document

from .models import User

logger = logging.getLogger(__name__)


def fuzzy_match(query: str, text: str) -> bool:
    """
    Fuzzy match: all characters in query must appear in order in text.

    Example:
        query="jd" matches "Jane Doe (jane)"
        query="bb" matches "Bob (bob)"
    """
    query_idx = 0
    for char in text:
        if query_idx < len(query) and char == query[query_idx]:
            query_idx += 1
    return query_idx == len(query)


class ChoiceCompleter(Completer):
    """Fuzzy search completer over labelled choices."""

    def __init__(self, choices: dict[str, str]):
        """
        Initialize the completer.

        Args:
            choices: Mapping of display label to the value it selects
        """
        self.choices = choices

    def get_completions(self, document: Document, complete_event: Any):
        """Get fuzzy-matched completions."""
        query = document.text.lower()
        for label in self.choices:
            if not query or fuzzy_match(query, label.lower()):
                yield Completion(
                    text=label,
                    start_position=-len(document.text),
                    display=label,
                )

    def resolve(self, text: str) -> str | None:
        """Map a typed label (or a raw value) back to its value."""
        if text in self.choices:
            return self.choices[text]
        if text in self.choices.values():
            return text
        return None


def _pick(
    completer: ChoiceCompleter, prompt: str, default: str = ""
) -> str | None:
    session: PromptSession[str] = PromptSession(completer=completer)
    try:
        while True:
            result = session.prompt(
                prompt, default=default, complete_while_typing=True
            )
            if not result:
                return None

            value = completer.resolve(result)
            if value is not None:
                logger.debug(f"Picked {value!r}")
                return value

            print("❌ Not a valid choice. Press Tab to see options.")
            default = ""
    except KeyboardInterrupt:
        print("\n⏭️  Cancelled")
        return None
    except EOFError:
        return None


def user_label(user: User) -> str:
    return f"{user.name} ({user.id})"


def select_user_interactive(users: list[User], prompt: str = "User: ") -> str | None:
    """
    Ask for a user with fuzzy search over names and ids.

    Returns:
        Selected user id, or None if cancelled
    """
    completer = ChoiceCompleter({user_label(u): u.id for u in users})
    print("   Type to search, press Enter to confirm, Ctrl+C to cancel\n")
    return _pick(completer, prompt)

