"""
Interactive review channel and navigation.

Review steps block on one of four commands:

    next      accept and advance
    previous  step back one item
    run       finish the remaining items without asking
    quit      stop now; results gathered so far are kept

`Navigator` is the state machine walking an ordered list of items with
those commands; the items are (group, line) pairs during the prior update
and spectra during dispersion review.
"""

from enum import Enum
from typing import Callable, Optional


class Command(Enum):
    NEXT = 'next'
    PREVIOUS = 'previous'
    RUN = 'run'
    QUIT = 'quit'


_ALIASES = {
    'n': Command.NEXT, 'next': Command.NEXT,
    'p': Command.PREVIOUS, 'previous': Command.PREVIOUS, 'prev': Command.PREVIOUS,
    'r': Command.RUN, 'run': Command.RUN,
    'q': Command.QUIT, 'quit': Command.QUIT,
}

PROMPT = "[n]ext, [p]revious, [r]un without asking, [q]uit: "


def parse_command(text) -> Optional[Command]:
    """Map user input to a Command, or None if it is not in the vocabulary."""
    if text is None:
        return None
    return _ALIASES.get(str(text).strip().lower())


def prompt_command(input_fn: Callable[[str], str] = input, prompt: str = PROMPT) -> Command:
    """Ask until the answer is one of the four commands."""
    while True:
        cmd = parse_command(input_fn(prompt))
        if cmd is not None:
            return cmd
        print("  Unrecognized command. Use next, previous, run or quit.")


def console_reviewer(input_fn: Callable[[str], str] = input):
    """Reviewer callable that prints the item description and prompts."""
    def review(description: str) -> Command:
        print(description)
        return prompt_command(input_fn)
    return review


class Navigator:
    """
    Position over `n_items` ordered items driven by review commands.

    `position` is the current item; `done` becomes True after advancing past
    the last item or on quit. After `run` every later call to `step` acts as
    `next` without asking.
    """

    def __init__(self, n_items: int, interactive: bool = True):
        self.n_items = n_items
        self.position = 0
        self.interactive = interactive
        self.quit = False

    @property
    def done(self) -> bool:
        return self.quit or self.position >= self.n_items

    def step(self, command: Command) -> int:
        """Apply a command; returns the new position."""
        if command is Command.QUIT:
            self.quit = True
        elif command is Command.PREVIOUS:
            self.position = max(0, self.position - 1)
        elif command is Command.RUN:
            self.interactive = False
            self.position += 1
        else:
            self.position += 1
        return self.position

    def ask(self, reviewer, description: str) -> Command:
        """Get the next command: from the reviewer when interactive, else NEXT."""
        if not self.interactive or reviewer is None:
            return Command.NEXT
        return reviewer(description)
