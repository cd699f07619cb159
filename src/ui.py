"""
UI components and display helpers using Rich.

Handles all terminal output for the diary: message lines per speaker, the
welcome panel, and the input prompts.
"""

from typing import Iterable, Optional

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.style import Style
from rich.text import Text
from rich.theme import Theme

from flows import CLEAR, MOTHER, SYSTEM, Message

# Cyberpunk color scheme
CYBER_THEME = Theme({
    "cyan": "#00D9FF",
    "magenta": "#FF10F0",
    "neon_green": "#39FF14",
    "dim_cyan": "dim #00D9FF",
    "bright_white": "bright_white",
})

console = Console(theme=CYBER_THEME)

# Styles
STYLE_MOTHER = Style(color="#39FF14")
STYLE_SYSTEM = Style(color="#00D9FF", dim=True)
STYLE_USER = Style(color="bright_white")
STYLE_SUCCESS = Style(color="#39FF14")
STYLE_ERROR = Style(color="#FF10F0", bold=True)

SPEAKER_STYLES = {
    MOTHER: "bold #39FF14",
    SYSTEM: "bold #00D9FF",
}


def _text_style(message: Message) -> Style:
    if message.speaker == MOTHER:
        return STYLE_MOTHER
    if message.speaker == SYSTEM:
        if message.text.startswith("Error") or message.text.startswith("Unknown command"):
            return STYLE_ERROR
        return STYLE_SYSTEM
    return STYLE_USER


def display_message(message: Message):
    """Render one message as 'speaker > text'; a clear message wipes the screen."""
    if message.kind == CLEAR:
        console.clear()
        return
    line = Text()
    line.append(message.speaker, style=SPEAKER_STYLES.get(message.speaker, "bold #FF10F0"))
    line.append(" > ", style="dim white")
    line.append(message.text, style=_text_style(message))
    console.print(line)


def display_messages(messages: Iterable[Message], skip_echo: Optional[str] = None):
    """Render messages in order. skip_echo drops the user's own line, already on screen."""
    for message in messages:
        if skip_echo and message.speaker == skip_echo:
            continue
        display_message(message)


def display_welcome(username: str):
    """Display welcome message with cyberpunk styling."""
    title = Text()
    title.append("MiD // MY DIARY", style="bold #00D9FF")

    subtitle = Text()
    subtitle.append(f"Signed in as {username}. Type ", style="dim white")
    subtitle.append("help", style="#39FF14")
    subtitle.append(" for commands, ", style="dim white")
    subtitle.append("quit", style="#FF10F0")
    subtitle.append(" to exit", style="dim white")

    panel = Panel(
        Text.assemble(title, "\n", subtitle),
        border_style="#00D9FF",
        padding=(0, 2),
    )
    console.print(panel)
    console.print()


def display_error(text: str):
    console.print(text, style=STYLE_ERROR)


def display_success(text: str):
    console.print(text, style=STYLE_SUCCESS)


def get_user_input(username: str) -> str:
    """Get user input with styled prompt. Returns 'quit' on Ctrl+C/Ctrl+D."""
    prompt = Text()
    prompt.append(username, style="bold bright_white")
    prompt.append(" > ", style="bold #00D9FF")
    console.print(prompt, end="")
    try:
        return input().strip()
    except (KeyboardInterrupt, EOFError):
        console.print()
        return "quit"


def ask_image_path() -> str:
    """Ask for the image file to upload. Empty answer (or Ctrl+C) means cancel."""
    try:
        return Prompt.ask("[bold #00D9FF]Image file[/bold #00D9FF] (empty to cancel)", default="").strip()
    except (KeyboardInterrupt, EOFError):
        console.print()
        return ""
