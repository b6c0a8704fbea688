# fedora-setup/fedora_setup/console_output.py

from typing import Any, Optional

from rich.console import Console
from rich.padding import Padding
from rich.panel import Panel
from rich.rule import Rule
from rich.style import Style
from rich.text import Text

# Initialize a global console object
# highlight=False to prevent Rich from trying to auto-highlight based on syntax.
# We use explicit markup for styling.
console = Console(highlight=False)

CRITICAL_STYLE = Style(color="red", bold=True)

# --- Output Functions ---

def print_info(message: Any, icon: bool = True):
    """Prints an informational message using Rich markup."""
    prefix = "[bold blue]ℹ️ INFO:[/] " if icon else ""
    console.print(f"{prefix}{message}")

def print_warning(message: Any, icon: bool = True):
    """Prints a warning message using Rich markup."""
    prefix = "[bold yellow]⚠️ WARNING:[/] " if icon else ""
    console.print(f"{prefix}[yellow]{message}[/]")

def print_error(message: Any, icon: bool = True):
    """Prints an error message using Rich markup."""
    prefix = "[bold red]❌ ERROR:[/] " if icon else ""
    console.print(f"{prefix}[bold red]{message}[/]")

def print_critical(message: Any, icon: bool = True):
    """Prints a critical message. Used for run-level conditions, not step failures."""
    prefix = "[bold white on red] ✗ CRITICAL [/] " if icon else ""
    console.print(f"{prefix}[bold red]{message}[/]")

def print_success(message: Any, icon: bool = True):
    """Prints a success message using Rich markup."""
    prefix = "[bold green]✅ SUCCESS:[/] " if icon else ""
    console.print(f"{prefix}{message}")

def print_step(title: str, char: str = "="):
    """
    Prints a major step title, styled as a Rich Rule.
    Example: print_step("Installing system fonts")
    """
    console.print(Rule(f"[bold magenta]{title}[/]", style="magenta", characters=char))

def print_sub_step(message: str, indent: int = 2):
    """
    Prints a sub-step message, slightly indented, with a leading marker.
    Example: print_sub_step("Downloading FiraCode.zip...")
    """
    console.print(Padding(f"[bright_blue]❯[/] {message}", (0, 0, 0, indent)))

def print_command_output(line: str, indent: int = 4):
    """Echoes one line of streamed tool output, dimmed."""
    console.print(Padding(Text(line, style="dim"), (0, 0, 0, indent)))

def print_panel(
    content: Any,
    title: Optional[str] = None,
    style: str = "blue", # Border style
    padding: tuple = (1, 2)
):
    """
    Prints content within a Rich Panel.
    Content can be simple text or other Rich renderables.
    """
    console.print(
        Panel(
            content,
            title=f"[bold]{title}[/]" if title else None,
            border_style=style,
            padding=padding,
            expand=False
        )
    )

def print_rule(title: Optional[str] = None, style: str = "dim white", char: str = "-"):
    """Prints a horizontal rule, optionally with a title."""
    if title:
        console.print(Rule(Text(title, style=style), style=style, characters=char))
    else:
        console.print(Rule(style=style, characters=char))

def print_reboot_banner(reasons: Optional[list] = None):
    """High-visibility notice shown when the reboot gate halts the run."""
    body = Text(justify="center")
    body.append("⚠️  REBOOT REQUIRED  ⚠️\n\n", style=CRITICAL_STYLE)
    body.append("Critical system packages have been updated.\n")
    body.append("Please reboot your system and run this script again.\n")
    if reasons:
        body.append("\n")
        for reason in reasons:
            body.append(f"• {reason}\n", style="yellow")
    body.append("\nRun: ", style="bold")
    body.append("sudo reboot", style="bold cyan")
    console.line()
    console.print(Panel(body, border_style="bold red", padding=(1, 4), expand=False))
    console.line()
