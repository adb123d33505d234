"""
Styled terminal output for the framefuse CLI.

Colored status lines (colorama), frame-loop progress bars (tqdm) and a
small stage tracker for the alignment command.
"""

from __future__ import annotations

import os
import sys
import time
from dataclasses import dataclass

from colorama import Fore, Style, init as colorama_init
from tqdm import tqdm

from .utils import format_duration

colorama_init(autoreset=True)


class Colors:
    """Color constants for consistent styling."""

    HEADER = Fore.CYAN + Style.BRIGHT
    STAGE = Fore.BLUE + Style.BRIGHT

    SUCCESS = Fore.GREEN + Style.BRIGHT
    WARNING = Fore.YELLOW
    ERROR = Fore.RED + Style.BRIGHT
    INFO = Fore.WHITE

    VALUE = Fore.YELLOW + Style.BRIGHT
    PATH = Fore.CYAN
    PROGRESS = Fore.GREEN

    RESET = Style.RESET_ALL


class Symbols:
    """Status symbols, with ASCII fallbacks for limited terminals."""

    CHECK = "✔"
    CROSS = "✘"
    ARROW = "→"
    BULLET = "•"
    WARN = "⚠"

    @classmethod
    def use_ascii(cls) -> None:
        cls.CHECK = "[OK]"
        cls.CROSS = "[X]"
        cls.ARROW = "->"
        cls.BULLET = "*"
        cls.WARN = "!"


def print_header(text: str, width: int = 60) -> None:
    """Print a section header between two rules."""
    rule = "=" * width
    print(f"\n{Colors.HEADER}{rule}\n  {text}\n{rule}{Colors.RESET}")


def print_success(text: str) -> None:
    print(f"{Colors.SUCCESS}{Symbols.CHECK} {text}{Colors.RESET}")


def print_warning(text: str) -> None:
    print(f"{Colors.WARNING}{Symbols.WARN} {text}{Colors.RESET}")


def print_error(text: str) -> None:
    print(f"{Colors.ERROR}{Symbols.CROSS} {text}{Colors.RESET}", file=sys.stderr)


def print_metric(name: str, value: str | int | float, unit: str = "") -> None:
    """Print ``name: value unit`` with the value highlighted."""
    if isinstance(value, float):
        value = f"{value:.3f}"
    suffix = f" {unit}" if unit else ""
    print(f"   {Colors.INFO}{name}: {Colors.VALUE}{value}{suffix}{Colors.RESET}")


def print_path(label: str, path: str) -> None:
    print(f"   {Colors.INFO}{label}: {Colors.PATH}{path}{Colors.RESET}")


@dataclass
class ProgressConfig:
    """Configuration for progress bars."""

    bar_format: str = "{l_bar}{bar}| {n_fmt}/{total_fmt} [{elapsed}<{remaining}]"
    ncols: int = 80
    colour: str = "green"
    leave: bool = True


def create_progress_bar(
    total: int,
    desc: str,
    unit: str = "frame",
    config: ProgressConfig | None = None,
    disable: bool = False,
) -> tqdm:
    """
    Create a styled progress bar.

    Parameters
    ----------
    total : int
        Number of items.
    desc : str
        Description shown left of the bar.
    unit : str, default "frame"
        Item unit name.
    config : ProgressConfig, optional
        Bar styling.
    disable : bool, default False
        Return a silent bar (used by ``--quiet`` and by library calls).

    Returns
    -------
    tqdm
    """
    if config is None:
        config = ProgressConfig()

    return tqdm(
        total=total,
        desc=f"{Colors.PROGRESS}{desc}{Colors.RESET}",
        unit=unit,
        bar_format=config.bar_format,
        ncols=config.ncols,
        colour=config.colour,
        leave=config.leave,
        disable=disable,
    )


class PipelineProgress:
    """
    Print numbered stages with their durations.

    Example
    -------
    >>> progress = PipelineProgress(total_stages=3)
    >>> progress.start_stage(1, "Block matching")
    >>> progress.complete_stage("4 levels")
    """

    def __init__(self, total_stages: int, quiet: bool = False):
        self.total_stages = total_stages
        self.quiet = quiet
        self.current_stage = 0
        self._stage_start: float | None = None

    def start_stage(self, stage_num: int, name: str) -> None:
        self.current_stage = stage_num
        self._stage_start = time.perf_counter()
        if self.quiet:
            return
        print(f"\n{Colors.STAGE}{Symbols.ARROW} Stage {stage_num}/{self.total_stages}: {name}{Colors.RESET}")

    def update_detail(self, text: str) -> None:
        if self.quiet:
            return
        print(f"   {Colors.INFO}{text}{Colors.RESET}")

    def complete_stage(self, message: str = "Complete") -> None:
        if self.quiet:
            return
        elapsed = ""
        if self._stage_start is not None:
            elapsed = f" ({format_duration(time.perf_counter() - self._stage_start)})"
        print(f"   {Colors.SUCCESS}{Symbols.CHECK} {message}{elapsed}{Colors.RESET}")

    def fail_stage(self, message: str) -> None:
        if self.quiet:
            return
        print(f"   {Colors.ERROR}{Symbols.CROSS} {message}{Colors.RESET}")


def setup_terminal() -> None:
    """Fall back to ASCII symbols on terminals without UTF-8 output."""
    encoding = (getattr(sys.stdout, "encoding", None) or "").lower()
    if os.environ.get("TERM") == "dumb" or "utf" not in encoding:
        Symbols.use_ascii()
