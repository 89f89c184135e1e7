"""Progress display for reconcile and copy passes."""

import shutil
import sys

from tqdm import tqdm


def _truncate_middle(text: str, max_width: int) -> str:
    """Shorten text to max_width, keeping head and tail around '...'."""
    if max_width <= 0 or len(text) <= max_width:
        return text
    if max_width <= 3:
        return text[:max_width]
    head = max_width // 2 - 1
    tail = max_width - head - 3
    return f"{text[:head]}...{text[-tail:]}"


def _terminal_width() -> int:
    try:
        return shutil.get_terminal_size((120, 20)).columns
    except Exception:
        return 120


class PassProgress:
    """tqdm bar driven by the engines' progress callbacks.

    Example:
        with PassProgress("🔗 Linking", unit="entries") as progress:
            reconcile(snap, live, progress_callback=progress)
    """

    def __init__(self, prefix: str, unit: str = "entries", enabled: bool = None):
        """
        Args:
            prefix: Label shown before the bar
            unit: Unit name
            enabled: Force enable/disable. If None, auto-detects TTY.
        """
        if enabled is None:
            enabled = sys.stdout.isatty()
        self.enabled = enabled
        self.prefix = prefix
        self.unit = unit
        self.bar = None

    def __call__(self, processed: int, total: int, outcome) -> None:
        if not self.enabled:
            return
        if self.bar is None:
            self.bar = tqdm(total=total, desc=self.prefix, unit=self.unit, file=sys.stdout, leave=False)
        self.bar.set_postfix_str(
            _truncate_middle(f"{outcome.reason.value} {outcome.path}", _terminal_width() // 2),
            refresh=False,
        )
        self.bar.update(processed - self.bar.n)

    def close(self) -> None:
        if self.bar is not None:
            self.bar.close()
            self.bar = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
