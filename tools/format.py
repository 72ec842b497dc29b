"""
Concierge Formatting Helpers

Human-readable byte sizes shared by every workflow.

Usage:
    from tools.format import format_bytes, format_bytes_decimal, format_gb

    format_bytes(1536)            # "1.5 KB"
    format_bytes_decimal(2e12)    # "2.0 TB"
    format_gb(12_300_000_000)     # "12.3Gb"
"""

_UNITS = ["B", "KB", "MB", "GB", "TB", "PB"]


def _format(size: float | int | None, base: int) -> str:
    if not size or size <= 0:
        return "0 B"
    value = float(size)
    idx = 0
    while value >= base and idx < len(_UNITS) - 1:
        value /= base
        idx += 1
    # One decimal from GB up so large libraries don't round aggressively
    if idx >= 3:
        precision = 1
    elif value >= 10 or idx == 0:
        precision = 0
    else:
        precision = 1
    return f"{value:.{precision}f} {_UNITS[idx]}"


def format_bytes(size: float | int | None) -> str:
    """Binary (1024) sizes with the familiar KB/MB/GB labels."""
    return _format(size, 1024)


def format_bytes_decimal(size: float | int | None) -> str:
    """Decimal (1000) sizes, matching how disk vendors report capacity."""
    return _format(size, 1000)


def format_gb(size: float | int | None) -> str:
    """Compact decimal gigabytes: whole numbers when close, else one decimal."""
    if not size or size <= 0:
        return "0Gb"
    gb = size / 1e9
    if abs(gb - round(gb)) < 0.05:
        return f"{round(gb)}Gb"
    return f"{gb:.1f}Gb"
