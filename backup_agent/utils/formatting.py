"""Human-readable formatting helpers."""

_IEC_UNITS = ('KiB', 'MiB', 'GiB', 'TiB', 'PiB')


def human_size(size_bytes: int) -> str:
    """
    Format a byte count with IEC binary prefixes.

    Examples: 512 -> '512 B', 1024 -> '1.0 KiB', 1572864 -> '1.5 MiB'
    """
    if size_bytes < 1024:
        return f"{size_bytes} B"

    value = float(size_bytes)
    unit = _IEC_UNITS[0]
    for unit in _IEC_UNITS:
        value /= 1024
        # Compare the displayed value, not the raw one
        if round(value, 1) < 1024:
            break

    return f"{value:.1f} {unit}"
