"""Canonical matching keys for record display names.

Matching is exact on the canonical key: surrounding whitespace and letter case
are ignored, nothing else is. There is no fuzzy or edit-distance matching.
"""


def normalize_name(raw: str) -> str:
    """Return the canonical key for ``raw``.

    Args:
        raw: Display name as entered in the record store. Any unicode input is
            accepted.

    Returns:
        ``raw`` with leading/trailing whitespace removed and lowercased.
    """
    return raw.strip().lower()
