"""
Token symbol normalization.
Folds Cyrillic/Greek look-alike characters onto Latin so spoofed symbols
(e.g. Cyrillic "Т" + "ETH") match the real ones.
"""
from typing import Dict

_HOMOGLYPHS: Dict[str, str] = {
    "C": "СсĆćĈĉĊċČč",
    "E": "ÈÉÊËĒĔĖĘĚèéêëēĕėęěЕеЁё",
    "T": "ТтΤτ",
    "A": "АаΑα",
    "H": "ΗНн",
    "P": "РрΡρ",
    "O": "ОоΟο",
    "X": "ХхΧχ",
    "M": "МмΜμ",
    "B": "ВвΒβ",
    "K": "КкΚκ",
    "R": "Яя",
}

_FOLD_TABLE = str.maketrans(
    {glyph: latin for latin, glyphs in _HOMOGLYPHS.items() for glyph in glyphs}
)


def normalize_symbol(symbol: str) -> str:
    """
    Fold homoglyphs, upper-case and trim a token symbol.

    Args:
        symbol: Raw symbol as reported by a provider

    Returns:
        Canonical symbol used for set lookups

    Example:
        >>> normalize_symbol("ТEST") == normalize_symbol("test")
        True
    """
    if not symbol:
        return ""
    return symbol.strip().translate(_FOLD_TABLE).upper()
