"""Escaping for free text carried in comma-separated, single-line records.

``$`` is the escape character: ``$`` becomes ``$$``, ``,`` becomes ``$k``,
a newline becomes ``$n`` and a carriage return becomes ``$r``.
"""

from ..errors import FormatError

_ENCODE = {"$": "$$", ",": "$k", "\n": "$n", "\r": "$r"}
_DECODE = {"$": "$", "k": ",", "n": "\n", "r": "\r"}


def encode(text: str) -> str:
    """Escape ``text`` so it contains no commas or line breaks."""
    if not any(c in text for c in _ENCODE):
        return text
    return "".join(_ENCODE.get(c, c) for c in text)


def decode(text: str) -> str:
    """Reverse ``encode``.

    Raises:
        FormatError: On an unknown escape or a trailing ``$``.
    """
    if "$" not in text:
        return text
    result = []
    chars = iter(text)
    for c in chars:
        if c != "$":
            result.append(c)
            continue
        escaped = next(chars, None)
        if escaped is None:
            raise FormatError(f"Unexpected end of input after '$' in {text!r}")
        try:
            result.append(_DECODE[escaped])
        except KeyError:
            raise FormatError(f"Unknown escape sequence '${escaped}' in {text!r}") from None
    return "".join(result)
