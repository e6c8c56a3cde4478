"""Helpers for writing user-supplied values into log lines."""

import re

_CONTROL_CHARS = re.compile(r"[\r\n\t]")
_WHITESPACE_RUN = re.compile(r"\s+")


def sanitize_for_log(value) -> str:
    """Neutralise log-forging characters in a user-supplied value.

    CR, LF and TAB become spaces, whitespace runs collapse to one space and
    the result is trimmed.  ``None`` becomes an empty string.
    """
    if value is None:
        return ""
    text = _CONTROL_CHARS.sub(" ", str(value))
    return _WHITESPACE_RUN.sub(" ", text).strip()
