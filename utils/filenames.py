import re

MAX_FILENAME_LENGTH = 100

_INVALID_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1F\x7F]+')


def sanitize_filename(name: str, max_length: int = MAX_FILENAME_LENGTH) -> str:
    """Replace characters that are illegal in file names and bound the length.

    Runs of illegal characters collapse into a single underscore and leading or
    trailing separators are dropped. An empty result becomes "untitled".
    """
    parts = [part for part in _INVALID_FILENAME_CHARS.split(name or "") if part]
    # cut before stripping so the result never ends in a space or dot
    sanitized = "_".join(parts)[:max_length].strip(" .")
    return sanitized or "untitled"
