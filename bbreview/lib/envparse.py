"""
Reader for the service's .env file.

Only plain KEY=value assignments are understood; nothing is ever handed to
a shell. Client secrets and tokens read here end up in Authorization headers
and on the engine's command line, so a value that would mean something to a
shell (substitution, expansion, chaining, pipes) is refused outright rather
than passed through literally.
"""

import re
from pathlib import Path
from typing import Optional, Union

# Shell constructs refused in values, with the name reported in errors
_SHELL_CONSTRUCTS = re.compile(
    r'(?P<backtick>`)'
    r'|(?P<substitution>\$\()'
    r'|(?P<expansion>\$\{)'
    r'|(?P<chaining>;|&&|\|\|)'
    r'|(?P<pipe>\|)'
)

_KEY = re.compile(r'^[A-Z][A-Z0-9_]*$')

_EXPORT = "export "
_QUOTES = ('"', "'")


class EnvFileError(ValueError):
    """A line of the env file could not be accepted."""

    def __init__(self, lineno: int, message: str):
        self.lineno = lineno
        super().__init__(f"Line {lineno}: {message}")


def _unquote(value: str) -> str:
    """Drop matching surrounding quotes, or an inline " #" comment if unquoted."""
    if len(value) >= 2 and value[0] == value[-1] and value[0] in _QUOTES:
        return value[1:-1]
    comment = value.find(" #")
    if comment != -1:
        value = value[:comment].rstrip()
    return value


def _parse_line(lineno: int, line: str) -> Optional[tuple[str, str]]:
    line = line.strip()
    if not line or line.startswith("#"):
        return None

    if line.startswith(_EXPORT):
        line = line[len(_EXPORT):].lstrip()

    key, sep, value = line.partition("=")
    if not sep:
        raise EnvFileError(lineno, "Invalid syntax (expected KEY=value)")

    key = key.strip()
    if not _KEY.match(key):
        raise EnvFileError(lineno, f"Invalid key '{key}'")

    value = _unquote(value.strip())
    match = _SHELL_CONSTRUCTS.search(value)
    if match:
        raise EnvFileError(lineno, f"Forbidden pattern ({match.lastgroup}) in value of {key}")

    return key, value


def parse_env(text: str) -> dict[str, str]:
    """Parse env file content into a dict; later assignments win.

    Raises:
        EnvFileError: On the first line that isn't a valid assignment or
            whose value contains a shell construct.
    """
    env = {}
    for lineno, line in enumerate(text.splitlines(), 1):
        pair = _parse_line(lineno, line)
        if pair is not None:
            key, value = pair
            env[key] = value
    return env


def load_env(path: Union[str, Path]) -> dict[str, str]:
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Env file not found: {path}")
    return parse_env(path.read_text(encoding="utf-8"))
