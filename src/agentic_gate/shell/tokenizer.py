"""Command tokenizer.

Splits raw command strings into token vectors with a small quote-aware
state machine. Also provides quote-aware helpers used by the classifier:
- Segment splitting on shell control operators (|, ||, &&, ;, &)
- Extraction of command-substitution bodies ($(...) and backticks)

The tokenizer is total: malformed input never raises. An unterminated
quote makes the rest of the string part of the current token.
"""

import re

from agentic_gate.shell.models import ParsedCommand

_WHITESPACE = frozenset(" \t\r\n")
_SEGMENT_OPERATORS = ("&&", "||", "|", ";", "&", "\n")
_DESCRIPTOR = re.compile(r"^(?:\d+-?|-)$")


def _is_descriptor(word: str) -> bool:
    """Whether the word after ``>&`` names a file descriptor rather than a file."""
    return bool(_DESCRIPTOR.match(word))


class CommandTokenizer:
    """Tokenizes shell command strings.

    Rules:
    - Unquoted whitespace separates tokens
    - Single-quoted spans are literal, quotes stripped
    - Double-quoted spans are kept in one token, quotes stripped
    - A backslash outside single quotes escapes the next character
    """

    def tokenize(self, command: str) -> ParsedCommand:
        """Parse a command string into a ParsedCommand.

        Args:
            command: The raw command string.

        Returns:
            ParsedCommand with the token vector (empty for empty input).
        """
        if not command:
            return ParsedCommand(raw=command or "")

        tokens: list[str] = []
        current: list[str] = []
        has_token = False  # Quoted empty strings still produce a token
        in_single = False
        in_double = False
        escaped = False

        for char in command:
            if escaped:
                current.append(char)
                has_token = True
                escaped = False
                continue

            if char == "\\" and not in_single:
                escaped = True
                continue

            if char == "'" and not in_double:
                in_single = not in_single
                has_token = True
                continue

            if char == '"' and not in_single:
                in_double = not in_double
                has_token = True
                continue

            if char in _WHITESPACE and not in_single and not in_double:
                if has_token:
                    tokens.append("".join(current))
                    current = []
                    has_token = False
                continue

            current.append(char)
            has_token = True

        # Dangling escape keeps its backslash
        if escaped:
            current.append("\\")
            has_token = True

        if has_token:
            tokens.append("".join(current))

        return ParsedCommand(raw=command, tokens=tuple(tokens))

    def split_segments(self, command: str) -> list[str]:
        """Split a command on unquoted control operators.

        Separates pipelines and command lists (|, ||, &&, ;, &, newline).
        File-descriptor forms such as ``2>&1`` and ``&>`` are not treated as
        separators. Returns stripped, non-empty segments in order.
        """
        segments: list[str] = []
        current: list[str] = []
        in_single = False
        in_double = False
        escaped = False
        paren_depth = 0
        i = 0

        while i < len(command):
            char = command[i]

            if escaped:
                current.append(char)
                escaped = False
                i += 1
                continue

            if char == "\\" and not in_single:
                escaped = True
                current.append(char)
                i += 1
                continue

            if char == "'" and not in_double:
                in_single = not in_single
            elif char == '"' and not in_single:
                in_double = not in_double

            if in_single or in_double:
                current.append(char)
                i += 1
                continue

            # Track $(...) so separators inside substitutions stay put
            if char == "(":
                paren_depth += 1
            elif char == ")" and paren_depth > 0:
                paren_depth -= 1

            if paren_depth == 0:
                operator = self._operator_at(command, i)
                if operator:
                    segment = "".join(current).strip()
                    if segment:
                        segments.append(segment)
                    current = []
                    i += len(operator)
                    continue

            current.append(char)
            i += 1

        segment = "".join(current).strip()
        if segment:
            segments.append(segment)
        return segments

    def _operator_at(self, command: str, i: int) -> str | None:
        """Return the control operator starting at index i, if any."""
        for operator in _SEGMENT_OPERATORS:
            if not command.startswith(operator, i):
                continue
            if operator == "&":
                prev_char = command[i - 1] if i > 0 else ""
                next_char = command[i + 1] if i + 1 < len(command) else ""
                # 2>&1, >&2, &> are redirections
                if prev_char in "<>" or next_char == ">":
                    return None
            if operator == "|" and i > 0 and command[i - 1] == ">":
                return None  # >| clobber redirect
            return operator
        return None

    def extract_substitutions(self, command: str) -> list[str]:
        """Return bodies of $(...) and backtick substitutions.

        Substitutions inside single quotes are inert and skipped.
        Unterminated substitutions return the remainder of the string.
        """
        bodies: list[str] = []
        in_single = False
        i = 0

        while i < len(command):
            char = command[i]

            if char == "\\" and not in_single:
                i += 2
                continue

            if char == "'":
                in_single = not in_single
                i += 1
                continue

            if in_single:
                i += 1
                continue

            if command.startswith("$(", i) and not command.startswith("$((", i):
                depth = 1
                j = i + 2
                while j < len(command) and depth:
                    if command[j] == "(":
                        depth += 1
                    elif command[j] == ")":
                        depth -= 1
                    j += 1
                end = j - 1 if depth == 0 else j
                bodies.append(command[i + 2 : end].strip())
                i = j
                continue

            if char == "`":
                end = command.find("`", i + 1)
                if end == -1:
                    end = len(command)
                bodies.append(command[i + 1 : end].strip())
                i = end + 1
                continue

            i += 1

        return [body for body in bodies if body]

    def extract_redirections(self, command: str) -> list[tuple[str, bool]]:
        """Return redirection targets as (target, is_output) pairs.

        Recognizes ``>``, ``>>``, ``>|``, ``N>``, ``&>``, ``>&FILE`` and ``<``
        with or without surrounding whitespace. Quoted operators, descriptor
        duplication (``2>&1``, ``>&2``, ``>&-``), heredocs and process
        substitution are skipped.
        """
        targets: list[tuple[str, bool]] = []
        in_single = False
        in_double = False
        escaped = False
        i = 0

        while i < len(command):
            char = command[i]

            if escaped:
                escaped = False
                i += 1
                continue
            if char == "\\" and not in_single:
                escaped = True
                i += 1
                continue
            if char == "'" and not in_double:
                in_single = not in_single
                i += 1
                continue
            if char == '"' and not in_single:
                in_double = not in_double
                i += 1
                continue
            if in_single or in_double or char not in "<>":
                i += 1
                continue

            is_output = char == ">"
            j = i + 1
            if not is_output and j < len(command) and command[j] in "<(":
                # Heredoc, here-string or process substitution
                i = j + 1
                continue
            if is_output and j < len(command) and command[j] in ">|":
                j += 1
            if is_output and j < len(command) and command[j] == "(":
                i = j + 1
                continue

            while j < len(command) and command[j] in " \t":
                j += 1

            if j < len(command) and command[j] == "&":
                # >&N and >&- duplicate or close a descriptor; >&word sends both streams to word
                k = j + 1
                while k < len(command) and command[k] in " \t":
                    k += 1
                word, end = self._read_word(command, k) if k < len(command) else ("", k)
                if is_output and word and not _is_descriptor(word):
                    targets.append((word, True))
                i = max(end, j + 1)
                continue
            if j >= len(command):
                i = j + 1
                continue

            target, j = self._read_word(command, j)
            if target:
                targets.append((target, is_output))
            i = max(j, i + 1)

        return list(dict.fromkeys(targets))

    def _read_word(self, command: str, start: int) -> tuple[str, int]:
        """Read one shell word starting at start. Returns (word, end index)."""
        word: list[str] = []
        j = start
        quote = command[j] if command[j] in "'\"" else None
        if quote:
            j += 1
            while j < len(command) and command[j] != quote:
                word.append(command[j])
                j += 1
            return "".join(word), j + 1

        while j < len(command) and command[j] not in " \t\r\n;|&<>()":
            if command[j] == "\\" and j + 1 < len(command):
                j += 1
            word.append(command[j])
            j += 1
        return "".join(word), j


# Programs that run their arguments as a command, with their value-taking options
PREFIX_PROGRAMS: dict[str, frozenset[str]] = {
    "env": frozenset({"-u", "--unset", "-C", "--chdir", "-S", "--split-string"}),
    "nohup": frozenset(),
    "time": frozenset({"-o", "-f", "--output", "--format"}),
    "nice": frozenset({"-n", "--adjustment"}),
    "ionice": frozenset({"-c", "-n", "-p", "--class", "--classdata"}),
    "timeout": frozenset({"-s", "-k", "--signal", "--kill-after"}),
    "xargs": frozenset({"-I", "-L", "-n", "-P", "-s", "-d", "-E", "-a"}),
    "stdbuf": frozenset({"-i", "-o", "-e"}),
    "command": frozenset(),
    "exec": frozenset({"-a"}),
    "builtin": frozenset(),
}

_ASSIGNMENT = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*=")
_DURATION = re.compile(r"^\d+(\.\d+)?[smhd]?$")


def effective_tokens(tokens: tuple[str, ...]) -> tuple[str, ...]:
    """Strip leading ``NAME=value`` assignments and prefix programs.

    ``env FOO=1 nice -n 5 make`` becomes ``make``. Options of the prefix
    programs are skipped, as is the duration operand of ``timeout``. When
    nothing follows a prefix program, the prefix program itself is kept.
    """
    i = 0
    last_prefix = None
    while i < len(tokens):
        token = tokens[i]
        if _ASSIGNMENT.match(token):
            i += 1
            continue
        name = token.rsplit("/", 1)[-1].lower()
        value_options = PREFIX_PROGRAMS.get(name)
        if value_options is None:
            break
        last_prefix = i
        i += 1
        while i < len(tokens) and tokens[i].startswith("-"):
            option = tokens[i]
            i += 1
            if option in value_options and i < len(tokens):
                i += 1
        if name == "timeout" and i < len(tokens) and _DURATION.match(tokens[i]):
            i += 1

    if i >= len(tokens) and last_prefix is not None:
        return tuple(tokens[last_prefix:])
    return tuple(tokens[i:])


_default_tokenizer = CommandTokenizer()


def tokenize(command: str) -> ParsedCommand:
    """Tokenize a command with the shared default tokenizer."""
    return _default_tokenizer.tokenize(command)
