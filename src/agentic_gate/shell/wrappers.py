"""Shell-wrapper detection.

Recognizes commands that hand an embedded script to another interpreter
(``bash -c``, ``cmd /c``, ``powershell -Command`` ...) and extracts the
script. Scripts that cannot be decomposed safely are marked complex;
the remaining ones are split into sub-commands for recursive
classification.
"""

import base64
import binascii
import re
from dataclasses import dataclass

from agentic_gate.shell.config import GatePolicy
from agentic_gate.shell.models import WrapperAnalysis

_POSIX = "posix"
_CMD = "cmd"
_POWERSHELL = "powershell"


@dataclass(frozen=True)
class WrapperSpec:
    """A known shell interpreter and how it takes a script."""

    wrapper_type: str
    names: frozenset[str]
    style: str


WRAPPERS: tuple[WrapperSpec, ...] = (
    WrapperSpec("bash", frozenset({"bash", "bash.exe"}), _POSIX),
    WrapperSpec("sh", frozenset({"sh", "sh.exe"}), _POSIX),
    WrapperSpec("zsh", frozenset({"zsh"}), _POSIX),
    WrapperSpec("dash", frozenset({"dash"}), _POSIX),
    WrapperSpec("ksh", frozenset({"ksh"}), _POSIX),
    WrapperSpec("fish", frozenset({"fish"}), _POSIX),
    WrapperSpec("cmd", frozenset({"cmd", "cmd.exe"}), _CMD),
    WrapperSpec("powershell", frozenset({"powershell", "powershell.exe"}), _POWERSHELL),
    WrapperSpec("pwsh", frozenset({"pwsh", "pwsh.exe"}), _POWERSHELL),
)

_WRAPPERS_BY_NAME = {name: spec for spec in WRAPPERS for name in spec.names}

# Script constructs that cannot be decomposed by splitting on separators
COMPLEXITY_PATTERNS: list[tuple[str, str]] = [
    (r"\bif\b.*\bthen\b", "if/then block"),
    (r"\bfor\b.*\bdo\b", "for loop"),
    (r"\bwhile\b.*\bdo\b", "while loop"),
    (r"\buntil\b.*\bdo\b", "until loop"),
    (r"\bcase\b.*\bin\b", "case statement"),
    (r"\bfunction\b", "function definition"),
    (r"\w+\s*\(\)\s*\{", "function definition"),
    (r"\$\(", "command substitution"),
    (r"`", "backtick substitution"),
    (r"[<>]\(", "process substitution"),
    (r"\|\|", "boolean or-chain"),
    (r"\beval\b", "eval"),
    (r"\bexec\b", "exec"),
    (r"\bsource\b", "source"),
    (r"(^|[\s;&|])\.\s+\S", "dot-source"),
    (r"<<", "heredoc"),
    (r"\biex\b|\binvoke-expression\b", "PowerShell Invoke-Expression"),
    (r"&\s*\{", "PowerShell script block"),
]

_COMPILED_COMPLEXITY = [
    (re.compile(pattern, re.IGNORECASE), desc) for pattern, desc in COMPLEXITY_PATTERNS
]

_POWERSHELL_COMMAND_FLAGS = frozenset({"c", "command"})
_POWERSHELL_ENCODED_FLAGS = frozenset({"e", "ec", "enc", "encodedcommand"})
_POSIX_OPTIONS_WITH_ARG = frozenset({"-o", "+o", "-O", "+O"})


def program_name(token: str) -> str:
    """Normalize a program token: basename, lowercased."""
    return re.split(r"[\\/]", token)[-1].lower()


def decode_powershell_payload(payload: str) -> str | None:
    """Decode a base64 UTF-16LE EncodedCommand payload, None if invalid."""
    try:
        raw = base64.b64decode(payload, validate=True)
        return raw.decode("utf-16-le")
    except (binascii.Error, ValueError):
        return None


def _split_unquoted(script: str, separator: str) -> list[str]:
    """Split a script on a separator that is outside quotes."""
    parts: list[str] = []
    current: list[str] = []
    in_single = False
    in_double = False
    i = 0
    while i < len(script):
        char = script[i]
        if char == "\\" and not in_single and i + 1 < len(script):
            current.append(script[i : i + 2])
            i += 2
            continue
        if char == "'" and not in_double:
            in_single = not in_single
        elif char == '"' and not in_single:
            in_double = not in_double
        elif not in_single and not in_double and script.startswith(separator, i):
            parts.append("".join(current))
            current = []
            i += len(separator)
            continue
        current.append(char)
        i += 1
    parts.append("".join(current))
    return [p.strip() for p in parts if p.strip()]


class ShellWrapperDetector:
    """Detects shell-in-shell invocations and extracts embedded scripts."""

    def __init__(self, policy: GatePolicy | None = None):
        self._policy = policy or GatePolicy()

    def detect(self, tokens: tuple[str, ...] | list[str]) -> WrapperAnalysis:
        """Analyze a token vector for wrapper indirection.

        Args:
            tokens: Token vector of a single command.

        Returns:
            WrapperAnalysis. ``is_wrapper`` is False for ordinary programs.
        """
        if not tokens:
            return WrapperAnalysis()

        spec = _WRAPPERS_BY_NAME.get(program_name(tokens[0]))
        if spec is None:
            return WrapperAnalysis()

        args = list(tokens[1:])
        if spec.style == _POSIX:
            script = self._posix_script(args)
            encoded = False
        elif spec.style == _CMD:
            script = self._cmd_script(args)
            encoded = False
        else:
            script, encoded = self._powershell_script(args)

        # Interactive shell or script file: nothing to inspect
        if script is None:
            return WrapperAnalysis(is_wrapper=True, wrapper_type=spec.wrapper_type, is_complex=True)

        if encoded:
            return WrapperAnalysis(
                is_wrapper=True,
                wrapper_type=spec.wrapper_type,
                embedded_script=script,
                is_complex=True,
                is_encoded=True,
            )

        if self.is_complex(script):
            return WrapperAnalysis(
                is_wrapper=True,
                wrapper_type=spec.wrapper_type,
                embedded_script=script,
                is_complex=True,
            )

        sub_commands = self.split_simple_script(script)
        if not sub_commands:
            # An empty script does nothing, but there is nothing to vouch for either
            return WrapperAnalysis(
                is_wrapper=True,
                wrapper_type=spec.wrapper_type,
                embedded_script=script,
                is_complex=True,
            )

        return WrapperAnalysis(
            is_wrapper=True,
            wrapper_type=spec.wrapper_type,
            embedded_script=script,
            sub_commands=tuple(sub_commands),
        )

    def is_complex(self, script: str) -> bool:
        """Whether a script contains constructs that defeat simple splitting."""
        if len(script) > self._policy.max_script_length:
            return True
        for pattern, _desc in _COMPILED_COMPLEXITY:
            if pattern.search(script):
                return True
        return self._and_chain_length(script) > self._policy.max_and_chain

    def complexity_reasons(self, script: str) -> list[str]:
        """Descriptions of every complexity pattern found in a script."""
        reasons = [desc for pattern, desc in _COMPILED_COMPLEXITY if pattern.search(script)]
        if self._and_chain_length(script) > self._policy.max_and_chain:
            reasons.append("long && chain")
        if len(script) > self._policy.max_script_length:
            reasons.append("script too long")
        return reasons

    def split_simple_script(self, script: str) -> list[str]:
        """Split a non-complex script into sub-commands.

        Splits on ``;`` first; when there is a single statement, splits it
        on ``&&``.
        """
        statements = _split_unquoted(script, ";")
        if len(statements) > 1:
            return statements
        return _split_unquoted(script, "&&")

    def _and_chain_length(self, script: str) -> int:
        return max(len(_split_unquoted(part, "&&")) for part in _split_unquoted(script, ";") or [""])

    def _posix_script(self, args: list[str]) -> str | None:
        """Find the -c script for POSIX shells (``-c``, ``-lc``, ``-ec`` ...)."""
        i = 0
        while i < len(args):
            arg = args[i]
            if arg == "--":
                return None
            if arg in _POSIX_OPTIONS_WITH_ARG:
                i += 2
                continue
            if arg.startswith("--"):
                i += 1
                continue
            if arg.startswith("-") and len(arg) > 1:
                if "c" in arg[1:]:
                    return args[i + 1] if i + 1 < len(args) else None
                i += 1
                continue
            # First operand is a script file
            return None
        return None

    def _cmd_script(self, args: list[str]) -> str | None:
        """``cmd /c`` and ``cmd /k`` take the rest of the line as the script."""
        for i, arg in enumerate(args):
            if arg.lower() in ("/c", "/k", "/r"):
                rest = args[i + 1 :]
                return " ".join(rest) if rest else None
        return None

    def _powershell_script(self, args: list[str]) -> tuple[str | None, bool]:
        """Find -Command or -EncodedCommand. Returns (script, is_encoded)."""
        for i, arg in enumerate(args):
            if not arg or arg[0] not in "-/":
                continue
            name = arg[1:].lower()
            rest = args[i + 1 :]
            if name in _POWERSHELL_ENCODED_FLAGS or (len(name) >= 3 and "encodedcommand".startswith(name)):
                if not rest:
                    return None, False
                decoded = decode_powershell_payload(rest[0])
                return (decoded if decoded is not None else rest[0]), True
            if name in _POWERSHELL_COMMAND_FLAGS or (len(name) >= 3 and "command".startswith(name)):
                return (" ".join(rest) if rest else None), False
            if name in ("file", "f"):
                return None, False
        return None, False
