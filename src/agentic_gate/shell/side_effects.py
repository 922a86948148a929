"""Side-effect extraction.

Derives candidate filesystem paths (with read/write intent), network
domains and ports from a command without running it. Extraction
over-reports: a path whose intent is unclear is reported as a write,
and package-manager invocations imply their public registry domains.
"""

import os
import re

from agentic_gate.shell.classifier import FIND_WRITE_ACTIONS, OUTPUT_SINKS, READ_ONLY_COMMANDS, normalize_program
from agentic_gate.shell.config import GatePolicy
from agentic_gate.shell.models import PathEffect, PathOperation, SideEffects
from agentic_gate.shell.tokenizer import CommandTokenizer, effective_tokens
from agentic_gate.shell.wrappers import ShellWrapperDetector

ALL = "all"
LAST = "last"

# Operand positions (flags excluded) that a program writes to
WRITE_POSITIONS: dict[str, str | tuple[int, ...]] = {
    "cp": LAST,
    "mv": ALL,
    "ln": LAST,
    "install": LAST,
    "rsync": LAST,
    "scp": LAST,
    "touch": ALL,
    "mkdir": ALL,
    "md": ALL,
    "rm": ALL,
    "rmdir": ALL,
    "rd": ALL,
    "del": ALL,
    "erase": ALL,
    "unlink": ALL,
    "tee": ALL,
    "truncate": ALL,
    "shred": ALL,
    "chmod": ALL,
    "chown": ALL,
    "chgrp": ALL,
    "zip": (0,),
    "copy": LAST,
    "move": ALL,
    "ren": ALL,
    "rename": ALL,
    "new-item": ALL,
    "remove-item": ALL,
    "set-content": ALL,
    "add-content": ALL,
    "out-file": ALL,
}

# Operand positions that a program only reads
READ_POSITIONS: dict[str, str | tuple[int, ...]] = {
    "cat": ALL,
    "head": ALL,
    "tail": ALL,
    "less": ALL,
    "more": ALL,
    "grep": ALL,
    "find": (0,),
    "ls": ALL,
    "dir": ALL,
    "type": ALL,
    "wc": ALL,
    "diff": ALL,
}

# Programs whose first operand is a pattern or program text, not a path
PATTERN_FIRST: frozenset[str] = frozenset({"grep", "egrep", "fgrep", "rg", "ag", "sed", "awk", "findstr", "jq"})

# Programs whose /x tokens are flags
WINDOWS_FLAG_PROGRAMS: frozenset[str] = frozenset({
    "findstr", "xcopy", "robocopy", "dir", "del", "erase", "copy", "move",
    "rd", "rmdir", "md", "attrib", "icacls", "type", "cmd", "where", "find",
})

WINDOWS_FLAG_PATTERNS = [
    re.compile(r"^/[a-zA-Z]$"),
    re.compile(r"^/[0-9]+$"),
    re.compile(r"^/(?:all|help|version|quiet|verbose|force|recursive)$", re.IGNORECASE),
    re.compile(r"^/(?:offline|exclude|copy|move|purge)(?::.*)?$", re.IGNORECASE),
    re.compile(r"^/[a-zA-Z]:.*$"),  # /a:h, /o:n
]

# Flags whose value is an output file, for programs that produce files
OUTPUT_FLAG_PROGRAMS: frozenset[str] = frozenset({
    "curl", "wget", "gcc", "g++", "cc", "clang", "clang++", "go", "sort",
    "pandoc", "rustc", "javac", "time",
})
_SHORT_OUTPUT_FLAGS = frozenset({"-o", "-O", "-d"})
_LONG_OUTPUT_FLAGS = frozenset({
    "--output", "--output-document", "--outfile", "--out-file", "--outdir",
    "--out-dir", "--output-dir", "--target-directory",
})

URL_PATTERN = re.compile(r"\b(?:https?|ftp|wss?|ssh|git|sftp)://(?:[^@/\s'\"]+@)?([a-zA-Z0-9.-]+)", re.IGNORECASE)
SCP_REMOTE_PATTERN = re.compile(r"(?:^|[\s'\"])[\w.-]+@([a-zA-Z0-9-]+(?:\.[a-zA-Z0-9-]+)+):")
BARE_HOST_PATTERN = re.compile(r"^([a-zA-Z0-9-]+(?:\.[a-zA-Z0-9-]+)*\.[a-zA-Z]{2,})(?::\d+)?(?:/.*)?$")
NETWORK_PROGRAMS: frozenset[str] = frozenset({
    "curl", "wget", "http", "https", "ping", "ssh", "scp", "sftp", "ftp",
    "nc", "ncat", "telnet", "nslookup", "dig", "host", "traceroute",
})
# Options of network programs whose value is a file or payload, not a host
_NETWORK_FILE_OPTIONS = frozenset({
    "-o", "-O", "--output", "--output-document", "-T", "--upload-file", "-d",
    "--data", "-F", "--form", "-H", "--header", "-K", "--config", "-b",
    "--cookie", "-c", "--cookie-jar", "-i", "-l", "-P",
})

PORT_PATTERNS = [
    re.compile(r"(?<![\w-])-p\s*(\d+)", re.IGNORECASE),
    re.compile(r"--port[=\s]+(\d+)", re.IGNORECASE),
    re.compile(r":(\d{2,5})(?=\s|$|/)"),
    re.compile(r"\bPORT[=:]\s*(\d+)", re.IGNORECASE),
]

_WINDOWS_ABSOLUTE = re.compile(r"^[A-Za-z]:[\\/]")
_FILE_EXTENSION = re.compile(r"\.[A-Za-z0-9]{1,6}$")
_REDIRECT_TOKEN = re.compile(r"^(?:\d|&)?>(?:>|&|\|)?$")

# Programs that change the shell's working directory
DIRECTORY_CHANGE_COMMANDS: frozenset[str] = frozenset({
    "cd", "chdir", "pushd", "popd", "set-location", "sl", "push-location", "pop-location",
})
# A directory only known at run time; paths under it never resolve
UNKNOWN_DIRECTORY = "$(pwd)"


def is_windows_flag(token: str, program: str | None = None) -> bool:
    """Whether a token is a Windows-style flag rather than an absolute path."""
    if any(pattern.match(token) for pattern in WINDOWS_FLAG_PATTERNS):
        return True
    if program and program in WINDOWS_FLAG_PROGRAMS:
        return bool(re.match(r"^/[a-zA-Z?][\w:]*$", token))
    return False


def is_likely_path(token: str, program: str | None = None) -> bool:
    """Heuristic: does a token look like a filesystem path?"""
    if not token or is_windows_flag(token, program):
        return False
    if "<" in token or ">" in token:
        return False
    if URL_PATTERN.search(token):
        return False
    if token in (".", "..", "~") or token.startswith(("./", "../", "~/", ".\\", "..\\")):
        return True
    if token.startswith("/") and len(token) > 1:
        return True
    if _WINDOWS_ABSOLUTE.match(token):
        return True
    if "/" in token or "\\" in token:
        return True
    if token.startswith("$"):
        return True
    if _FILE_EXTENSION.search(token) and not token.startswith("-"):
        return True
    return False


def rebase_path(path: str, directory: str) -> str:
    """Express a path relative to the starting cwd after a change to directory."""
    if not path or path.startswith(("/", "~", "$", "\\")) or _WINDOWS_ABSOLUTE.match(path):
        return path
    return os.path.join(directory, path)


def rebase_effects(effects: SideEffects, directory: str) -> SideEffects:
    return SideEffects(
        paths=tuple(
            PathEffect(path=rebase_path(p.path, directory), operation=p.operation, position=p.position)
            for p in effects.paths
        ),
        domains=effects.domains,
        ports=effects.ports,
    )


def _positions_include(spec: str | tuple[int, ...] | None, index: int, count: int) -> bool:
    if spec is None:
        return False
    if spec == ALL:
        return True
    if spec == LAST:
        return index == count - 1
    return index in spec


class SideEffectExtractor:
    """Extracts paths, domains and ports a command may touch."""

    def __init__(
        self,
        policy: GatePolicy | None = None,
        tokenizer: CommandTokenizer | None = None,
        detector: ShellWrapperDetector | None = None,
    ):
        self._policy = policy or GatePolicy()
        self._tokenizer = tokenizer or CommandTokenizer()
        self._detector = detector or ShellWrapperDetector(self._policy)
        self._implied = self._policy.implied_domain_entries

    def extract(self, command: str, depth: int = 0) -> SideEffects:
        """Extract side effects of a raw command string.

        Args:
            command: Raw command string.
            depth: Current wrapper recursion depth.

        Returns:
            SideEffects with paths, domains and ports.
        """
        effects = SideEffects(
            domains=tuple(self.extract_domains(command)),
            ports=tuple(self.extract_ports(command)),
        )
        if depth > self._policy.max_wrapper_depth:
            return effects

        # Later segments run wherever an earlier cd/pushd left the shell
        directory: str | None = None
        for segment in self._tokenizer.split_segments(command):
            segment_effects = self._extract_segment(segment, depth)
            if directory is not None:
                segment_effects = rebase_effects(segment_effects, directory)
            effects = effects.merge(segment_effects)
            directory = self.directory_after(segment, directory)

        for body in self._tokenizer.extract_substitutions(command):
            body_effects = self.extract(body, depth + 1)
            if directory is not None:
                body_effects = rebase_effects(body_effects, UNKNOWN_DIRECTORY)
            effects = effects.merge(body_effects)
        return effects

    def directory_after(self, segment: str, directory: str | None) -> str | None:
        """Directory the shell is in after segment, relative to the starting cwd.

        None means unchanged. Targets that cannot be known statically
        (``cd -``, ``popd``, ``pushd +1``) become UNKNOWN_DIRECTORY.
        Subshells ``( ... )`` do not change the directory of later segments.
        """
        tokens = list(effective_tokens(self._tokenizer.tokenize(segment.strip()).tokens))
        if tokens and tokens[0] == "{":
            tokens = tokens[1:]
        if not tokens:
            return directory

        program = normalize_program(tokens[0])
        if program not in DIRECTORY_CHANGE_COMMANDS:
            return directory

        operands = [t for t in tokens[1:] if not (t.startswith("-") and len(t) > 1) and t != "}"]
        if program in ("popd", "pop-location"):
            target = UNKNOWN_DIRECTORY
        elif not operands:
            target = "~" if program in ("cd", "chdir") else UNKNOWN_DIRECTORY
        elif operands[0] == "-" or operands[0].startswith("+"):
            target = UNKNOWN_DIRECTORY
        else:
            target = operands[0]

        return target if directory is None else rebase_path(target, directory)

    def _extract_segment(self, segment: str, depth: int) -> SideEffects:
        stripped = segment.strip()
        if (stripped.startswith("(") and stripped.endswith(")")) or (
            stripped.startswith("{") and stripped.endswith("}")
        ):
            return self.extract(stripped[1:-1], depth + 1)

        paths = list(self.extract_redirection_paths(stripped))
        tokens = effective_tokens(self._tokenizer.tokenize(stripped).tokens)
        if not tokens:
            return SideEffects(paths=tuple(paths))

        paths.extend(self.extract_paths(tokens))
        effects = SideEffects(paths=tuple(paths), domains=tuple(self.implied_domains(tokens)))

        wrapper = self._detector.detect(tokens)
        if wrapper.embedded_script:
            effects = effects.merge(self.extract(wrapper.embedded_script, depth + 1))
        return effects

    def extract_redirection_paths(self, segment: str) -> list[PathEffect]:
        """Redirection targets: ``>``/``>>`` are writes, ``<`` is a read."""
        effects = []
        for target, is_output in self._tokenizer.extract_redirections(segment):
            if target.lower() in OUTPUT_SINKS:
                continue
            operation = PathOperation.WRITE if is_output else PathOperation.READ
            effects.append(PathEffect(path=target, operation=operation, position=-1))
        return effects

    def extract_paths(self, tokens: tuple[str, ...] | list[str]) -> list[PathEffect]:
        """Path-like arguments of a single command with their intent.

        Intent comes from the position tables. Arguments of unknown intent
        are writes unless the program only inspects files.
        """
        program = normalize_program(tokens[0])
        args = list(tokens[1:])
        effects: list[PathEffect] = []

        # Flag-introduced outputs: -o FILE, --output=FILE, of=FILE
        output_indexes: set[int] = set()
        for i, arg in enumerate(args):
            if program == "dd" and arg.startswith(("of=", "if=")):
                operation = PathOperation.WRITE if arg.startswith("of=") else PathOperation.READ
                effects.append(PathEffect(path=arg[3:], operation=operation, position=i))
                output_indexes.add(i)
                continue
            name, sep, value = arg.partition("=")
            if name in _LONG_OUTPUT_FLAGS:
                if sep and value:
                    effects.append(PathEffect(path=value, operation=PathOperation.WRITE, position=i))
                    output_indexes.add(i)
                elif i + 1 < len(args):
                    effects.append(PathEffect(path=args[i + 1], operation=PathOperation.WRITE, position=i + 1))
                    output_indexes.add(i + 1)
                continue
            if program in OUTPUT_FLAG_PROGRAMS and arg in _SHORT_OUTPUT_FLAGS and i + 1 < len(args):
                effects.append(PathEffect(path=args[i + 1], operation=PathOperation.WRITE, position=i + 1))
                output_indexes.add(i + 1)
            if program == "tar" and arg.startswith("-") and "f" in arg and i + 1 < len(args):
                operation = PathOperation.WRITE if "c" in arg or "r" in arg or "u" in arg else PathOperation.READ
                effects.append(PathEffect(path=args[i + 1], operation=operation, position=i + 1))
                output_indexes.add(i + 1)
            if program == "find" and arg in FIND_WRITE_ACTIONS and i + 1 < len(args):
                effects.append(PathEffect(path=args[i + 1], operation=PathOperation.WRITE, position=i + 1))
                output_indexes.add(i + 1)
            if program == "unzip" and arg == "-d" and i + 1 < len(args):
                effects.append(PathEffect(path=args[i + 1], operation=PathOperation.WRITE, position=i + 1))
                output_indexes.add(i + 1)

        operands = [
            (i, arg)
            for i, arg in enumerate(args)
            if i not in output_indexes
            and not (arg.startswith("-") and len(arg) > 1)
            and not is_windows_flag(arg, program)
            and not (i > 0 and _REDIRECT_TOKEN.match(args[i - 1]))
            and not _REDIRECT_TOKEN.match(arg)
        ]
        if program in PATTERN_FIRST and operands:
            operands = operands[1:]
        if program in ("chmod", "chown", "chgrp") and operands:
            operands = operands[1:]

        in_place = program == "sed" and any(a == "-i" or a.startswith(("-i", "--in-place")) for a in args)
        find_writes = program == "find" and any(a in ("-delete", "-exec", "-execdir") for a in args)

        for index, (position, arg) in enumerate(operands):
            # Write operands are paths even without a path-like shape (mkdir build)
            if _positions_include(WRITE_POSITIONS.get(program), index, len(operands)):
                if not URL_PATTERN.search(arg) and not is_windows_flag(arg, program):
                    effects.append(PathEffect(path=arg, operation=PathOperation.WRITE, position=position))
                continue
            if not is_likely_path(arg, program):
                continue
            if in_place or find_writes:
                operation = PathOperation.WRITE
            elif _positions_include(READ_POSITIONS.get(program), index, len(operands)):
                operation = PathOperation.READ
            elif program in WRITE_POSITIONS:
                # Source operands of copy-like programs
                operation = PathOperation.READ
            elif program in READ_ONLY_COMMANDS:
                operation = PathOperation.READ
            else:
                operation = PathOperation.WRITE
            effects.append(PathEffect(path=arg, operation=operation, position=position))

        return effects

    def extract_domains(self, command: str) -> list[str]:
        """Domains from URLs and ``user@host:`` remotes in the raw string."""
        domains = [m.group(1).lower().rstrip(".") for m in URL_PATTERN.finditer(command)]
        domains.extend(m.group(1).lower() for m in SCP_REMOTE_PATTERN.finditer(command))

        for segment in self._tokenizer.split_segments(command):
            tokens = effective_tokens(self._tokenizer.tokenize(segment).tokens)
            if tokens and normalize_program(tokens[0]) in NETWORK_PROGRAMS:
                args = tokens[1:]
                for i, arg in enumerate(args):
                    if arg.startswith("-") or (i > 0 and args[i - 1] in _NETWORK_FILE_OPTIONS):
                        continue
                    host = arg.rsplit("@", 1)[-1]
                    match = BARE_HOST_PATTERN.match(host)
                    if match and not URL_PATTERN.search(arg):
                        domains.append(match.group(1).lower())

        return [d for d in dict.fromkeys(domains) if d]

    def implied_domains(self, tokens: tuple[str, ...] | list[str]) -> list[str]:
        """Registry domains implied by package-manager invocations."""
        if not tokens:
            return []
        program = normalize_program(tokens[0])
        subcommand = next((t for t in tokens[1:] if not t.startswith("-")), None)
        domains: list[str] = []
        for entry in self._implied:
            if entry.applies_to(program, subcommand):
                domains.extend(entry.domains)
        return list(dict.fromkeys(domains))

    def extract_ports(self, command: str) -> list[int]:
        """Ports from ``-p``, ``--port``, ``host:port`` and ``PORT=`` forms."""
        ports: list[int] = []
        for pattern in PORT_PATTERNS:
            for match in pattern.finditer(command):
                port = int(match.group(1))
                if 0 < port <= 65535:
                    ports.append(port)
        return list(dict.fromkeys(ports))
