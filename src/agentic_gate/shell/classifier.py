"""Risk classifier for shell commands.

Assigns every command one of four ordinal risk tiers:
- 0 read-only inspection
- 1 workspace writes
- 2 system and package operations (also the default for unknown programs)
- 3 dangerous

Hard-deny patterns are checked first and force tier 3. Shell wrappers,
command lists and substitutions are classified recursively and combined
with ``max``. The recursion is depth-bounded; exceeding the bound is
tier 3.
"""

import re
from dataclasses import dataclass

from agentic_gate.logging import get_logger
from agentic_gate.shell.config import GatePolicy
from agentic_gate.shell.models import RiskTier, Violation, ViolationSeverity, max_tier
from agentic_gate.shell.tokenizer import CommandTokenizer, effective_tokens
from agentic_gate.shell.wrappers import ShellWrapperDetector, program_name

logger = get_logger(__name__)


# (pattern, category, message); checked in order against the raw command
HARD_DENY_PATTERNS: list[tuple[str, str, str]] = [
    # Privilege escalation
    (r"(?<![\w.-])(?:sudo|su|doas|runas|pkexec)(?![\w.-])", "privilege", "Privilege escalation"),
    # Network download piped into an interpreter
    (
        r"\b(?:curl|wget)\b[^|;&]*\|\s*(?:\S*/)?(?:ba|z|da|k|fi)?sh\b",
        "remote-exec",
        "Piped script execution",
    ),
    (
        r"\b(?:curl|wget)\b[^|;&]*\|\s*(?:\S*/)?(?:python[\d.]*|perl|ruby|node|php)\b",
        "remote-exec",
        "Piped script execution",
    ),
    (
        r"\b(?:iwr|irm|invoke-webrequest|invoke-restmethod)\b[^|;]*\|\s*(?:iex|invoke-expression)\b",
        "remote-exec",
        "Piped script execution",
    ),
    (
        r"\b(?:ba|z|da|k)?sh\b[^|;&]*(?:<\(|\$\(|`)\s*(?:curl|wget)\b",
        "remote-exec",
        "Downloaded script execution",
    ),
    # Permissions
    (r"\bchmod\s+(?:-\w+\s+)*0?777\s+/", "permissions", "World-writable root"),
    # Filesystem formatting
    (r"\bformat(?:\.com)?\s+[a-z]:", "format", "Drive format"),
    (r"\bmkfs(?:\.\w+)?\b", "format", "Filesystem creation"),
    (r"\b(?:fdisk|sfdisk|parted|diskpart|wipefs)\b", "format", "Disk partitioning"),
    # Raw device writes
    (r"\bdd\b[^|;&]*\bof=/dev/(?!null\b|zero\b|stdout\b|stderr\b)", "device", "Raw device write"),
    (r">\s*/dev/(?:sd|hd|nvme|vd|xvd|disk|mmcblk)\w*", "device", "Raw device write"),
    # Credential files
    (
        r"\.ssh[\\/][^\s]*(?:id_rsa|id_dsa|id_ecdsa|id_ed25519|authorized_keys)",
        "credentials",
        "SSH key access",
    ),
    (r"/etc/(?:g?shadow)\b", "credentials", "Shadow file access"),
    (r"/etc/passwd\b", "credentials", "Passwd file access"),
    (r"/etc/sudoers\b", "credentials", "Sudoers file access"),
    (r"\.aws[\\/]credentials\b", "credentials", "Cloud credential access"),
    # Fork bomb
    (r":\(\)\s*\{\s*:\s*\|\s*:\s*&\s*\}\s*;\s*:", "resource", "Fork bomb"),
]

_COMPILED_HARD_DENY = [
    (re.compile(pattern, re.IGNORECASE), category, message)
    for pattern, category, message in HARD_DENY_PATTERNS
]


# Programs that delete their operands
DELETION_PROGRAMS: frozenset[str] = frozenset({
    "rm", "rmdir", "del", "erase", "rd", "remove-item", "ri", "shred",
})

# Deletion operands that wipe the root, the home directory or a system directory
DELETION_TARGETS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"^(?:/[/.]*\*?|\\\\?|[a-z]:(?:[\\/]\*?)?)$", re.IGNORECASE), "Root filesystem deletion"),
    (re.compile(r"^(?:~|\$HOME|\$\{HOME\}|\$env:USERPROFILE)[\\/]?\*?$", re.IGNORECASE), "Home directory deletion"),
    (
        re.compile(
            r"^/(?:bin|boot|dev|etc|home|lib|lib64|opt|proc|root|sbin|sys|usr|var|Users|System|Library)/?\*?$"
        ),
        "System directory deletion",
    ),
    (re.compile(r"^[a-z]:[\\/](?:windows|program files|users)[\\/]?\*?$", re.IGNORECASE), "System directory deletion"),
]


@dataclass(frozen=True)
class HardDenyMatch:
    """A hard-deny pattern that matched."""

    category: str
    message: str


# Tier 0: pure inspection
READ_ONLY_COMMANDS: frozenset[str] = frozenset({
    "ls", "dir", "cat", "type", "head", "tail", "less", "more", "bat",
    "pwd", "cd", "pushd", "popd", "echo", "printf", "find", "grep", "egrep", "fgrep", "rg", "ag",
    "findstr", "which", "where", "whereis", "whoami", "id", "uname",
    "hostname", "date", "cal", "uptime", "ps", "free", "df", "du", "tree",
    "wc", "sort", "uniq", "diff", "cmp", "comm", "file", "stat", "cut",
    "tr", "nl", "tac", "rev", "od", "hexdump", "xxd", "basename",
    "dirname", "realpath", "readlink", "env", "printenv", "true", "false",
    "test", "[", "sleep", "md5sum", "sha1sum", "sha256sum", "cksum",
    "jq", "yq", "column", "sed",
    "get-childitem", "get-content", "get-location", "select-string",
    "get-item", "test-path", "get-process", "write-output", "write-host",
})

# Tier 1: local file creation and mutation
WORKSPACE_WRITE_COMMANDS: frozenset[str] = frozenset({
    "touch", "mkdir", "cp", "mv", "rm", "rmdir", "ln", "unlink", "tee",
    "truncate", "patch", "tar", "zip", "unzip", "gzip", "gunzip",
    "md", "copy", "move", "del", "erase", "rd", "ren", "rename",
    "new-item", "copy-item", "move-item", "remove-item", "rename-item",
    "set-content", "add-content", "out-file",
})

# Tier 2: package managers, interpreters, builds, containers, permissions
SYSTEM_COMMANDS: frozenset[str] = frozenset({
    "npm", "npx", "yarn", "pnpm", "bun", "deno", "pip", "pip3", "pipx",
    "poetry", "uv", "conda", "cargo", "rustc", "gem", "bundle", "go",
    "composer", "brew", "apt", "apt-get", "yum", "dnf", "pacman",
    "node", "python", "python3", "ruby", "perl", "php", "java", "javac",
    "mvn", "gradle", "dotnet", "make", "cmake", "ninja", "gcc", "g++",
    "cc", "clang", "clang++", "tsc",
    "docker", "docker-compose", "podman", "kubectl", "helm", "terraform",
    "chmod", "chown", "chgrp", "curl", "wget", "ssh", "scp", "rsync",
    "systemctl", "service", "kill", "pkill", "killall", "crontab", "awk",
})

# Tier 3: destructive or system-control programs without a hard-deny pattern
DANGEROUS_COMMANDS: frozenset[str] = frozenset({
    "shutdown", "reboot", "halt", "poweroff", "init", "shred", "wipe",
    "iptables", "ufw", "firewall-cmd", "mount", "umount",
})

PACKAGE_MANAGERS: frozenset[str] = frozenset({
    "npm", "pnpm", "yarn", "pip", "pip3", "pipx", "poetry", "uv", "conda",
    "cargo", "gem", "bundle", "go", "brew", "composer", "docker", "podman",
})

READ_ONLY_SUBCOMMANDS: frozenset[str] = frozenset({
    "list", "ls", "show", "freeze", "help", "version", "why", "explain",
    "images", "ps",
})

VERSION_FLAGS: frozenset[str] = frozenset({"--version", "-V", "--help"})
PACKAGE_VERSION_FLAGS: frozenset[str] = VERSION_FLAGS | {"-v", "-h"}

GIT_READ_ONLY: frozenset[str] = frozenset({
    "status", "diff", "log", "show", "describe", "rev-parse", "rev-list",
    "shortlog", "blame", "ls-files", "ls-tree", "cat-file", "grep",
    "reflog", "whatchanged", "count-objects", "help", "version",
    "check-ignore", "name-rev", "var",
})

GIT_WORKSPACE_WRITE: frozenset[str] = frozenset({
    "add", "commit", "checkout", "switch", "merge", "rebase", "reset",
    "stash", "clean", "restore", "rm", "mv", "cherry-pick", "revert",
    "init", "apply", "am", "notes", "bisect", "gc", "worktree", "branch",
    "tag", "remote", "config",
})

GIT_NETWORK: frozenset[str] = frozenset({
    "push", "pull", "fetch", "clone", "submodule", "ls-remote",
    "send-email", "daemon", "request-pull",
})

_GIT_OPTIONS_WITH_VALUE = frozenset({"-C", "-c", "--git-dir", "--work-tree", "--namespace"})

_FIND_EXEC_ACTIONS = frozenset({"-exec", "-execdir", "-ok", "-okdir", "-delete"})
FIND_WRITE_ACTIONS = frozenset({"-fprint", "-fprint0", "-fprintf", "-fls"})

# Redirection targets that are not files
OUTPUT_SINKS = frozenset({"/dev/null", "/dev/stdout", "/dev/stderr", "/dev/tty", "nul", "$null"})


def normalize_program(token: str) -> str:
    """Basename of a program token, lowercased, without ``.exe``."""
    name = program_name(token)
    return name[:-4] if name.endswith(".exe") else name


class RiskClassifier:
    """Classifies shell commands into risk tiers.

    Example:
        >>> classifier = RiskClassifier()
        >>> classifier.classify("git status")
        <RiskTier.READ_ONLY: 0>
        >>> classifier.classify("rm -rf /")
        <RiskTier.DANGEROUS: 3>
    """

    def __init__(
        self,
        policy: GatePolicy | None = None,
        tokenizer: CommandTokenizer | None = None,
        detector: ShellWrapperDetector | None = None,
    ):
        self._policy = policy or GatePolicy()
        self._tokenizer = tokenizer or CommandTokenizer()
        self._detector = detector or ShellWrapperDetector(self._policy)
        self._extra_patterns = [
            (re.compile(pattern, re.IGNORECASE), "policy", message)
            for pattern, message in self._policy.deny_patterns
        ]

    # ------------------------------------------------------------------
    # Hard-deny patterns
    # ------------------------------------------------------------------

    def check_hard_deny(self, command: str) -> list[HardDenyMatch]:
        """Return every hard-deny pattern matching the command.

        The raw string is checked together with its unescaped token form,
        so quoting tricks such as ``s\\udo`` or ``"su"do`` do not hide a
        match. Encoded PowerShell payloads are decoded and checked too.
        """
        candidates = [command]
        parsed = self._tokenizer.tokenize(command)
        joined = " ".join(parsed.tokens)
        if joined and joined != command:
            candidates.append(joined)

        for segment in self._tokenizer.split_segments(command):
            wrapper = self._detector.detect(effective_tokens(self._tokenizer.tokenize(segment).tokens))
            if wrapper.is_encoded and wrapper.embedded_script:
                candidates.append(wrapper.embedded_script)

        matches: list[HardDenyMatch] = []
        seen: set[str] = set()
        for pattern, category, message in _COMPILED_HARD_DENY + self._extra_patterns:
            if message in seen:
                continue
            if any(pattern.search(text) for text in candidates):
                matches.append(HardDenyMatch(category=category, message=message))
                seen.add(message)
        for message in self._deletion_targets(command, 0):
            if message not in seen:
                matches.append(HardDenyMatch(category="deletion", message=message))
                seen.add(message)
        return matches

    def _deletion_targets(self, command: str, depth: int) -> list[str]:
        """Messages for deletion operands naming the root, home or a system directory.

        Operands are checked wherever they sit on the command line, so trailing
        options such as ``--no-preserve-root`` or further operands do not hide
        them. Groups, substitutions and wrapper scripts are walked too.
        """
        if depth > self._policy.max_wrapper_depth:
            return []

        messages: list[str] = []
        for segment in self._tokenizer.split_segments(command) or [command]:
            stripped = segment.strip()
            if (stripped.startswith("(") and stripped.endswith(")")) or (
                stripped.startswith("{") and stripped.endswith("}")
            ):
                messages.extend(self._deletion_targets(stripped[1:-1].strip().rstrip(";"), depth + 1))
                continue

            tokens = effective_tokens(self._tokenizer.tokenize(stripped).tokens)
            while tokens and normalize_program(tokens[0]) in ("sudo", "doas"):
                rest = list(tokens[1:])
                while rest and rest[0].startswith("-"):
                    rest.pop(0)
                tokens = effective_tokens(tuple(rest))
            if not tokens:
                continue

            wrapper = self._detector.detect(tokens)
            if wrapper.is_wrapper and wrapper.embedded_script:
                messages.extend(self._deletion_targets(wrapper.embedded_script, depth + 1))
                continue
            if normalize_program(tokens[0]) not in DELETION_PROGRAMS:
                continue

            options_done = False
            for arg in tokens[1:]:
                if arg == "--" and not options_done:
                    options_done = True
                    continue
                if arg.startswith("-") and not options_done:
                    continue
                for pattern, message in DELETION_TARGETS:
                    if pattern.match(arg):
                        messages.append(message)
                        break

        for body in self._tokenizer.extract_substitutions(command):
            messages.extend(self._deletion_targets(body, depth + 1))
        return messages

    def hard_violations(self, command: str) -> list[Violation]:
        """Hard-deny matches as hard-severity violations."""
        return [
            Violation(message=match.message, severity=ViolationSeverity.HARD)
            for match in self.check_hard_deny(command)
        ]

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    def classify(self, command: str, depth: int = 0) -> RiskTier:
        """Classify a raw command string.

        Args:
            command: Raw command string, possibly a list or pipeline.
            depth: Current recursion depth.

        Returns:
            The most restrictive tier over all constituent commands.
        """
        if not command or not command.strip():
            return RiskTier.DANGEROUS

        if self.check_hard_deny(command):
            return RiskTier.DANGEROUS

        if depth > self._policy.max_wrapper_depth:
            logger.debug("classification_depth_exceeded", command=command[:200], depth=depth)
            return RiskTier.DANGEROUS

        segments = self._tokenizer.split_segments(command) or [command]
        substitutions = self._tokenizer.extract_substitutions(command)

        tiers: list[RiskTier] = []
        if len(segments) > 1:
            tiers.extend(self.classify(segment, depth + 1) for segment in segments)
        else:
            tiers.append(self._classify_segment(segments[0], depth))
        tiers.extend(self.classify(body, depth + 1) for body in substitutions)

        return max_tier(tiers)

    def _classify_segment(self, segment: str, depth: int) -> RiskTier:
        """Classify one simple command (no list operators at top level)."""
        stripped = segment.strip()

        # Subshell and group bodies
        if (stripped.startswith("(") and stripped.endswith(")")) or (
            stripped.startswith("{") and stripped.endswith("}")
        ):
            inner = stripped[1:-1].strip().rstrip(";").strip()
            return self.classify(inner, depth + 1)

        parsed = self._tokenizer.tokenize(stripped)
        if parsed.is_empty:
            return RiskTier.DANGEROUS

        tokens = effective_tokens(parsed.tokens)
        if not tokens:
            # Variable assignments only
            return RiskTier.WORKSPACE_WRITE

        wrapper = self._detector.detect(tokens)
        if wrapper.is_wrapper:
            if wrapper.is_complex or not wrapper.sub_commands:
                tier = RiskTier.DANGEROUS
            else:
                tier = max_tier([self.classify(sub, depth + 1) for sub in wrapper.sub_commands])
        else:
            tier = self.classify_tokens(tokens)

        if self._has_output_redirect(stripped):
            tier = max(tier, RiskTier.WORKSPACE_WRITE)
        return tier

    def classify_tokens(self, tokens: tuple[str, ...] | list[str]) -> RiskTier:
        """Look up a single command's token vector in the tier tables."""
        if not tokens:
            return RiskTier.DANGEROUS

        program = normalize_program(tokens[0])
        args = list(tokens[1:])

        if program == "git":
            return self._classify_git(args)

        if program in DANGEROUS_COMMANDS:
            return RiskTier.DANGEROUS

        if program == "sed":
            if any(a == "--in-place" or a.startswith("--in-place=") or _is_short_flag(a, "i") for a in args):
                return RiskTier.WORKSPACE_WRITE
            return RiskTier.READ_ONLY

        if program == "find":
            if any(a in _FIND_EXEC_ACTIONS for a in args):
                return RiskTier.SYSTEM
            if any(a in FIND_WRITE_ACTIONS for a in args):
                return RiskTier.WORKSPACE_WRITE
            return RiskTier.READ_ONLY

        if program in SYSTEM_COMMANDS and self._is_read_only_invocation(program, args):
            return RiskTier.READ_ONLY

        if program in READ_ONLY_COMMANDS:
            return RiskTier.READ_ONLY
        if program in WORKSPACE_WRITE_COMMANDS:
            return RiskTier.WORKSPACE_WRITE
        if program in SYSTEM_COMMANDS:
            return RiskTier.SYSTEM

        # Unknown programs are never treated as safe
        return RiskTier.SYSTEM

    def _is_read_only_invocation(self, program: str, args: list[str]) -> bool:
        if not args:
            return False
        flags = PACKAGE_VERSION_FLAGS if program in PACKAGE_MANAGERS else VERSION_FLAGS
        if all(a in flags for a in args):
            return True
        if program in PACKAGE_MANAGERS:
            operands = [a for a in args if not a.startswith("-")]
            return bool(operands) and operands[0].lower() in READ_ONLY_SUBCOMMANDS
        return False

    def _classify_git(self, args: list[str]) -> RiskTier:
        """Classify a git invocation by its subcommand."""
        i = 0
        config_override = False
        while i < len(args) and args[i].startswith("-"):
            option = args[i]
            i += 1
            if option == "-c" or option.startswith("--config-env"):
                config_override = True
            if option in _GIT_OPTIONS_WITH_VALUE and i < len(args):
                i += 1

        if i >= len(args):
            tier = RiskTier.READ_ONLY
        else:
            tier = self._git_subcommand_tier(args[i].lower(), args[i + 1 :])

        # Inline config can run arbitrary programs (core.sshCommand, aliases)
        if config_override:
            tier = max(tier, RiskTier.SYSTEM)
        return tier

    def _git_subcommand_tier(self, sub: str, rest: list[str]) -> RiskTier:
        operands = [a for a in rest if not a.startswith("-")]
        flags = [a for a in rest if a.startswith("-")]

        if sub == "branch":
            mutating = {"-d", "-D", "--delete", "-m", "-M", "--move", "-c", "-C", "--copy",
                        "-f", "--force", "-u", "--set-upstream-to", "--unset-upstream",
                        "--edit-description"}
            listing = {"-l", "--list", "-a", "--all", "-r", "--remotes", "--show-current",
                       "--merged", "--no-merged", "--contains", "--no-contains", "--points-at"}
            if any(f.split("=", 1)[0] in mutating for f in flags):
                return RiskTier.WORKSPACE_WRITE
            if not operands or any(f.split("=", 1)[0] in listing for f in flags):
                return RiskTier.READ_ONLY
            return RiskTier.WORKSPACE_WRITE

        if sub == "tag":
            if any(f in ("-d", "--delete", "-a", "-s", "-f", "--force", "-m") for f in flags):
                return RiskTier.WORKSPACE_WRITE
            if not operands or any(f in ("-l", "--list", "--contains", "--points-at") for f in flags):
                return RiskTier.READ_ONLY
            return RiskTier.WORKSPACE_WRITE

        if sub == "remote":
            if not rest or rest[0] in ("-v", "--verbose", "show", "get-url"):
                return RiskTier.READ_ONLY
            if rest[0] in ("update", "prune"):
                return RiskTier.SYSTEM
            return RiskTier.WORKSPACE_WRITE

        if sub == "config":
            if any(f in ("--global", "--system") for f in flags) and not self._git_config_reads(flags, operands):
                return RiskTier.SYSTEM
            if self._git_config_reads(flags, operands):
                return RiskTier.READ_ONLY
            return RiskTier.WORKSPACE_WRITE

        if sub == "stash":
            if rest and rest[0] in ("list", "show"):
                return RiskTier.READ_ONLY
            return RiskTier.WORKSPACE_WRITE

        if sub == "worktree" and rest and rest[0] == "list":
            return RiskTier.READ_ONLY

        if sub in GIT_READ_ONLY:
            return RiskTier.READ_ONLY
        if sub in GIT_NETWORK:
            return RiskTier.SYSTEM
        if sub in GIT_WORKSPACE_WRITE:
            return RiskTier.WORKSPACE_WRITE
        return RiskTier.SYSTEM

    @staticmethod
    def _git_config_reads(flags: list[str], operands: list[str]) -> bool:
        read_flags = {"--get", "--get-all", "--get-regexp", "--get-urlmatch", "--list", "-l"}
        if any(f in read_flags for f in flags):
            return True
        return len(operands) <= 1 and not any(f in ("--unset", "--unset-all", "--add", "--edit", "-e") for f in flags)

    def _has_output_redirect(self, segment: str) -> bool:
        return any(
            is_output and target.lower() not in OUTPUT_SINKS
            for target, is_output in self._tokenizer.extract_redirections(segment)
        )


def _is_short_flag(arg: str, letter: str) -> bool:
    """Whether a short-option cluster like ``-ni`` or ``-i.bak`` includes letter."""
    if not arg.startswith("-") or arg.startswith("--") or len(arg) < 2:
        return False
    if arg[1] == letter:
        return True
    cluster = arg[1:]
    return letter in cluster and cluster.isalpha()
