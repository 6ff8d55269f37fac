"""Include/exclude rule evaluation for profiles.

Rules are gitignore-style patterns relative to the profile's base
directory and are evaluated in order; the first rule that matches decides.
A leading ``!`` turns a rule into an exclusion. Pattern matching itself is
done by ``pathspec``'s gitignore patterns, one compiled pattern per rule.

Pattern syntax:

- ``*`` and ``?`` match within a single path segment, ``**`` matches
  across segments (``**/`` also matches zero segments).
- A pattern without ``/`` matches the name at any depth (``*.sav``).
- A leading ``/`` anchors the pattern at the base directory.
- A trailing ``/`` restricts the rule to directories.
- A backslash escapes the next character (``\\*.txt`` is a literal star).

A rule also matches everything below a directory it matches, so
``!cache/`` excludes the whole ``cache`` tree.

Usage:
    rules = RuleSet.parse(["saves/**", "!*.tmp"], default_action="exclude")
    rules.includes("saves/slot1.sav")   # True
"""

from dataclasses import dataclass, field
from typing import Literal

from pathspec import GitIgnoreSpec
from pathspec.pattern import Pattern


Action = Literal["include", "exclude"]


def _compile(text: str) -> Pattern:
    """Compile one gitignore line into a pathspec pattern.

    Raises:
        ValueError: If pathspec rejects the line or reads it as a no-op
            (a comment or an invalid character range).
    """
    patterns = GitIgnoreSpec.from_lines([text]).patterns
    if not patterns or patterns[0].include is None:
        raise ValueError(f"Include rule matches nothing: {text!r}")
    return patterns[0]


@dataclass(frozen=True)
class IncludeRule:
    """A single parsed rule."""

    pattern: str
    exclude: bool = False
    directory_only: bool = False
    anchored: bool = False
    _compiled: Pattern = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_compiled", _compile(str(self)))

    @classmethod
    def parse(cls, raw: str) -> "IncludeRule":
        """Parse a rule string such as ``"!build/"`` or ``"saves/*.sav"``.

        Raises:
            ValueError: If the rule is empty, is not a valid gitignore
                pattern, or tries to leave the base directory with ``..``.
        """
        text = raw.strip()
        exclude = text.startswith("!")
        if exclude:
            text = text[1:]
        directory_only = text.endswith("/")
        text = text.rstrip("/")
        anchored = text.startswith("/")
        text = text.lstrip("/")
        if not text:
            raise ValueError(f"Empty include rule: {raw!r}")
        if ".." in text.split("/"):
            raise ValueError(f"Include rule may not contain '..': {raw!r}")
        # A slash anywhere but the end anchors the pattern, like .gitignore
        if "/" in text:
            anchored = True
        return cls(
            pattern=text,
            exclude=exclude,
            directory_only=directory_only,
            anchored=anchored,
        )

    @property
    def action(self) -> Action:
        return "include" if self._compiled.include else "exclude"

    def matches(self, relative_path: str, is_dir: bool = False) -> bool:
        """Match the path, or any ancestor directory of it.

        Directories are tested with a trailing ``/`` so that directory-only
        rules never match a regular file of the same name.
        """
        candidate = relative_path.rstrip("/")
        if is_dir:
            candidate += "/"
        return self._compiled.match_file(candidate) is not None

    def __str__(self) -> str:
        text = self.pattern
        if self.anchored and "/" not in text:
            text = "/" + text
        if self.directory_only:
            text += "/"
        return ("!" if self.exclude else "") + text


@dataclass(frozen=True)
class RuleSet:
    """Ordered, first-match-wins collection of rules."""

    rules: tuple[IncludeRule, ...] = ()
    default_action: Action = "include"

    @classmethod
    def parse(cls, raw_rules, default_action: Action = "include") -> "RuleSet":
        return cls(
            rules=tuple(IncludeRule.parse(r) for r in raw_rules),
            default_action=default_action,
        )

    def first_match(self, relative_path: str, is_dir: bool = False) -> int | None:
        """Index of the first rule matching the path, or None."""
        for index, rule in enumerate(self.rules):
            if rule.matches(relative_path, is_dir=is_dir):
                return index
        return None

    def verdict(self, relative_path: str, is_dir: bool = False) -> Action:
        """Return the action of the first matching rule, else the default."""
        index = self.first_match(relative_path, is_dir=is_dir)
        if index is None:
            return self.default_action
        return self.rules[index].action

    def includes(self, relative_path: str, is_dir: bool = False) -> bool:
        return self.verdict(relative_path, is_dir=is_dir) == "include"

    def should_descend(self, relative_path: str) -> bool:
        """Whether the walk needs to enter a directory at all.

        Every rule that matches a directory also matches everything below
        it, so once an exclude rule claims the directory only include rules
        listed before it can still pick out descendants. A directory no rule
        matches is entered when the default includes, or when some include
        rule could match beneath it.
        """
        index = self.first_match(relative_path, is_dir=True)
        if index is None:
            if self.default_action == "include":
                return True
            return any(rule.action == "include" for rule in self.rules)
        if self.rules[index].action == "include":
            return True
        return any(rule.action == "include" for rule in self.rules[:index])
