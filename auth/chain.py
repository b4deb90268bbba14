"""
auth/chain.py -- Guard chain composer: one authoritative guard per request path.

The chain is a plain, ordered list of GuardRule(path_pattern, guard, order)
evaluated top-down. The first rule whose pattern matches the path decides
which guard runs; if that guard fails, its challenge is the response. There
is no fall-through to a lower-precedence rule.

Patterns are Ant-style:
  *    any run of characters inside one path segment
  ?    exactly one character inside a segment
  **   any number of segments (including none)
  /**  at the end also matches the bare prefix ("/login/**" matches "/login")

Every other character is literal. A pattern that does not end in "/" or "/**"
also matches the path with one trailing slash ("/me" matches "/me/"), so a
trailing slash never moves a request onto a different guard.

Configuration is validated once, at construction, and rejected with
GuardConfigError when:
  - there are no rules, or a pattern does not start with "/"
  - two rules have the same order and overlapping patterns (ambiguous)
  - no rule is the catch-all "/**" (some path would be completely unguarded)
  - a rule names a guard type that has no guard instance

Layer rule: no imports from api/, web/ or client/.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping
from functools import lru_cache

from auth.guards import Guard
from auth.models import GuardRule, GuardType
from core.config import GuardRuleConfig

logger = logging.getLogger("ssoauth.auth.chain")

CATCH_ALL = "/**"


class GuardConfigError(ValueError):
    """The guard rule list is ambiguous, incomplete or malformed."""


# ---------------------------------------------------------------------------
# Pattern matching
# ---------------------------------------------------------------------------

_TOKEN_RE = re.compile(r"/\*\*|\*\*|\*|\?|/|[^*?/]+")


@lru_cache(maxsize=256)
def compile_pattern(pattern: str) -> re.Pattern[str]:
    """Translate an Ant-style path pattern into an anchored regex."""
    parts: list[str] = []
    for token in _TOKEN_RE.findall(pattern):
        if token == "/**":
            parts.append("(?:/.*)?")
        elif token == "**":
            parts.append(".*")
        elif token == "*":
            parts.append("[^/]*")
        elif token == "?":
            parts.append("[^/]")
        else:
            parts.append(re.escape(token))
    if not pattern.endswith(("/", "/**")):
        parts.append("/?")
    return re.compile("".join(parts) + r"\Z")


def path_matches(pattern: str, path: str) -> bool:
    return compile_pattern(pattern).match(path) is not None


def _is_wild(segment: str) -> bool:
    return "*" in segment or "?" in segment


def _segment_overlap(a: str, b: str) -> bool:
    if not _is_wild(a) and not _is_wild(b):
        return a == b
    if not _is_wild(a):
        return path_matches(f"/{b}", f"/{a}")
    if not _is_wild(b):
        return path_matches(f"/{a}", f"/{b}")
    # Two wildcard segments are treated as overlapping.
    return True


def patterns_overlap(a: str, b: str) -> bool:
    """Return True if some path could match both patterns."""
    sa = a.strip("/").split("/") if a.strip("/") else []
    sb = b.strip("/").split("/") if b.strip("/") else []

    @lru_cache(maxsize=None)
    def walk(i: int, j: int) -> bool:
        if i == len(sa) and j == len(sb):
            return True
        if i < len(sa) and sa[i] == "**":
            return walk(i + 1, j) or (j < len(sb) and walk(i, j + 1))
        if j < len(sb) and sb[j] == "**":
            return walk(i, j + 1) or (i < len(sa) and walk(i + 1, j))
        if i == len(sa) or j == len(sb):
            return False
        return _segment_overlap(sa[i], sb[j]) and walk(i + 1, j + 1)

    return walk(0, 0)


# ---------------------------------------------------------------------------
# Composer
# ---------------------------------------------------------------------------


class GuardChain:
    """Ordered rule list plus the guard instance for each guard type.

    Usage:
        chain = GuardChain(rules, {GuardType.SESSION: session_guard, ...})
        rule, guard = chain.select("/me")
        context = guard.authenticate(request)   # AuthError -> guard.challenge()
    """

    def __init__(self, rules: Iterable[GuardRule], guards: Mapping[GuardType, Guard]) -> None:
        # sorted() is stable, so equal orders keep their configured sequence;
        # validation below guarantees equal orders never overlap anyway.
        self._rules: tuple[GuardRule, ...] = tuple(sorted(rules, key=lambda r: r.order))
        self._guards = dict(guards)
        self._validate()
        logger.info(
            "Guard chain: %s",
            ", ".join(f"{r.path_pattern}->{r.guard.value}@{r.order}" for r in self._rules),
        )

    @classmethod
    def from_config(cls, configs: Iterable[GuardRuleConfig], guards: Mapping[GuardType, Guard]) -> GuardChain:
        rules = [GuardRule(path_pattern=c.path, guard=GuardType(c.guard), order=c.order) for c in configs]
        return cls(rules, guards)

    @property
    def rules(self) -> tuple[GuardRule, ...]:
        return self._rules

    def _validate(self) -> None:
        if not self._rules:
            raise GuardConfigError("Guard chain has no rules.")
        for rule in self._rules:
            if not rule.path_pattern.startswith("/"):
                raise GuardConfigError(f"Path pattern must start with '/': {rule.path_pattern!r}")
            if rule.guard not in self._guards:
                raise GuardConfigError(f"No guard configured for type {rule.guard.value!r}")
        for idx, rule in enumerate(self._rules):
            for other in self._rules[idx + 1 :]:
                if other.order != rule.order:
                    # Sorted by order: every later rule has a larger order.
                    break
                if patterns_overlap(rule.path_pattern, other.path_pattern):
                    raise GuardConfigError(
                        f"Rules {rule.path_pattern!r} and {other.path_pattern!r} overlap "
                        f"with the same order {rule.order}"
                    )
        if not any(rule.path_pattern == CATCH_ALL for rule in self._rules):
            raise GuardConfigError(f"Guard chain leaves paths unguarded: add a {CATCH_ALL!r} rule.")

    def match(self, path: str) -> GuardRule:
        """Return the authoritative (first matching) rule for path."""
        for rule in self._rules:
            if path_matches(rule.path_pattern, path):
                return rule
        # Unreachable with a validated chain: the catch-all matches everything.
        raise GuardConfigError(f"No guard rule matches {path!r}")

    def select(self, path: str) -> tuple[GuardRule, Guard]:
        rule = self.match(path)
        return rule, self._guards[rule.guard]
