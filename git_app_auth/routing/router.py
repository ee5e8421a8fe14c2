"""Pattern router: pick the identity responsible for a repository URL.

Each identity carries URL patterns such as ``github.com/my-org/*`` or
``github.com/my-org/infra``. For a target URL every pattern is scored by
the number of characters it matches; the identity with the longest match
wins, priority breaks ties between equally long matches, and the identity
name breaks any remaining tie. Configuration order never matters.

A URL no pattern matches yields None: the caller abstains and lets git
fall through to its next credential helper.

Matching rules, against the normalized ``host[:port]/path`` form:
    - ``*`` matches every URL (length 0)
    - ``prefix/*`` matches anything below ``prefix`` (length
      ``len(prefix) + 1``) and ``prefix`` itself (length ``len(prefix)``, a
      tie with the literal pattern ``prefix``)
    - any other pattern matches only the identical URL (its full length)

Example:
    >>> router = PatternRouter()
    >>> identity = router.resolve("https://github.com/my-org/infra.git", identities)
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Protocol

from git_app_auth.exceptions import InvalidGitUrlError
from git_app_auth.git.parser import GitUrlParser

WILDCARD = "*"
WILDCARD_SUFFIX = "/*"


class Routable(Protocol):
    """Anything with a name, URL patterns and a priority."""

    name: str
    patterns: list[str]
    priority: int


@dataclass(frozen=True)
class RouteMatch:
    """One identity's best-scoring pattern for a URL."""

    identity: Routable
    pattern: str
    length: int

    @property
    def sort_key(self) -> tuple[int, int, str]:
        return (-self.length, -self.identity.priority, self.identity.name)


def normalize_url(url: str) -> str | None:
    """Normalize a URL to ``host[:port]/path``, or None if it cannot be parsed."""
    try:
        return GitUrlParser(url).normalized
    except InvalidGitUrlError:
        return None


def normalize_pattern(pattern: str) -> str:
    """Normalize a pattern the same way URLs are, keeping a trailing wildcard.

    Raises:
        InvalidGitUrlError: If the non-wildcard part is not a valid URL prefix
    """
    pattern = pattern.strip()
    if pattern == WILDCARD:
        return WILDCARD
    if pattern.endswith(WILDCARD_SUFFIX):
        return GitUrlParser(pattern[: -len(WILDCARD_SUFFIX)]).normalized + WILDCARD_SUFFIX
    return GitUrlParser(pattern).normalized


def match_length(pattern: str, normalized_url: str) -> int | None:
    """Score a normalized pattern against a normalized URL.

    Returns:
        Number of matched characters, or None when the pattern does not match
    """
    if pattern == WILDCARD:
        return 0

    if pattern.endswith(WILDCARD_SUFFIX):
        prefix = pattern[:-1]
        if normalized_url.startswith(prefix) or normalized_url == prefix[:-1]:
            # Never more characters than the URL itself has
            return min(len(prefix), len(normalized_url))
        return None

    if normalized_url == pattern:
        return len(pattern)
    return None


class PatternRouter:
    """Selects the single best identity for a URL.

    Normalized patterns are memoized per raw pattern string; the router
    holds no other state and is safe to share.
    """

    def __init__(self) -> None:
        self._normalized: dict[str, str | None] = {}

    def normalized_pattern(self, pattern: str) -> str | None:
        if pattern not in self._normalized:
            try:
                self._normalized[pattern] = normalize_pattern(pattern)
            except InvalidGitUrlError:
                self._normalized[pattern] = None
        return self._normalized[pattern]

    def best_match(self, identity: Routable, normalized_url: str) -> RouteMatch | None:
        """Return the identity's longest-matching pattern, if any."""
        best: RouteMatch | None = None
        for pattern in identity.patterns:
            normalized = self.normalized_pattern(pattern)
            if normalized is None:
                continue
            length = match_length(normalized, normalized_url)
            if length is not None and (best is None or length > best.length):
                best = RouteMatch(identity=identity, pattern=pattern, length=length)
        return best

    def rank(self, url: str, identities: Iterable[Routable]) -> list[RouteMatch]:
        """All matching identities, best first.

        Returns an empty list for an empty or malformed URL.
        """
        normalized_url = normalize_url(url)
        if normalized_url is None:
            return []

        matches = []
        for identity in identities:
            match = self.best_match(identity, normalized_url)
            if match is not None:
                matches.append(match)

        return sorted(matches, key=lambda m: m.sort_key)

    def resolve(self, url: str, identities: Iterable[Routable]) -> Routable | None:
        """Return the winning identity for a URL, or None to abstain."""
        matches = self.rank(url, identities)
        return matches[0].identity if matches else None

    @staticmethod
    def conflicts(matches: Sequence[RouteMatch]) -> list[RouteMatch]:
        """Matches tied with the winner on both length and priority.

        Returns an empty list when the winner is unambiguous. The winner is
        still chosen deterministically by name; callers decide whether to
        warn about the tie.
        """
        if len(matches) < 2:
            return []
        winner = matches[0]
        tied = [
            m for m in matches if m.length == winner.length and m.identity.priority == winner.identity.priority
        ]
        return tied if len(tied) > 1 else []
