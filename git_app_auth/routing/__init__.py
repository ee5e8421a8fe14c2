"""URL pattern routing."""

from git_app_auth.routing.router import (
    PatternRouter,
    RouteMatch,
    match_length,
    normalize_pattern,
    normalize_url,
)

__all__ = ["PatternRouter", "RouteMatch", "match_length", "normalize_pattern", "normalize_url"]
