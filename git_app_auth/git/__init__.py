"""Repository URL handling."""

from git_app_auth.git.parser import GitUrlParser

__all__ = ["GitUrlParser"]
