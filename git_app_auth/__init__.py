"""git-app-auth: a git credential helper that issues short-lived tokens.

Identities (installable Apps or stored access tokens) are matched to
repository URLs by pattern; App identities exchange a signed assertion for
an installation token, which is cached in memory until shortly before it
expires.
"""

__version__ = "0.1.0"
