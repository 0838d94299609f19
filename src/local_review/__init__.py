"""Local code review server: sessions, file review status, and line comments over git diffs."""

__version__ = "0.1.0"
