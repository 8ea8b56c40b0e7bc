# src/reposettings/__init__.py: Bitbucket repository settings reconciler.

__version__ = "1.0.0"
