"""pmpin: package manager version broker for npm, pnpm and yarn projects."""

__version__ = "0.4.0"
