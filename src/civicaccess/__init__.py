"""Mission access control for the civic engagement platform.

Decides whether a user may enter a gated mission, explains every unmet
requirement, and keeps an append-only ledger of each decision.
"""

__version__ = "0.1.0"
