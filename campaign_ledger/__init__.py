"""Campaign ledger service package.

Sponsors fund promotional campaigns, participants get paid for their posts,
and every balance change is explained by exactly one ledger entry.
"""

__all__: list[str] = []
