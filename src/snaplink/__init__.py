"""snaplink: snapshot placeholder-link reconciliation and staged recovery."""

__version__ = "0.4.0"
