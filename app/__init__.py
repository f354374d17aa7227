"""FactLedger: multi-provider fact aggregation with trust scoring and cost governance."""

__version__ = "0.1.0"
