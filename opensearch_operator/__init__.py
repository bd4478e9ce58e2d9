"""Reconciliation and upgrade orchestration for OpenSearch clusters."""

__version__ = "0.1.0"
