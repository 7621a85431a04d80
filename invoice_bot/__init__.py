"""Lark bot that drafts invoices from chat messages."""

__version__ = "0.1.0"
