# toolguard/__init__.py
"""Tool-call guard pipeline for AI agent gateways."""

__version__ = "0.1.0"
