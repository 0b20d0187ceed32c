"""Conversation engine for a customer-support chat agent"""

__version__ = "0.1.0"
