"""
Daemons module: Background maintenance tasks.
"""

from .expiry_monitor import ExpiryMonitor

__all__ = ['ExpiryMonitor']
