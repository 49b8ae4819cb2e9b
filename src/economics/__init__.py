"""
Economics module: team budget and roster bookkeeping.
"""

from .ledger import Holding, TeamLedger, compute_ledger

__all__ = ['Holding', 'TeamLedger', 'compute_ledger']
