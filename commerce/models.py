"""
Expose ORM models for Django's auto-discovery while keeping real definitions
under the infrastructure module.
"""

from commerce.infra.models import *  # noqa: F401,F403
from commerce.infra.outbox import OutboxEvent  # noqa: F401
from commerce.infra.stock_ledger import StockMovement  # noqa: F401
