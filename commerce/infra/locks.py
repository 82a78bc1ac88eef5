"""
Order-scoped locks using PostgreSQL advisory locks.
"""
from contextlib import contextmanager
from uuid import UUID

from django.db import connection


@contextmanager
def order_lock(order_id: UUID | str):
    """
    Acquire a transaction-scoped advisory lock on an order.

    Must run inside ``transaction.atomic``; the lock is released when the
    transaction ends. Other database vendors rely on ``select_for_update``
    alone, so the lock is a no-op there.

    Usage:
        with transaction.atomic(), order_lock(order_id):
            # Read items, recompute totals, write order
            pass
    """
    if connection.vendor == "postgresql":
        with connection.cursor() as cursor:
            cursor.execute(
                "SELECT pg_advisory_xact_lock(hashtext(%s)::bigint)",
                [f"order:{order_id}"]
            )
    yield
