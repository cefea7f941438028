"""
Cogs are the low-level machinery of the controller: the API client,
the settings, the structures, and the generic asyncio kits.

Cogs know nothing about the reconciliation semantics; they are used
by the ``_core`` packages, which implement the controller's behaviour.
"""
