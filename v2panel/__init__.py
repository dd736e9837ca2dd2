"""Service layer for a proxy subscription panel on SQLite: plans, coupons, payment channels, nodes, routes, tickets, ledger and commissions."""

__version__ = "0.1.0"