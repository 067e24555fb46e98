"""
API routers, one per resource.
"""

from api.routers import (
    audit_log,
    auth,
    blocks,
    contacts,
    dashboard,
    faq,
    interactions,
    references,
    users,
    watchlist,
)

ALL_ROUTERS = [
    auth.router,
    users.router,
    blocks.router,
    references.router,
    contacts.router,
    interactions.router,
    watchlist.router,
    dashboard.router,
    audit_log.router,
    faq.router,
]

__all__ = ['ALL_ROUTERS']
