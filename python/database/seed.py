"""
Initial Data Seeding for Kurator

Seeds the database on startup:
- Default administrator (only when no Admin exists)
- Reference catalogue (influence statuses, types, channels, sources,
  interaction types and results, risk spheres, organizations)

Both steps are idempotent and safe to run on every start.
"""

import logging
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy import select, func
from sqlalchemy.orm import Session

from database.models import User, ReferenceValue, UserRole

logger = logging.getLogger(__name__)


# (category, code, name, description, sort_order)
REFERENCE_CATALOGUE: List[Tuple[str, str, str, Optional[str], int]] = [
    ("influence_status", "A", "Status A", "High level of influence", 1),
    ("influence_status", "B", "Status B", "Medium level of influence", 2),
    ("influence_status", "C", "Status C", "Low level of influence", 3),
    ("influence_status", "D", "Status D", "Minimal level of influence", 4),

    ("influence_type", "NAV", "Navigational", "Provides access, introduces to circles", 1),
    ("influence_type", "INT", "Interpretive", "Helps understand positions and context", 2),
    ("influence_type", "FUN", "Functional", "Helps resolve issues, affects processes", 3),
    ("influence_type", "REP", "Reputational", "Affects public perception", 4),
    ("influence_type", "ANA", "Analytical", "Gives strategic assessment and forecasts", 5),

    ("communication_channel", "OFF", "Official", None, 1),
    ("communication_channel", "MED", "Through an intermediary", None, 2),
    ("communication_channel", "ASS", "Through an association", None, 3),
    ("communication_channel", "PER", "Personal", None, 4),
    ("communication_channel", "JUR", "Legal", None, 5),

    ("contact_source", "PER", "Personal acquaintance", None, 1),
    ("contact_source", "ASS", "Association", None, 2),
    ("contact_source", "REC", "Recommendation", None, 3),
    ("contact_source", "EVE", "Event", None, 4),
    ("contact_source", "MED", "Media", None, 5),
    ("contact_source", "OTH", "Other", None, 6),

    ("interaction_type", "MEE", "Meeting", None, 1),
    ("interaction_type", "CAL", "Call", None, 2),
    ("interaction_type", "MSG", "Correspondence", None, 3),
    ("interaction_type", "EVE", "Event", None, 4),
    ("interaction_type", "OTH", "Other", None, 5),

    ("interaction_result", "POS", "Positive", None, 1),
    ("interaction_result", "NEU", "Neutral", None, 2),
    ("interaction_result", "NEG", "Negative", None, 3),
    ("interaction_result", "DEL", "Postponed", None, 4),
    ("interaction_result", "NON", "No result", None, 5),

    ("risk_sphere", "MED", "Media", None, 1),
    ("risk_sphere", "JUR", "Legal pressure", None, 2),
    ("risk_sphere", "POL", "Political", None, 3),
    ("risk_sphere", "ECO", "Economic", None, 4),
    ("risk_sphere", "FOR", "Security forces", None, 5),
    ("risk_sphere", "COM", "Communications", None, 6),
    ("risk_sphere", "OTH", "Other", None, 7),

    ("organization", "VR", "Parliament", None, 1),
    ("organization", "KMU", "Cabinet of Ministers", None, 2),
    ("organization", "NBU", "National Bank", None, 3),
    ("organization", "SBU", "Security Service", None, 4),
    ("organization", "MED", "Media", None, 5),
    ("organization", "OTH", "Other", None, 99),
]


def seed_admin(
    session: Session,
    hash_password: Callable[[str], str],
    login: str = "admin",
    password: str = "Admin123!"
) -> bool:
    """
    Create the default administrator when no Admin exists.

    Returns:
        True if an admin was created
    """
    admin_count = session.execute(
        select(func.count()).select_from(User).where(User.role == UserRole.ADMIN)
    ).scalar_one()
    if admin_count:
        return False

    admin = User(
        login=login,
        password_hash=hash_password(password),
        role=UserRole.ADMIN,
        is_first_login=True,
        is_active=True,
        mfa_enabled=False
    )
    session.add(admin)
    session.flush()

    logger.warning(f"Default admin user '{login}' created; set up MFA on first login")
    return True


def seed_references(session: Session) -> int:
    """
    Load the reference catalogue, skipping (category, code) pairs that exist.

    Returns:
        Number of values created
    """
    existing = set(
        session.execute(select(ReferenceValue.category, ReferenceValue.code)).tuples().all()
    )

    created = 0
    for category, code, name, description, sort_order in REFERENCE_CATALOGUE:
        if (category, code) in existing:
            continue
        session.add(ReferenceValue(
            category=category,
            code=code,
            name=name,
            description=description,
            sort_order=sort_order,
            is_active=True
        ))
        created += 1

    session.flush()
    if created:
        logger.info(f"Loaded {created} reference values")
    return created


def seed_database(
    session: Session,
    hash_password: Callable[[str], str],
    admin_login: str = "admin",
    admin_password: str = "Admin123!",
    with_references: bool = True
) -> Dict[str, int]:
    """
    Run all seeding steps and commit.

    Returns:
        Dictionary with admin_created and references_created counts
    """
    admin_created = seed_admin(session, hash_password, admin_login, admin_password)
    references_created = seed_references(session) if with_references else 0
    session.commit()
    return {
        'admin_created': int(admin_created),
        'references_created': references_created
    }
