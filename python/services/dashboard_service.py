"""
Dashboard Service

Read-only aggregates for the curator and admin dashboards and the
interaction statistics report.
"""

import calendar
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select, func, and_, distinct
from sqlalchemy.orm import Session, joinedload

from config_manager import DashboardConfig
from database.models import (
    AuditLog,
    Block,
    BlockStatus,
    Contact,
    Interaction,
    InfluenceStatusHistory,
    User,
    as_utc,
    utcnow,
)
from database.repositories import BlockRepository, assigned_block_ids_query
from services.encryption import EncryptionService

logger = logging.getLogger(__name__)


def months_ago(months: int, now: Optional[datetime] = None) -> datetime:
    """The same day and time `months` calendar months back, clamped to month end."""
    now = now or utcnow()
    month_index = now.year * 12 + now.month - 1 - months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(now.day, calendar.monthrange(year, month)[1])
    return now.replace(year=year, month=month, day=day)


def _counts(rows) -> Dict[str, int]:
    return {str(key): count for key, count in rows}


class DashboardService:
    """Dashboard metrics over contacts, interactions and the audit log."""

    def __init__(
        self,
        session: Session,
        encryption: EncryptionService,
        config: Optional[DashboardConfig] = None
    ):
        self.session = session
        self.encryption = encryption
        self.config = config or DashboardConfig()
        self.blocks = BlockRepository(session)

    # ============================================
    # SCOPES
    # ============================================

    def _contact_scope(self, block_ids=None):
        """Conditions for active contacts in active blocks, optionally restricted."""
        conditions = [Contact.is_active == True, Block.status == BlockStatus.ACTIVE]
        if block_ids is not None:
            conditions.append(Contact.block_id.in_(block_ids))
        return and_(*conditions)

    def _interaction_scope(self, block_ids=None):
        return and_(Interaction.is_active == True, self._contact_scope(block_ids))

    def _count_contacts(self, *conditions) -> int:
        return self.session.execute(
            select(func.count(Contact.id))
            .select_from(Contact)
            .join(Block, Contact.block_id == Block.id)
            .where(*conditions)
        ).scalar_one()

    def _count_interactions(self, *conditions) -> int:
        return self.session.execute(
            select(func.count(Interaction.id))
            .select_from(Interaction)
            .join(Contact, Interaction.contact_id == Contact.id)
            .join(Block, Contact.block_id == Block.id)
            .where(*conditions)
        ).scalar_one()

    # ============================================
    # CURATOR DASHBOARD
    # ============================================

    def get_curator_dashboard(self, user_id: int, is_admin: bool) -> Dict[str, Any]:
        """
        Metrics over the blocks the user curates (all blocks for an admin).

        Returns:
            Dictionary with total_contacts, interactions_last_month,
            average_interaction_interval, overdue_contacts,
            recent_interactions, contacts_requiring_attention,
            contacts_by_influence_status and interactions_by_type
        """
        if is_admin:
            block_ids = None
        else:
            block_ids = self.blocks.get_user_block_ids(user_id)
            if not block_ids:
                logger.debug(f"User {user_id} has no blocks, returning empty dashboard")
                return {
                    'total_contacts': 0,
                    'interactions_last_month': 0,
                    'average_interaction_interval': 0.0,
                    'overdue_contacts': 0,
                    'recent_interactions': [],
                    'contacts_requiring_attention': [],
                    'contacts_by_influence_status': {},
                    'interactions_by_type': {},
                }

        now = utcnow()
        last_month = months_ago(1, now)
        contacts = self._contact_scope(block_ids)
        interactions = self._interaction_scope(block_ids)
        overdue = and_(Contact.next_touch_date.isnot(None), Contact.next_touch_date < now)

        total_contacts = self._count_contacts(contacts)
        interactions_last_month = self._count_interactions(
            interactions, Interaction.interaction_date >= last_month
        )
        overdue_count = self._count_contacts(contacts, overdue)

        last_dates = self.session.execute(
            select(Contact.last_interaction_date)
            .select_from(Contact)
            .join(Block, Contact.block_id == Block.id)
            .where(contacts, Contact.last_interaction_date.isnot(None))
        ).scalars().all()
        average_interval = 0.0
        if last_dates:
            days = [(now - as_utc(value)).total_seconds() / 86400 for value in last_dates]
            average_interval = round(sum(days) / len(days), 1)

        recent = self.session.execute(
            select(Interaction)
            .join(Contact, Interaction.contact_id == Contact.id)
            .join(Block, Contact.block_id == Block.id)
            .where(interactions)
            .options(joinedload(Interaction.contact))
            .order_by(Interaction.interaction_date.desc(), Interaction.id.desc())
            .limit(self.config.recent_interactions)
        ).unique().scalars().all()

        attention = self.session.execute(
            select(Contact)
            .join(Block, Contact.block_id == Block.id)
            .where(contacts, overdue)
            .order_by(Contact.next_touch_date.asc())
            .limit(self.config.attention_contacts)
        ).scalars().all()

        by_status = self.session.execute(
            select(Contact.influence_status_id, func.count(Contact.id))
            .select_from(Contact)
            .join(Block, Contact.block_id == Block.id)
            .where(contacts, Contact.influence_status_id.isnot(None))
            .group_by(Contact.influence_status_id)
        ).all()

        by_type = self.session.execute(
            select(Interaction.interaction_type_id, func.count(Interaction.id))
            .select_from(Interaction)
            .join(Contact, Interaction.contact_id == Contact.id)
            .join(Block, Contact.block_id == Block.id)
            .where(
                interactions,
                Interaction.interaction_date >= last_month,
                Interaction.interaction_type_id.isnot(None)
            )
            .group_by(Interaction.interaction_type_id)
        ).all()

        return {
            'total_contacts': total_contacts,
            'interactions_last_month': interactions_last_month,
            'average_interaction_interval': average_interval,
            'overdue_contacts': overdue_count,
            'recent_interactions': [
                {
                    'id': interaction.id,
                    'contact_name': self.encryption.decrypt(interaction.contact.full_name_encrypted),
                    'contact_id': interaction.contact.contact_id,
                    'interaction_date': interaction.interaction_date,
                    'interaction_type_id': interaction.interaction_type_id,
                    'result_id': interaction.result_id,
                }
                for interaction in recent
            ],
            'contacts_requiring_attention': [
                {
                    'id': contact.id,
                    'contact_id': contact.contact_id,
                    'full_name': self.encryption.decrypt(contact.full_name_encrypted),
                    'next_touch_date': contact.next_touch_date,
                    'days_overdue': int((now - as_utc(contact.next_touch_date)).total_seconds() // 86400),
                    'influence_status': (
                        str(contact.influence_status_id)
                        if contact.influence_status_id is not None else "Unknown"
                    ),
                }
                for contact in attention
            ],
            'contacts_by_influence_status': _counts(by_status),
            'interactions_by_type': _counts(by_type),
        }

    # ============================================
    # ADMIN DASHBOARD
    # ============================================

    def get_admin_dashboard(self) -> Dict[str, Any]:
        """
        System-wide metrics for administrators.

        Returns:
            Dictionary of totals, breakdowns, top curators, status
            transitions and the most recent audit entries
        """
        now = utcnow()
        last_month = months_ago(1, now)
        dynamics_since = months_ago(self.config.status_dynamics_months, now)
        contacts = self._contact_scope()
        interactions = self._interaction_scope()
        recent_interactions = and_(interactions, Interaction.interaction_date >= last_month)

        total_blocks = self.session.execute(
            select(func.count(Block.id)).where(Block.status == BlockStatus.ACTIVE)
        ).scalar_one()
        total_users = self.session.execute(select(func.count(User.id))).scalar_one()

        contacts_by_block = self.session.execute(
            select(Block.name, func.count(Contact.id))
            .select_from(Contact)
            .join(Block, Contact.block_id == Block.id)
            .where(contacts)
            .group_by(Block.name)
            .order_by(func.count(Contact.id).desc())
        ).all()

        contacts_by_status = self.session.execute(
            select(Contact.influence_status_id, func.count(Contact.id))
            .select_from(Contact)
            .join(Block, Contact.block_id == Block.id)
            .where(contacts, Contact.influence_status_id.isnot(None))
            .group_by(Contact.influence_status_id)
        ).all()

        contacts_by_type = self.session.execute(
            select(Contact.influence_type_id, func.count(Contact.id))
            .select_from(Contact)
            .join(Block, Contact.block_id == Block.id)
            .where(contacts, Contact.influence_type_id.isnot(None))
            .group_by(Contact.influence_type_id)
        ).all()

        interactions_by_block = self.session.execute(
            select(Block.name, func.count(Interaction.id))
            .select_from(Interaction)
            .join(Contact, Interaction.contact_id == Contact.id)
            .join(Block, Contact.block_id == Block.id)
            .where(recent_interactions)
            .group_by(Block.name)
            .order_by(func.count(Interaction.id).desc())
        ).all()

        top_curators = self.session.execute(
            select(User.login, func.count(Interaction.id))
            .select_from(Interaction)
            .join(User, Interaction.curator_id == User.id)
            .join(Contact, Interaction.contact_id == Contact.id)
            .join(Block, Contact.block_id == Block.id)
            .where(recent_interactions)
            .group_by(User.login)
            .order_by(func.count(Interaction.id).desc(), User.login)
            .limit(self.config.top_curators)
        ).all()

        transitions = self.session.execute(
            select(
                InfluenceStatusHistory.previous_status,
                InfluenceStatusHistory.new_status,
                func.count(InfluenceStatusHistory.id)
            )
            .where(InfluenceStatusHistory.changed_at >= dynamics_since)
            .group_by(InfluenceStatusHistory.previous_status, InfluenceStatusHistory.new_status)
            .order_by(func.count(InfluenceStatusHistory.id).desc())
            .limit(10)
        ).all()

        audit_logs = self.session.execute(
            select(AuditLog)
            .options(joinedload(AuditLog.user))
            .order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
            .limit(self.config.recent_audit_logs)
        ).unique().scalars().all()

        return {
            'total_contacts': self._count_contacts(contacts),
            'total_interactions': self._count_interactions(interactions),
            'total_blocks': total_blocks,
            'total_users': total_users,
            'new_contacts_last_month': self._count_contacts(contacts, Contact.created_at >= last_month),
            'interactions_last_month': self._count_interactions(recent_interactions),
            'contacts_by_block': _counts(contacts_by_block),
            'contacts_by_influence_status': _counts(contacts_by_status),
            'contacts_by_influence_type': _counts(contacts_by_type),
            'interactions_by_block': _counts(interactions_by_block),
            'top_curators_by_activity': _counts(top_curators),
            'status_change_dynamics': {
                f"{previous}→{new}": count for previous, new, count in transitions
            },
            'recent_audit_logs': [
                {
                    'id': log.id,
                    'user_login': log.user.login if log.user else None,
                    'action_type': log.action.value,
                    'entity_type': log.entity_type,
                    'timestamp': log.timestamp,
                }
                for log in audit_logs
            ],
        }

    # ============================================
    # STATISTICS
    # ============================================

    def get_statistics(
        self,
        user_id: int,
        is_admin: bool,
        from_date: Optional[datetime] = None,
        to_date: Optional[datetime] = None,
        block_id: Optional[int] = None
    ) -> Dict[str, Any]:
        """
        Interaction statistics for a period (default: the last month).

        Non-admins only see interactions in their blocks.
        """
        to_date = to_date or utcnow()
        from_date = from_date or months_ago(1, to_date)

        conditions: List[Any] = [
            Interaction.is_active == True,
            Interaction.interaction_date >= from_date,
            Interaction.interaction_date <= to_date,
        ]
        if not is_admin:
            conditions.append(Contact.block_id.in_(assigned_block_ids_query(user_id)))
        if block_id:
            conditions.append(Contact.block_id == block_id)

        def scoped(*columns):
            return select(*columns).select_from(Interaction).join(
                Contact, Interaction.contact_id == Contact.id
            ).where(*conditions)

        total = self.session.execute(scoped(func.count(Interaction.id))).scalar_one()
        unique_contacts = self.session.execute(
            scoped(func.count(distinct(Interaction.contact_id)))
        ).scalar_one()
        by_type = self.session.execute(
            scoped(Interaction.interaction_type_id, func.count(Interaction.id))
            .where(Interaction.interaction_type_id.isnot(None))
            .group_by(Interaction.interaction_type_id)
        ).all()
        by_result = self.session.execute(
            scoped(Interaction.result_id, func.count(Interaction.id))
            .where(Interaction.result_id.isnot(None))
            .group_by(Interaction.result_id)
        ).all()

        return {
            'from_date': from_date,
            'to_date': to_date,
            'total_interactions': total,
            'unique_contacts': unique_contacts,
            'by_type': _counts(by_type),
            'by_result': _counts(by_result),
        }
