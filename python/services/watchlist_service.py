"""
Watchlist Service

Risk entities under periodic monitoring. Risk level changes are kept in
watchlist_history; every write is audited.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, func, and_, case
from sqlalchemy.orm import Session, joinedload

from database.models import (
    Watchlist,
    WatchlistHistory,
    RiskLevel,
    MonitoringFrequency,
    AuditActionType,
    RISK_LEVEL_RANK,
    utcnow,
)
from database.repositories import (
    AuditRepository,
    EntityNotFoundError,
    ReferenceValueRepository,
    UserRepository,
    page_offset,
)

logger = logging.getLogger(__name__)

WRITABLE_FIELDS = (
    'full_name',
    'role_status',
    'risk_sphere_id',
    'threat_source',
    'conflict_date',
    'risk_level',
    'monitoring_frequency',
    'last_check_date',
    'next_check_date',
    'dynamics_description',
    'watch_owner_id',
    'attachments_json',
)

# Sort key mapping stored risk values to their rank
RISK_RANK = case(
    {level.value: rank for level, rank in RISK_LEVEL_RANK.items()},
    value=Watchlist.risk_level,
    else_=-1
)


def _snapshot(item: Watchlist) -> Dict[str, Any]:
    return {
        'RoleStatus': item.role_status,
        'RiskLevel': item.risk_level.value if item.risk_level else None,
        'MonitoringFrequency': item.monitoring_frequency.value if item.monitoring_frequency else None,
        'WatchOwnerId': item.watch_owner_id,
        'NextCheckDate': item.next_check_date,
    }


class WatchlistService:
    """Business operations on watchlist entries."""

    def __init__(self, session: Session):
        self.session = session
        self.audit = AuditRepository(session)
        self.references = ReferenceValueRepository(session)
        self.users = UserRepository(session)

    def _requires_check_condition(self):
        return and_(Watchlist.next_check_date.isnot(None), Watchlist.next_check_date <= utcnow())

    def get_watchlist(
        self,
        risk_level: Optional[RiskLevel] = None,
        risk_sphere_id: Optional[int] = None,
        monitoring_frequency: Optional[MonitoringFrequency] = None,
        watch_owner_id: Optional[int] = None,
        requires_check: Optional[bool] = None,
        page: int = 1,
        page_size: int = 50
    ) -> Tuple[List[Watchlist], int]:
        """
        List active entries, highest risk first, then earliest next check.

        Returns:
            Tuple of (entries on the page, total count)
        """
        query = select(Watchlist).where(Watchlist.is_active == True)

        if risk_level:
            query = query.where(Watchlist.risk_level == risk_level)
        if risk_sphere_id:
            query = query.where(Watchlist.risk_sphere_id == risk_sphere_id)
        if monitoring_frequency:
            query = query.where(Watchlist.monitoring_frequency == monitoring_frequency)
        if watch_owner_id:
            query = query.where(Watchlist.watch_owner_id == watch_owner_id)
        if requires_check:
            query = query.where(self._requires_check_condition())

        total = self.session.execute(
            select(func.count()).select_from(query.subquery())
        ).scalar_one()

        # NULL next check dates sort last on every backend
        query = query.options(joinedload(Watchlist.watch_owner)).order_by(
            RISK_RANK.desc(),
            Watchlist.next_check_date.is_(None),
            Watchlist.next_check_date.asc(),
            Watchlist.id
        ).offset(page_offset(page, page_size)).limit(page_size)

        items = list(self.session.execute(query).unique().scalars().all())
        logger.debug(f"Retrieved {len(items)} watchlist items (page {page})")
        return items, total

    def get_by_id(self, item_id: int) -> Optional[Watchlist]:
        """Get an active entry, or None."""
        query = select(Watchlist).where(
            and_(Watchlist.id == item_id, Watchlist.is_active == True)
        ).options(joinedload(Watchlist.watch_owner))
        return self.session.execute(query).unique().scalar_one_or_none()

    def _get_or_raise(self, item_id: int) -> Watchlist:
        item = self.get_by_id(item_id)
        if item is None:
            raise EntityNotFoundError(f"Watchlist item not found: {item_id}")
        return item

    def _check_fields(self, data: Dict[str, Any]) -> None:
        unknown = set(data) - set(WRITABLE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown watchlist fields: {', '.join(sorted(unknown))}")
        self.references.require(risk_sphere_id=data.get('risk_sphere_id'))
        if data.get('watch_owner_id') is not None:
            self.users.get_or_raise(data['watch_owner_id'])

    def _add_history(
        self,
        item: Watchlist,
        old_level: Optional[RiskLevel],
        new_level: Optional[RiskLevel],
        user_id: int,
        comment: Optional[str]
    ) -> None:
        self.session.add(WatchlistHistory(
            watchlist_id=item.id,
            old_risk_level=old_level,
            new_risk_level=new_level,
            changed_by=user_id,
            changed_at=utcnow(),
            comment=comment
        ))

    def create(self, user_id: int, data: Dict[str, Any]) -> Watchlist:
        """
        Create an entry. The watch owner defaults to the caller.

        Raises:
            EntityNotFoundError: If the risk sphere or watch owner does not exist
            ValueError: If full_name is missing or blank, or on unknown fields
        """
        self._check_fields(data)
        full_name = data.get('full_name')
        if not full_name or not str(full_name).strip():
            raise ValueError("Full name is required")

        values = dict(data)
        values['risk_level'] = values.get('risk_level') or RiskLevel.LOW
        values['monitoring_frequency'] = values.get('monitoring_frequency') or MonitoringFrequency.MONTHLY
        values['watch_owner_id'] = values.get('watch_owner_id') or user_id

        item = Watchlist(**values, is_active=True, updated_by=user_id)
        self.session.add(item)
        self.session.flush()

        self.audit.log(
            user_id=user_id,
            action=AuditActionType.CREATE,
            entity_type="Watchlist",
            entity_id=item.id,
            new_values={
                'FullName': item.full_name,
                'RiskLevel': item.risk_level.value,
                'MonitoringFrequency': item.monitoring_frequency.value
            }
        )

        logger.info(f"Created watchlist item {item.id} with risk level {item.risk_level.value} by user {user_id}")
        return item

    def update(self, item_id: int, user_id: int, data: Dict[str, Any]) -> Watchlist:
        """
        Partially update an entry. A risk level change is added to the history.

        Raises:
            EntityNotFoundError: If the entry does not exist, or the risk sphere or watch owner does not
            ValueError: On unknown fields or a blank full name
        """
        self._check_fields(data)
        item = self._get_or_raise(item_id)

        if 'full_name' in data and (not data['full_name'] or not str(data['full_name']).strip()):
            raise ValueError("Full name is required")

        old_values = _snapshot(item)
        old_level = item.risk_level

        for name, value in data.items():
            if name in ('risk_level', 'monitoring_frequency') and value is None:
                continue
            setattr(item, name, value)

        item.updated_at = utcnow()
        item.updated_by = user_id

        if item.risk_level != old_level:
            self._add_history(item, old_level, item.risk_level, user_id, "Risk level updated")

        self.audit.log(
            user_id=user_id,
            action=AuditActionType.UPDATE,
            entity_type="Watchlist",
            entity_id=item.id,
            old_values=old_values,
            new_values=_snapshot(item)
        )
        self.session.flush()

        logger.info(f"Updated watchlist item {item_id} by user {user_id}")
        return item

    def delete(self, item_id: int, user_id: int) -> Watchlist:
        """
        Soft-delete an entry.

        Raises:
            EntityNotFoundError: If the entry does not exist or is already deleted
        """
        item = self._get_or_raise(item_id)
        item.is_active = False
        item.updated_at = utcnow()
        item.updated_by = user_id

        self.audit.log(
            user_id=user_id,
            action=AuditActionType.DELETE,
            entity_type="Watchlist",
            entity_id=item.id,
            old_values={'IsActive': True, 'FullName': item.full_name},
            new_values={'IsActive': False}
        )
        self.session.flush()

        logger.info(f"Deactivated watchlist item {item_id} by user {user_id}")
        return item

    def record_check(
        self,
        item_id: int,
        user_id: int,
        next_check_date=None,
        dynamics_update: Optional[str] = None,
        new_risk_level: Optional[RiskLevel] = None,
        comment: Optional[str] = None
    ) -> Watchlist:
        """
        Record that an entry was checked now.

        next_check_date replaces the scheduled check (None clears it).
        A new risk level different from the current one is added to the
        history.

        Raises:
            EntityNotFoundError: If the entry does not exist
        """
        item = self._get_or_raise(item_id)
        old_values = {
            'LastCheckDate': item.last_check_date,
            'NextCheckDate': item.next_check_date,
            'RiskLevel': item.risk_level.value,
            'DynamicsDescription': item.dynamics_description
        }

        item.last_check_date = utcnow()
        item.next_check_date = next_check_date
        if dynamics_update:
            item.dynamics_description = dynamics_update
        if new_risk_level is not None and new_risk_level != item.risk_level:
            self._add_history(item, item.risk_level, new_risk_level, user_id, comment)
            item.risk_level = new_risk_level
        item.updated_at = utcnow()
        item.updated_by = user_id

        self.audit.log(
            user_id=user_id,
            action=AuditActionType.UPDATE,
            entity_type="Watchlist",
            entity_id=item.id,
            old_values=old_values,
            new_values={
                'LastCheckDate': item.last_check_date,
                'NextCheckDate': item.next_check_date,
                'RiskLevel': item.risk_level.value,
                'DynamicsDescription': item.dynamics_description
            }
        )
        self.session.flush()

        logger.info(f"Recorded check for watchlist item {item_id} by user {user_id}")
        return item

    def get_items_requiring_check(self) -> List[Watchlist]:
        """Active entries due for a check: earliest due first, then highest risk."""
        query = select(Watchlist).where(
            and_(Watchlist.is_active == True, self._requires_check_condition())
        ).options(joinedload(Watchlist.watch_owner)).order_by(
            Watchlist.next_check_date.asc(),
            RISK_RANK.desc()
        )
        return list(self.session.execute(query).unique().scalars().all())

    def get_history(self, item_id: int) -> List[WatchlistHistory]:
        """
        Risk level history of an entry, newest first.

        Raises:
            EntityNotFoundError: If the entry does not exist
        """
        if self.session.get(Watchlist, item_id) is None:
            raise EntityNotFoundError(f"Watchlist item not found: {item_id}")
        query = select(WatchlistHistory).where(
            WatchlistHistory.watchlist_id == item_id
        ).order_by(WatchlistHistory.changed_at.desc(), WatchlistHistory.id.desc())
        return list(self.session.execute(query).scalars().all())

    def get_statistics(self) -> Dict[str, Any]:
        """
        Counts over active entries.

        Returns:
            Dictionary with total, requires_check, by_risk_level,
            by_risk_sphere and by_monitoring_frequency
        """
        active = Watchlist.is_active == True

        total = self.session.execute(
            select(func.count()).select_from(Watchlist).where(active)
        ).scalar_one()

        requires_check = self.session.execute(
            select(func.count()).select_from(Watchlist).where(
                and_(active, self._requires_check_condition())
            )
        ).scalar_one()

        by_risk_level = {
            row[0].value: row[1]
            for row in self.session.execute(
                select(Watchlist.risk_level, func.count()).where(active).group_by(Watchlist.risk_level)
            )
        }

        by_risk_sphere = {
            row[0]: row[1]
            for row in self.session.execute(
                select(Watchlist.risk_sphere_id, func.count()).where(
                    and_(active, Watchlist.risk_sphere_id.isnot(None))
                ).group_by(Watchlist.risk_sphere_id)
            )
        }

        by_frequency = {
            row[0].value: row[1]
            for row in self.session.execute(
                select(Watchlist.monitoring_frequency, func.count()).where(active).group_by(
                    Watchlist.monitoring_frequency
                )
            )
        }

        return {
            'total': total,
            'requires_check': requires_check,
            'by_risk_level': by_risk_level,
            'by_risk_sphere': by_risk_sphere,
            'by_monitoring_frequency': by_frequency
        }
