"""
Tests for DashboardService aggregates.
"""

from datetime import datetime, timedelta, timezone

import pytest

from config_manager import DashboardConfig
from database.models import BlockStatus, UserRole, utcnow
from services.contact_service import ContactService
from services.dashboard_service import DashboardService, months_ago
from services.interaction_service import InteractionService


pytestmark = pytest.mark.usefixtures("catalogue")


class TestMonthsAgo:
    """Calendar month arithmetic"""

    @pytest.mark.parametrize("now,months,expected", [
        (datetime(2024, 5, 15, 10, 0, tzinfo=timezone.utc), 1, datetime(2024, 4, 15, 10, 0, tzinfo=timezone.utc)),
        (datetime(2024, 1, 10, tzinfo=timezone.utc), 1, datetime(2023, 12, 10, tzinfo=timezone.utc)),
        (datetime(2024, 3, 31, tzinfo=timezone.utc), 1, datetime(2024, 2, 29, tzinfo=timezone.utc)),
        (datetime(2023, 5, 31, tzinfo=timezone.utc), 3, datetime(2023, 2, 28, tzinfo=timezone.utc)),
        (datetime(2024, 6, 1, tzinfo=timezone.utc), 12, datetime(2023, 6, 1, tzinfo=timezone.utc)),
    ])
    def test_months_ago(self, now, months, expected):
        assert months_ago(months, now) == expected


@pytest.fixture
def contacts(session, encryption):
    return ContactService(session, encryption)


@pytest.fixture
def interactions(session, encryption):
    return InteractionService(session, encryption)


@pytest.fixture
def dashboard(session, encryption):
    return DashboardService(session, encryption, DashboardConfig(recent_interactions=2, attention_contacts=5))


@pytest.fixture
def world(session, make_block, make_user, assign, admin, contacts, interactions):
    """Two blocks, a curator on the first, contacts and interactions in both."""
    now = utcnow()
    kyiv = make_block(code="KYIV", name="Kyiv")
    lviv = make_block(code="LVIV", name="Lviv")
    curator = make_user(UserRole.CURATOR, login="kyiv-curator")
    assign(kyiv, curator)

    overdue = contacts.create_contact(
        kyiv.id, "Overdue Person", curator.id, False,
        influence_status_id=1, next_touch_date=now - timedelta(days=3)
    )
    fresh = contacts.create_contact(kyiv.id, "Fresh Person", curator.id, False, influence_status_id=2)
    remote = contacts.create_contact(lviv.id, "Remote Person", admin.id, True, influence_status_id=1)

    interactions.create_interaction(
        overdue.id, curator.id, False, interaction_date=now - timedelta(days=40), interaction_type_id=10
    )
    recent = interactions.create_interaction(
        fresh.id, curator.id, False, interaction_date=now - timedelta(days=2),
        interaction_type_id=11, result_id=20
    )
    latest = interactions.create_interaction(
        fresh.id, curator.id, False, interaction_date=now - timedelta(days=1),
        interaction_type_id=11, result_id=21
    )
    interactions.create_interaction(
        remote.id, admin.id, True, interaction_date=now - timedelta(days=5), interaction_type_id=10
    )
    # Status change from an interaction payload, picked up by the admin dynamics
    interactions.create_interaction(
        remote.id, admin.id, True, interaction_date=now - timedelta(days=4),
        status_change_json='{"oldStatus": "1", "newStatus": "3"}'
    )
    session.commit()

    return {
        'kyiv': kyiv, 'lviv': lviv, 'curator': curator,
        'overdue': overdue, 'fresh': fresh, 'remote': remote,
        'recent': recent, 'latest': latest,
    }


class TestCuratorDashboard:
    """Metrics over the curator's blocks"""

    def test_scoped_to_assigned_blocks(self, dashboard, world):
        result = dashboard.get_curator_dashboard(world['curator'].id, False)
        assert result['total_contacts'] == 2
        assert result['interactions_last_month'] == 2
        assert result['overdue_contacts'] == 1
        assert result['contacts_by_influence_status'] == {"1": 1, "2": 1}
        assert result['interactions_by_type'] == {"11": 2}

    def test_recent_interactions_decrypted_and_limited(self, dashboard, world):
        recent = dashboard.get_curator_dashboard(world['curator'].id, False)['recent_interactions']
        assert [r['id'] for r in recent] == [world['latest'].id, world['recent'].id]
        assert recent[0]['contact_name'] == "Fresh Person"
        assert recent[0]['contact_id'] == "KYIV-002"
        assert recent[0]['result_id'] == 21

    def test_contacts_requiring_attention(self, dashboard, world):
        attention = dashboard.get_curator_dashboard(world['curator'].id, False)['contacts_requiring_attention']
        assert len(attention) == 1
        assert attention[0]['full_name'] == "Overdue Person"
        assert attention[0]['days_overdue'] == 3
        assert attention[0]['influence_status'] == "1"

    def test_average_interval(self, dashboard, world):
        result = dashboard.get_curator_dashboard(world['curator'].id, False)
        # last interactions 40 and 1 days ago
        assert result['average_interaction_interval'] == pytest.approx(20.5, abs=0.1)

    def test_curator_without_blocks_gets_empty_dashboard(self, dashboard, world, make_user):
        loner = make_user(UserRole.CURATOR)
        result = dashboard.get_curator_dashboard(loner.id, False)
        assert result['total_contacts'] == 0
        assert result['recent_interactions'] == []
        assert result['contacts_by_influence_status'] == {}
        assert result['average_interaction_interval'] == 0.0

    def test_admin_sees_all_blocks(self, dashboard, world, admin):
        result = dashboard.get_curator_dashboard(admin.id, True)
        assert result['total_contacts'] == 3
        assert result['interactions_last_month'] == 4

    def test_archived_blocks_excluded(self, dashboard, session, world, admin):
        world['lviv'].status = BlockStatus.ARCHIVED
        session.commit()
        assert dashboard.get_curator_dashboard(admin.id, True)['total_contacts'] == 2

    def test_unknown_status_label(self, dashboard, contacts, session, world):
        contacts.create_contact(
            world['kyiv'].id, "No Status", world['curator'].id, False,
            next_touch_date=utcnow() - timedelta(days=10)
        )
        session.commit()
        attention = dashboard.get_curator_dashboard(world['curator'].id, False)['contacts_requiring_attention']
        assert attention[0]['full_name'] == "No Status"
        assert attention[0]['influence_status'] == "Unknown"


class TestAdminDashboard:
    """System-wide metrics"""

    def test_totals(self, dashboard, world):
        result = dashboard.get_admin_dashboard()
        assert result['total_contacts'] == 3
        assert result['total_interactions'] == 5
        assert result['total_blocks'] == 2
        assert result['total_users'] == 2
        assert result['new_contacts_last_month'] == 3
        assert result['interactions_last_month'] == 4

    def test_breakdowns(self, dashboard, world):
        result = dashboard.get_admin_dashboard()
        assert result['contacts_by_block'] == {"Kyiv": 2, "Lviv": 1}
        assert result['contacts_by_influence_status'] == {"1": 1, "2": 1, "3": 1}
        assert result['interactions_by_block'] == {"Kyiv": 2, "Lviv": 2}
        assert result['top_curators_by_activity'] == {"admin": 2, "kyiv-curator": 2}

    def test_status_change_dynamics(self, dashboard, world):
        assert dashboard.get_admin_dashboard()['status_change_dynamics'] == {"1→3": 1}

    def test_recent_audit_logs(self, dashboard, world):
        logs = dashboard.get_admin_dashboard()['recent_audit_logs']
        assert logs
        assert logs[0]['user_login'] == "admin"
        assert {'id', 'user_login', 'action_type', 'entity_type', 'timestamp'} <= set(logs[0])

    def test_inactive_interactions_excluded(self, dashboard, interactions, session, world, admin):
        interactions.deactivate_interaction(world['latest'].id, admin.id)
        session.commit()
        assert dashboard.get_admin_dashboard()['total_interactions'] == 4


class TestInteractionStatistics:
    """Period statistics"""

    def test_default_period_is_last_month(self, dashboard, world, admin):
        stats = dashboard.get_statistics(admin.id, True)
        assert stats['total_interactions'] == 4
        assert stats['unique_contacts'] == 2
        assert stats['by_type'] == {"10": 1, "11": 2}
        assert stats['by_result'] == {"20": 1, "21": 1}

    def test_non_admin_is_scoped(self, dashboard, world):
        stats = dashboard.get_statistics(world['curator'].id, False)
        assert stats['total_interactions'] == 2
        assert stats['unique_contacts'] == 1

    def test_explicit_period_and_block(self, dashboard, world, admin):
        now = utcnow()
        stats = dashboard.get_statistics(
            admin.id, True, from_date=now - timedelta(days=60), to_date=now, block_id=world['kyiv'].id
        )
        assert stats['total_interactions'] == 3
        assert stats['from_date'] == now - timedelta(days=60)
        assert stats['to_date'] == now
