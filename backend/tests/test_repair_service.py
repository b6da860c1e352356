# Overview: Pytest coverage for repair tickets; workflow transitions, cost rollup and views.

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from conftest import NOW
from warranty.errors import InvalidTransition, NotFound, ValidationError
from warranty.services import claim_service, repair_service, timeline_service


@pytest.fixture
def ticket(claim):
    claim_service.validate(claim, actor_id=1, now=NOW + timedelta(hours=1))
    claim_service.assign_technician(claim, technician_id=9, actor_id=1, now=NOW + timedelta(hours=2))
    claim_service.start_repair(
        claim, actor_id=9, actor_type="technician",
        target_completion_date=NOW + timedelta(days=2), now=NOW + timedelta(hours=3),
    )
    return repair_service.active_ticket(claim, 9)


class TestRepairWorkflow:

    def test_opened_ticket(self, ticket, claim):
        assert ticket.status == "assigned"
        assert ticket.claim_id == claim.id
        assert ticket.technician_id == 9
        assert ticket.assigned_at == NOW + timedelta(hours=3)
        assert ticket.total_cost == Decimal("0.00")

    def test_costs_roll_up(self, ticket):
        repair_service.start(ticket, "Cracked hinge", actor_id=9)
        repair_service.add_part(ticket, part_number="H-2", part_name="Hinge", quantity=2, unit_cost="12.50",
                                supplier="Acme")
        repair_service.set_labor(ticket, hours="1.5", hourly_rate="40")

        assert ticket.parts_cost == Decimal("25.00")
        assert ticket.labor_cost == Decimal("60.00")
        assert ticket.total_cost == Decimal("85.00")
        assert ticket.parts_used[0]["total_cost"] == "25.00"
        assert ticket.parts_used[0]["supplier"] == "Acme"

    def test_labor_without_rate_costs_nothing(self, ticket):
        repair_service.set_labor(ticket, hours="3")
        assert ticket.labor_cost == Decimal("0.00")
        assert ticket.total_cost == Decimal("0.00")

    @pytest.mark.parametrize("kwargs", [
        {"quantity": 0, "unit_cost": "1"},
        {"quantity": 1, "unit_cost": "-1"},
        {"quantity": 1, "unit_cost": "abc"},
    ])
    def test_bad_part(self, ticket, kwargs):
        with pytest.raises(ValidationError):
            repair_service.add_part(ticket, part_number="X", part_name="X", **kwargs)
        assert ticket.parts_used == []

    def test_start_requires_diagnosis(self, ticket):
        with pytest.raises(ValidationError):
            repair_service.start(ticket, "  ")
        assert ticket.status == "assigned"

    def test_start_and_complete_write_timeline(self, ticket, claim):
        repair_service.start(ticket, "Dead pixel column", actor_id=9, now=NOW + timedelta(hours=4))
        repair_service.complete(ticket, quality_check_passed=True, quality_notes="ok", actor_id=9,
                                now=NOW + timedelta(hours=5))

        assert ticket.status == "completed"
        assert ticket.actual_completion_date == NOW + timedelta(hours=5)
        types = [e.event_type for e in timeline_service.list_entries(claim.id)]
        assert types[-2:] == ["repair_started", "repair_completed"]
        completed = timeline_service.list_entries(claim.id, event_type="repair_completed")[0]
        assert completed.event_metadata["repair_ticket_id"] == ticket.id

    def test_wait_for_parts_and_resume(self, ticket):
        repair_service.start(ticket, "Needs new board", actor_id=9)
        repair_service.wait_for_parts(ticket, "Board on backorder")
        assert ticket.status == "waiting_parts"
        assert ticket.technician_notes == "Board on backorder"

        with pytest.raises(InvalidTransition):
            repair_service.complete(ticket, quality_check_passed=True)

        repair_service.resume(ticket)
        assert ticket.status == "in_progress"

    def test_fail_only_from_in_progress(self, ticket):
        with pytest.raises(InvalidTransition):
            repair_service.fail(ticket, "cannot reproduce")

        repair_service.start(ticket, "Intermittent fault", actor_id=9)
        repair_service.fail(ticket, "cannot reproduce")
        assert ticket.status == "failed"

        with pytest.raises(ValidationError):
            repair_service.add_repair_step(ticket, "try again")

    def test_cancel(self, ticket):
        repair_service.cancel(ticket, "Customer withdrew")
        assert ticket.status == "cancelled"
        assert ticket.supervisor_notes == "Customer withdrew"
        with pytest.raises(InvalidTransition):
            repair_service.resume(ticket)

    def test_test_results_and_photos(self, ticket):
        repair_service.add_test_result(ticket, test_name="burn-in", result="pass", tested_by=9,
                                       now=datetime(2025, 3, 2, 10, 0))
        repair_service.add_photo(ticket, "https://cdn.example.com/1.jpg", "before")

        assert ticket.test_results[0]["tested_at"] == "2025-03-02T10:00:00Z"
        assert ticket.before_photos == ["https://cdn.example.com/1.jpg"]
        with pytest.raises(ValidationError):
            repair_service.add_test_result(ticket, test_name="burn-in", result="maybe")
        with pytest.raises(ValidationError):
            repair_service.add_photo(ticket, "https://cdn.example.com/2.jpg", "during")

    def test_get_ticket_scoped_to_claim(self, ticket, claim):
        assert repair_service.get_ticket(ticket.id, claim_id=claim.id) is ticket
        with pytest.raises(NotFound):
            repair_service.get_ticket(ticket.id, claim_id=claim.id + 1)
        assert repair_service.list_tickets(technician_id=9) == [ticket]


class TestTicketViews:

    def test_overdue_and_duration(self, ticket):
        repair_service.start(ticket, "Fan noise", actor_id=9, now=NOW + timedelta(hours=4))

        assert repair_service.is_overdue(ticket, NOW + timedelta(days=1)) is False
        assert repair_service.is_overdue(ticket, NOW + timedelta(days=3)) is True
        assert repair_service.duration(ticket, NOW + timedelta(hours=6)) == "2.0 hours"

    def test_efficiency_and_completion_rate(self, ticket):
        repair_service.start(ticket, "Fan noise", actor_id=9, now=NOW + timedelta(hours=4))
        for step in ("open case", "replace fan", "close case"):
            repair_service.add_repair_step(ticket, step)
        # target is 45h after assignment; finishing after 9h scores above the cap
        repair_service.complete(ticket, quality_check_passed=True, actor_id=9, now=NOW + timedelta(hours=12))

        assert repair_service.completion_rate(ticket) == 30.0
        assert repair_service.efficiency_score(ticket) == 200.0
        view = repair_service.ticket_view(ticket)
        assert view["is_completed"] is True
        assert view["is_overdue"] is False
