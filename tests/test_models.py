"""Escrow state table and milestone payout reference."""

import uuid

from freelance_escrow.models.milestone import Milestone
from freelance_escrow.models.project import ESCROW_TRANSITIONS, EscrowStatus, escrow_sources


def test_completed_is_terminal() -> None:
    assert ESCROW_TRANSITIONS[EscrowStatus.COMPLETED] == set()


def test_pending_entered_from_not_created_or_failed() -> None:
    assert set(escrow_sources(EscrowStatus.PENDING)) == {EscrowStatus.NOT_CREATED, EscrowStatus.FAILED}


def test_completed_and_failed_only_from_pending() -> None:
    assert escrow_sources(EscrowStatus.COMPLETED) == [EscrowStatus.PENDING]
    assert escrow_sources(EscrowStatus.FAILED) == [EscrowStatus.PENDING]


def test_nothing_returns_to_not_created() -> None:
    assert escrow_sources(EscrowStatus.NOT_CREATED) == []


def test_payout_reference_is_stable_per_milestone() -> None:
    milestone_id = uuid.UUID("0f8fad5b-d9cb-469f-a165-70867728950e")
    milestone = Milestone(milestone_id=milestone_id)
    assert milestone.payout_reference == "ms_0f8fad5bd9cb469fa16570867728950e"
    assert len(milestone.payout_reference) <= 40
