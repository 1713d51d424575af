"""Lifecycle tables for purchase orders, ASNs and receipt sessions."""
import pytest

from inbound.core.exceptions import InvalidStateError
from inbound.core.lifecycle import Transition, Workflow, ensure_state
from inbound.models.asn import ASN_WORKFLOW, ASNStatus
from inbound.models.purchase import PO_WORKFLOW, POStatus
from inbound.models.receipt import RECEIPT_WORKFLOW, ReceiptStatus


@pytest.mark.parametrize("workflow", [PO_WORKFLOW, ASN_WORKFLOW, RECEIPT_WORKFLOW], ids=lambda w: w.name)
def test_terminal_states_have_no_way_out(workflow):
    for state in workflow.terminal_states:
        assert workflow.actions_from(state) == []


@pytest.mark.parametrize("workflow", [PO_WORKFLOW, ASN_WORKFLOW, RECEIPT_WORKFLOW], ids=lambda w: w.name)
def test_every_illegal_action_raises(workflow):
    for state in workflow.states:
        for transition in workflow.transitions:
            if state in transition.from_states:
                assert workflow.target(state, transition.action) == transition.to_state
            else:
                with pytest.raises(InvalidStateError) as exc:
                    workflow.target(state, transition.action)
                assert exc.value.details["status"] == state
                assert exc.value.details["action"] == transition.action


def test_purchase_order_happy_path():
    state = PO_WORKFLOW.initial_state
    for action in ("submit", "approve", "send", "confirm", "release", "receive_partial", "receive_full", "close"):
        state = PO_WORKFLOW.target(state, action)
    assert state == POStatus.CLOSED.value


@pytest.mark.parametrize("status", [POStatus.DRAFT, POStatus.CANCELLED])
def test_purchase_order_close_from_draft_or_cancelled_is_illegal(status):
    assert not PO_WORKFLOW.can(status, "close")
    assert not PO_WORKFLOW.can(status, "force_close")


def test_purchase_order_hold_only_before_fully_received():
    assert PO_WORKFLOW.can(POStatus.OPEN, "hold")
    assert PO_WORKFLOW.can(POStatus.PARTIAL, "hold")
    assert not PO_WORKFLOW.can(POStatus.RECEIVED, "hold")


def test_asn_receiving_starts_from_arrived_or_scheduled_only():
    allowed = {s for s in ASN_WORKFLOW.states if ASN_WORKFLOW.can(s, "start_receiving")}
    assert allowed == {ASNStatus.ARRIVED.value, ASNStatus.SCHEDULED.value}


def test_asn_cannot_be_cancelled_once_received():
    assert ASN_WORKFLOW.can(ASNStatus.RECEIVING, "cancel")
    assert not ASN_WORKFLOW.can(ASNStatus.RECEIVED, "cancel")


def test_receipt_cannot_leave_completed():
    assert RECEIPT_WORKFLOW.is_terminal(ReceiptStatus.COMPLETED)
    with pytest.raises(InvalidStateError):
        RECEIPT_WORKFLOW.target(ReceiptStatus.COMPLETED, "cancel")


def test_workflow_rejects_transitions_out_of_terminal_states():
    with pytest.raises(ValueError):
        Workflow(
            name="Broken",
            initial_state="A",
            states=("A", "B"),
            transitions=(Transition("reopen", ("B",), "A"),),
            terminal_states=("B",),
        )


def test_ensure_state_guard():
    ensure_state("ASN", ASNStatus.PENDING, [ASNStatus.PENDING, ASNStatus.VALIDATED], "edit")
    with pytest.raises(InvalidStateError):
        ensure_state("ASN", ASNStatus.RECEIVING, [ASNStatus.PENDING], "edit")
