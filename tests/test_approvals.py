"""Tests for the approval queue and decision payloads."""

import pytest

from channel.approvals import ApprovalQueue, build_decision_payload
from channel.models import ApprovalMessage


def submit(queue, **fields):
    data = {"title": "Run migration", "requiresResponse": True}
    data.update(fields)
    return queue.submit(data)


class TestSubmit:
    def test_defaults_are_filled_in(self):
        message = ApprovalQueue().submit({"type": "approval", "title": "Deploy"})
        assert message.status == "pending"
        assert message.id
        assert message.timestamp > 0
        assert message.requires_response is False
        assert "type" not in message.to_wire()

    def test_extra_fields_are_preserved(self):
        message = submit(ApprovalQueue(), id="m1", toolName="shell", riskLevel="low")
        wire = message.to_wire()
        assert wire["toolName"] == "shell"
        assert wire["requiresResponse"] is True

    def test_invalid_message_is_ignored(self):
        queue = ApprovalQueue()
        assert queue.submit({"body": "no title"}) is None
        assert queue.list_messages() == []

    def test_observers_receive_message(self):
        queue = ApprovalQueue()
        seen = []
        queue.on_message(seen.append)
        message = submit(queue)
        assert seen == [message]

    def test_pending_count_and_filtering(self):
        queue = ApprovalQueue()
        submit(queue, id="a")
        submit(queue, id="b")
        queue.decide("a", "approved")
        assert queue.pending_count == 1
        assert [m.id for m in queue.list_messages(status="pending")] == ["b"]
        assert [m.id for m in queue.list_messages()] == ["a", "b"]


class TestDecide:
    def test_approved_with_body_echoes_body(self):
        queue = ApprovalQueue()
        submit(queue, id="m1", body="ALTER TABLE users")
        payload = queue.decide("m1", "approved", "looks fine")

        assert set(payload) == {"id", "status", "feedback", "timestamp", "originalMessage"}
        assert payload["id"] == "m1"
        assert payload["status"] == "approved"
        assert payload["feedback"] == "looks fine"
        assert payload["originalMessage"] == {"id": "m1", "title": "Run migration", "body": "ALTER TABLE users"}

    def test_rejected_never_echoes_body(self):
        queue = ApprovalQueue()
        submit(queue, id="m1", body="rm -rf /")
        payload = queue.decide("m1", "rejected")
        assert payload["originalMessage"]["body"] == "no body"
        assert payload["feedback"] is None

    def test_approved_without_body(self):
        queue = ApprovalQueue()
        submit(queue, id="m1")
        assert queue.decide("m1", "approved")["originalMessage"]["body"] == "no body"

    def test_no_payload_when_response_not_required(self):
        queue = ApprovalQueue()
        submit(queue, id="m1", requiresResponse=False)
        assert queue.decide("m1", "approved") is None
        assert queue.get("m1").status == "approved"

    def test_unknown_id_is_ignored(self):
        queue = ApprovalQueue()
        seen = []
        queue.on_decision(lambda message, payload: seen.append(message))
        assert queue.decide("missing", "approved") is None
        assert seen == []

    def test_invalid_status(self):
        queue = ApprovalQueue()
        submit(queue, id="m1")
        with pytest.raises(ValueError):
            queue.decide("m1", "maybe")

    def test_observers_see_mutated_state(self):
        queue = ApprovalQueue()
        submit(queue, id="m1")
        seen = []
        queue.on_decision(lambda message, payload: seen.append((message.status, message.read, payload["status"])))
        queue.decide("m1", "rejected", "no")
        assert seen == [("rejected", True, "rejected")]

    def test_redecide_allowed_by_default(self):
        queue = ApprovalQueue(allow_redecide=True)
        submit(queue, id="m1")
        queue.decide("m1", "approved")
        payload = queue.decide("m1", "rejected")
        assert payload["status"] == "rejected"

    def test_redecide_disabled(self):
        queue = ApprovalQueue(allow_redecide=False)
        submit(queue, id="m1")
        queue.decide("m1", "approved")
        assert queue.decide("m1", "rejected") is None
        assert queue.get("m1").status == "approved"

    def test_payload_timestamp_override(self):
        message = ApprovalMessage(id="m1", title="t", status="approved", body="b")
        assert build_decision_payload(message, decided_at=1234)["timestamp"] == 1234


class TestAutoApprove:
    def security_request(self, queue, risk):
        return submit(queue, title="Security Evaluation Request", risk_level=risk)

    def test_disabled_by_default(self):
        queue = ApprovalQueue(auto_approve_risk_level="never")
        assert not queue.should_auto_approve(self.security_request(queue, "low"))

    def test_threshold(self):
        queue = ApprovalQueue(auto_approve_risk_level="medium")
        assert queue.should_auto_approve(self.security_request(queue, "low"))
        assert queue.should_auto_approve(self.security_request(queue, "medium"))
        assert not queue.should_auto_approve(self.security_request(queue, "high"))
        assert not queue.should_auto_approve(self.security_request(queue, None))

    def test_only_security_evaluations(self):
        queue = ApprovalQueue(auto_approve_risk_level="high")
        assert not queue.should_auto_approve(submit(queue, risk_level="low"))

    def test_unknown_level_falls_back_to_never(self):
        queue = ApprovalQueue(auto_approve_risk_level="yolo")
        assert queue.auto_approve_risk_level == "never"


class TestQueueHousekeeping:
    def test_mark_read_delete_clear(self):
        queue = ApprovalQueue()
        submit(queue, id="m1")
        submit(queue, id="m2")
        queue.mark_read("m1")
        assert queue.get("m1").read
        assert queue.delete("m1") is True
        assert queue.delete("m1") is False
        queue.clear()
        assert queue.list_messages() == []
