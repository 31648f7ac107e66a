"""Unit tests for PreviewAdmissionController.

Tests cover:
- Capacity bound under arbitrary request/release sequences
- Idempotent re-requests
- FIFO eviction and single listener notification
- Suspension and resume
"""

from __future__ import annotations

import random
from unittest.mock import MagicMock

import pytest

from obtv_preview.core.admission_controller import (
    AdmissionStatus,
    CallbackRevocationListener,
    PreviewAdmissionController,
)


class TestConstruction:
    """Tests for controller construction."""

    def test_rejects_zero_capacity(self):
        with pytest.raises(ValueError):
            PreviewAdmissionController(0)

    def test_initial_status(self):
        controller = PreviewAdmissionController(2)
        status = controller.get_status()
        assert status == AdmissionStatus(active=0, max_concurrent=2, has_capacity=True, suspended=False)


class TestRequestSlot:
    """Tests for request_slot and release_slot."""

    def test_grants_until_capacity(self, admission, listener_factory):
        assert admission.request_slot("a", "url-a", listener_factory())
        assert admission.request_slot("b", "url-b", listener_factory())
        assert not admission.request_slot("c", "url-c", listener_factory())
        assert admission.active_stream_ids() == ("a", "b")

    def test_rerequest_is_idempotent(self, admission, listener_factory):
        listener = listener_factory()
        assert admission.request_slot("a", "url-a", listener)
        assert admission.request_slot("a", "url-a", listener)
        assert admission.active_count == 1

    def test_rerequest_succeeds_at_capacity(self, listener_factory):
        controller = PreviewAdmissionController(1)
        assert controller.request_slot("a", "url-a", listener_factory())
        assert controller.request_slot("a", "url-a", listener_factory())
        assert controller.active_count == 1

    def test_release_frees_capacity_without_notifying(self, admission, listener_factory):
        listener = listener_factory()
        admission.request_slot("a", "url-a", listener)
        admission.request_slot("b", "url-b", listener_factory())

        admission.release_slot("a")

        listener.on_revoked.assert_not_called()
        assert admission.get_status().has_capacity
        assert admission.request_slot("c", "url-c", listener_factory())

    def test_release_unknown_is_noop(self, admission):
        admission.release_slot("missing")
        assert admission.active_count == 0

    def test_capacity_never_exceeded(self, listener_factory):
        """Random request/release sequences never exceed max_concurrent."""
        rng = random.Random(1234)
        controller = PreviewAdmissionController(2)
        ids = [f"s{i}" for i in range(6)]

        for _ in range(500):
            stream_id = rng.choice(ids)
            if rng.random() < 0.6:
                controller.request_slot(stream_id, f"url-{stream_id}", listener_factory())
            else:
                controller.release_slot(stream_id)
            assert controller.active_count <= controller.max_concurrent
            assert len(set(controller.active_stream_ids())) == controller.active_count


class TestForceReleaseOldest:
    """Tests for FIFO eviction."""

    def test_empty_returns_false(self, admission):
        assert admission.force_release_oldest() is False

    def test_evicts_earliest_grant(self, admission, listener_factory):
        first, second = listener_factory(), listener_factory()
        admission.request_slot("a", "url-a", first)
        admission.request_slot("b", "url-b", second)

        assert admission.force_release_oldest() is True

        first.on_revoked.assert_called_once_with("a")
        second.on_revoked.assert_not_called()
        assert admission.active_stream_ids() == ("b",)

    def test_fifo_not_lru(self, admission, listener_factory):
        """Re-requesting an active slot does not refresh its position."""
        first = listener_factory()
        admission.request_slot("a", "url-a", first)
        admission.request_slot("b", "url-b", listener_factory())
        admission.request_slot("a", "url-a", first)

        admission.force_release_oldest()

        first.on_revoked.assert_called_once_with("a")

    def test_listener_may_reenter(self, admission):
        """A listener calling release_slot on itself sees the slot already gone."""
        calls = []

        def on_revoked():
            admission.release_slot("a")
            calls.append(admission.active_stream_ids())

        admission.request_slot("a", "url-a", CallbackRevocationListener(on_revoked))
        admission.request_slot("b", "url-b", MagicMock())

        admission.force_release_oldest()

        assert calls == [("b",)]

    def test_listener_error_is_contained(self, admission, listener_factory):
        failing = listener_factory()
        failing.on_revoked.side_effect = RuntimeError("boom")
        admission.request_slot("a", "url-a", failing)

        assert admission.force_release_oldest() is True
        assert admission.active_count == 0

    def test_single_slot_scenario(self, listener_factory):
        """max_concurrent=1: deny b, evict a once, then grant b."""
        controller = PreviewAdmissionController(1)
        cb_a, cb_b = listener_factory(), listener_factory()

        assert controller.request_slot("a", "urlA", cb_a) is True
        assert controller.request_slot("b", "urlB", cb_b) is False
        assert controller.force_release_oldest() is True
        cb_a.on_revoked.assert_called_once_with("a")
        assert controller.request_slot("b", "urlB", cb_b) is True
        cb_b.on_revoked.assert_not_called()

    def test_acquire_or_steal(self, listener_factory):
        controller = PreviewAdmissionController(1)
        cb_a = listener_factory()
        controller.request_slot("a", "urlA", cb_a)

        assert controller.acquire_or_steal("b", "urlB", listener_factory()) is True

        cb_a.on_revoked.assert_called_once_with("a")
        assert controller.active_stream_ids() == ("b",)


class TestSuspension:
    """Tests for suspend_all and resume."""

    def test_suspend_revokes_every_slot(self, admission, listener_factory):
        first, second = listener_factory(), listener_factory()
        admission.request_slot("a", "url-a", first)
        admission.request_slot("b", "url-b", second)

        assert admission.suspend_all() == 2

        first.on_revoked.assert_called_once_with("a")
        second.on_revoked.assert_called_once_with("b")
        assert admission.active_count == 0

    def test_requests_denied_while_suspended(self, admission, listener_factory):
        admission.suspend_all()

        assert admission.request_slot("a", "url-a", listener_factory()) is False
        assert admission.acquire_or_steal("a", "url-a", listener_factory()) is False
        status = admission.get_status()
        assert status.suspended is True
        assert status.has_capacity is False

    def test_resume_restores_capacity(self, listener_factory):
        controller = PreviewAdmissionController(1)
        controller.request_slot("a", "url-a", listener_factory())

        controller.suspend_all()
        controller.resume()

        assert controller.request_slot("a", "url-a", listener_factory()) is True
        status = controller.get_status()
        assert status.active == 1
        assert status.max_concurrent == 1

    def test_resume_without_suspend_is_noop(self, admission):
        admission.resume()
        assert admission.is_suspended is False

    def test_status_to_dict(self, admission, listener_factory):
        admission.request_slot("a", "url-a", listener_factory())
        assert admission.get_status().to_dict() == {
            "active": 1,
            "maxConcurrent": 2,
            "hasCapacity": True,
            "suspended": False,
        }
