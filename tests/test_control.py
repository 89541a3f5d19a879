"""Tests for the in-process run controller."""

from __future__ import annotations

import threading

from painflow.control import RunController


def test_untracked_flow_cannot_be_canceled():
    controller = RunController()
    assert controller.request_cancel("flow-1") is False
    assert controller.is_cancel_requested("flow-1") is False


def test_cancel_round_trip():
    controller = RunController()
    controller.mark_running("flow-1")
    assert controller.is_cancel_requested("flow-1") is False

    assert controller.request_cancel("flow-1") is True
    assert controller.is_cancel_requested("flow-1") is True

    controller.clear("flow-1")
    assert controller.is_tracked("flow-1") is False
    assert controller.is_cancel_requested("flow-1") is False


def test_mark_running_resets_stale_flag():
    controller = RunController()
    controller.mark_running("flow-1")
    controller.request_cancel("flow-1")
    controller.mark_running("flow-1")
    assert controller.is_cancel_requested("flow-1") is False


def test_clear_is_idempotent_and_scoped():
    controller = RunController()
    controller.mark_running("flow-1")
    controller.mark_running("flow-2")
    controller.clear("flow-1")
    controller.clear("flow-1")
    assert controller.tracked_flow_ids() == ["flow-2"]


def test_concurrent_cancel_requests():
    controller = RunController()
    controller.mark_running("flow-1")
    results: list[bool] = []

    threads = [
        threading.Thread(target=lambda: results.append(controller.request_cancel("flow-1")))
        for _ in range(8)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert results == [True] * 8
    assert controller.is_cancel_requested("flow-1") is True
