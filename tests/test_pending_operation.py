from sync_client.pending import PendingOperation


def _counter():
    calls = []
    return calls, lambda: calls.append(1)


def test_burst_fires_once_after_quiet_period(manual_timers):
    calls, action = _counter()
    op = PendingOperation(action, 0.5, manual_timers)
    for _ in range(5):
        op.schedule()
        manual_timers.advance(0.2)
    assert calls == []
    assert op.pending
    manual_timers.advance(0.3)
    assert calls == [1]
    assert not op.pending


def test_only_one_timer_live(manual_timers):
    _calls, action = _counter()
    op = PendingOperation(action, 0.5, manual_timers)
    op.schedule()
    op.schedule()
    op.schedule()
    assert len(manual_timers.active()) == 1


def test_superseded_timer_that_fires_late_is_ignored(manual_timers):
    calls, action = _counter()
    op = PendingOperation(action, 0.5, manual_timers)
    op.schedule()
    stale = manual_timers.timers[0]
    op.schedule()
    # the cancelled timer's thread woke up anyway
    stale.fn()
    assert calls == []
    manual_timers.advance(0.5)
    assert calls == [1]


def test_cancel_and_flush(manual_timers):
    calls, action = _counter()
    op = PendingOperation(action, 0.5, manual_timers)
    assert op.cancel() is False
    assert op.flush() is False

    op.schedule()
    assert op.cancel() is True
    manual_timers.advance(1)
    assert calls == []

    op.schedule()
    assert op.flush() is True
    assert calls == [1]
    manual_timers.advance(1)
    assert calls == [1]


def test_reschedule_from_inside_action(manual_timers):
    calls = []

    def action():
        calls.append(manual_timers.now)
        if len(calls) < 3:
            op.schedule()

    op = PendingOperation(action, 1.0, manual_timers)
    op.schedule()
    manual_timers.advance(5)
    assert calls == [1.0, 2.0, 3.0]
