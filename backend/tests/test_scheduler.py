from datetime import datetime

from apscheduler.schedulers.background import BackgroundScheduler

from tfd_reports.services.scheduler import ReportScheduler, schedule_job_id, schedule_store


def test_reload_arms_only_schedules_inside_lookahead(report_scheduler, background_scheduler, make_schedule):
    soon = make_schedule(time_of_day="07:45")
    make_schedule(time_of_day="12:00")
    make_schedule(time_of_day="07:30", is_active=False)
    make_schedule(recurrence="on_demand", time_of_day=None)

    armed = report_scheduler.reload()

    assert armed == 1
    assert report_scheduler.armed_schedule_ids() == [soon.id]
    assert report_scheduler.armed_run_time(soon.id) == datetime(2024, 3, 1, 7, 45, 0)
    assert background_scheduler.get_job(schedule_job_id(soon.id)) is not None


def test_reload_does_not_rearm_armed_schedules(report_scheduler, make_schedule):
    make_schedule(time_of_day="07:45")

    assert report_scheduler.reload() == 1
    assert report_scheduler.reload() == 0


def test_overdue_schedule_is_armed_for_immediate_execution(report_scheduler, background_scheduler, make_schedule, clock):
    schedule = make_schedule(time_of_day="07:30")
    clock.set(datetime(2024, 3, 1, 9, 0, 0))

    assert report_scheduler.arm(schedule) is True
    assert report_scheduler.is_armed(schedule.id)
    assert background_scheduler.get_job(schedule_job_id(schedule.id)) is not None


def test_arm_leaves_out_of_window_schedule_unscheduled(report_scheduler, background_scheduler, make_schedule):
    schedule = make_schedule(time_of_day="20:00")

    assert report_scheduler.arm(schedule) is False
    assert not report_scheduler.is_armed(schedule.id)
    assert background_scheduler.get_job(schedule_job_id(schedule.id)) is None


def test_deactivating_cancels_timer_and_sweep_skips_it(
    report_scheduler, background_scheduler, make_schedule, db, renderer, clock
):
    schedule = make_schedule()
    report_scheduler.reload()
    assert report_scheduler.is_armed(schedule.id)

    updated = schedule_store.set_schedule_active(db, schedule.id, False)
    report_scheduler.schedule_changed(updated)

    assert not report_scheduler.is_armed(schedule.id)
    assert background_scheduler.get_job(schedule_job_id(schedule.id)) is None

    clock.set(datetime(2024, 3, 1, 8, 0, 0))
    assert report_scheduler.sweep_now(now=clock()) == []
    assert report_scheduler.reload() == 0
    assert renderer.calls == []


def test_rescheduling_moves_the_timer(report_scheduler, make_schedule, db):
    schedule = make_schedule(time_of_day="07:45")
    report_scheduler.reload()

    updated = schedule_store.update_schedule(db, schedule.id, {"time_of_day": "07:50"}, now=datetime(2024, 3, 1, 7, 0, 0))
    report_scheduler.schedule_changed(updated)

    assert report_scheduler.armed_run_time(schedule.id) == datetime(2024, 3, 1, 7, 50, 0)


def test_delete_disarms(report_scheduler, background_scheduler, make_schedule, db):
    schedule = make_schedule(time_of_day="07:45")
    report_scheduler.reload()

    schedule_store.delete_schedule(db, schedule.id)
    report_scheduler.schedule_deleted(schedule.id)

    assert report_scheduler.armed_schedule_ids() == []
    assert background_scheduler.get_job(schedule_job_id(schedule.id)) is None


def test_fire_runs_and_rearms_from_stored_next_run(
    session_factory, runner, background_scheduler, make_schedule, renderer, clock
):
    scheduler = ReportScheduler(
        session_factory=session_factory,
        runner=runner,
        scheduler=background_scheduler,
        lookahead_minutes=60 * 48,
        clock=clock,
    )
    schedule = make_schedule()
    scheduler.reload()
    clock.set(datetime(2024, 3, 1, 8, 0, 0))

    outcome = scheduler.fire(schedule.id)

    assert outcome.status == "success"
    assert len(renderer.calls) == 1
    assert scheduler.is_armed(schedule.id)
    assert scheduler.armed_run_time(schedule.id) == datetime(2024, 3, 2, 8, 0, 0)


def test_fire_after_failure_still_rearms(
    session_factory, runner, background_scheduler, make_schedule, renderer, clock
):
    scheduler = ReportScheduler(
        session_factory=session_factory,
        runner=runner,
        scheduler=background_scheduler,
        lookahead_minutes=60 * 48,
        clock=clock,
    )
    schedule = make_schedule(report_type="municipalities")
    renderer.failing.add("municipalities")
    clock.set(datetime(2024, 3, 1, 8, 0, 0))

    outcome = scheduler.fire(schedule.id)

    assert outcome.status == "error"
    assert scheduler.armed_run_time(schedule.id) == datetime(2024, 3, 2, 8, 0, 0)


def test_fire_of_deleted_schedule_is_skipped(report_scheduler, renderer):
    outcome = report_scheduler.fire(999)

    assert outcome.status == "skipped"
    assert renderer.calls == []
    assert not report_scheduler.is_armed(999)


def test_run_now_executes_on_demand_schedule(report_scheduler, make_schedule, renderer):
    schedule = make_schedule(recurrence="on_demand", time_of_day=None)

    outcome = report_scheduler.run_now(schedule.id)

    assert outcome.status == "success"
    assert outcome.next_run_at is None
    assert len(renderer.calls) == 1
    assert not report_scheduler.is_armed(schedule.id)


def test_sweep_now_rearms_executed_schedules(
    session_factory, runner, background_scheduler, make_schedule, clock
):
    scheduler = ReportScheduler(
        session_factory=session_factory,
        runner=runner,
        scheduler=background_scheduler,
        lookahead_minutes=60 * 48,
        clock=clock,
    )
    schedule = make_schedule()
    clock.set(datetime(2024, 3, 1, 8, 30, 0))

    outcomes = scheduler.sweep_now(now=clock())

    assert [o.schedule_id for o in outcomes] == [schedule.id]
    assert scheduler.armed_run_time(schedule.id) == datetime(2024, 3, 2, 8, 0, 0)


def test_start_registers_periodic_jobs_and_shutdown_clears(session_factory, runner, make_schedule, clock):
    background = BackgroundScheduler()
    scheduler = ReportScheduler(session_factory=session_factory, runner=runner, scheduler=background, clock=clock)
    schedule = make_schedule(time_of_day="07:45")

    scheduler.start()
    try:
        assert scheduler.running
        assert background.get_job("report_schedules_reload") is not None
        assert background.get_job("report_schedules_sweep") is not None
        assert scheduler.is_armed(schedule.id)
    finally:
        scheduler.shutdown()

    assert not scheduler.running
    assert scheduler.armed_schedule_ids() == []


def test_unstarted_scheduler_keeps_no_timers(session_factory, runner, make_schedule, renderer, clock):
    background = BackgroundScheduler()
    idle = ReportScheduler(session_factory=session_factory, runner=runner, scheduler=background, clock=clock)
    schedule = make_schedule(time_of_day="07:45")

    assert idle.schedule_changed(schedule) is False
    assert idle.reload() == 0
    outcome = idle.run_now(schedule.id)

    assert outcome.status == "success"
    assert len(renderer.calls) == 1
    assert idle.armed_schedule_ids() == []
    assert background.get_jobs() == []


def test_fire_skips_schedule_deactivated_elsewhere(report_scheduler, make_schedule, session_factory, renderer, clock):
    schedule = make_schedule(time_of_day="07:45")
    report_scheduler.reload()

    # Another process changes the row without touching this scheduler's timers
    other = session_factory()
    try:
        schedule_store.set_schedule_active(other, schedule.id, False)
    finally:
        other.close()
    clock.set(datetime(2024, 3, 1, 7, 45, 0))

    outcome = report_scheduler.fire(schedule.id)

    assert outcome.status == "skipped"
    assert renderer.calls == []
    assert not report_scheduler.is_armed(schedule.id)


def test_fire_skips_schedule_moved_later_and_follows_the_row(
    session_factory, runner, background_scheduler, make_schedule, renderer, clock
):
    scheduler = ReportScheduler(
        session_factory=session_factory,
        runner=runner,
        scheduler=background_scheduler,
        lookahead_minutes=60 * 24,
        clock=clock,
    )
    schedule = make_schedule(time_of_day="07:45")
    scheduler.reload()

    other = session_factory()
    try:
        schedule_store.update_schedule(other, schedule.id, {"time_of_day": "20:00"}, now=datetime(2024, 3, 1, 7, 0, 0))
    finally:
        other.close()
    clock.set(datetime(2024, 3, 1, 7, 45, 0))

    outcome = scheduler.fire(schedule.id)

    assert outcome.status == "skipped"
    assert renderer.calls == []
    assert scheduler.armed_run_time(schedule.id) == datetime(2024, 3, 1, 20, 0, 0)


def test_reload_follows_changes_made_elsewhere(report_scheduler, background_scheduler, make_schedule, db):
    schedule = make_schedule(time_of_day="07:45")
    report_scheduler.reload()

    schedule_store.update_schedule(db, schedule.id, {"time_of_day": "07:50"}, now=datetime(2024, 3, 1, 7, 0, 0))
    assert report_scheduler.reload() == 1
    assert report_scheduler.armed_run_time(schedule.id) == datetime(2024, 3, 1, 7, 50, 0)

    schedule_store.update_schedule(db, schedule.id, {"time_of_day": "20:00"}, now=datetime(2024, 3, 1, 7, 0, 0))
    assert report_scheduler.reload() == 0
    assert not report_scheduler.is_armed(schedule.id)
    assert background_scheduler.get_job(schedule_job_id(schedule.id)) is None


def test_reload_rearms_timer_dropped_by_apscheduler(report_scheduler, background_scheduler, make_schedule):
    schedule = make_schedule(time_of_day="07:45")
    report_scheduler.reload()

    # A misfired job is discarded without calling back
    background_scheduler.remove_job(schedule_job_id(schedule.id))
    assert report_scheduler.is_armed(schedule.id)

    assert report_scheduler.reload() == 1
    assert background_scheduler.get_job(schedule_job_id(schedule.id)) is not None
