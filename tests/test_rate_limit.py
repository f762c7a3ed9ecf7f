from concurrent.futures import ThreadPoolExecutor

from blog_engine.pipeline.rate_limit import RateLimiter
from blog_engine.scheduler import SWEEP_JOB_ID, setup_scheduler, sweep_rate_limits


def test_admits_up_to_max_then_rejects():
    limiter = RateLimiter(window_seconds=60, max_requests=3)
    assert [limiter.admit("a@x.com", 100.0 + i) for i in range(4)] == [True, True, True, False]


def test_rejection_does_not_extend_count():
    limiter = RateLimiter(window_seconds=60, max_requests=1)
    assert limiter.admit("a@x.com", 0.0)
    assert not limiter.admit("a@x.com", 1.0)
    assert not limiter.admit("a@x.com", 2.0)
    assert limiter._records["a@x.com"].count == 1


def test_fresh_window_after_reset():
    limiter = RateLimiter(window_seconds=60, max_requests=2)
    assert limiter.admit("a@x.com", 0.0)
    assert limiter.admit("a@x.com", 10.0)
    assert not limiter.admit("a@x.com", 60.0)  # boundary is still inside the window
    assert limiter.admit("a@x.com", 60.5)
    assert limiter._records["a@x.com"].count == 1


def test_identities_are_independent():
    limiter = RateLimiter(window_seconds=60, max_requests=1)
    assert limiter.admit("a@x.com", 0.0)
    assert limiter.admit("b@x.com", 0.0)
    assert not limiter.admit("a@x.com", 1.0)


def test_concurrent_admissions_never_exceed_max():
    limiter = RateLimiter(window_seconds=60, max_requests=3)
    with ThreadPoolExecutor(max_workers=16) as pool:
        results = list(pool.map(lambda _: limiter.admit("a@x.com", 5.0), range(50)))
    assert results.count(True) == 3


def test_sweep_drops_only_expired_records():
    limiter = RateLimiter(window_seconds=60, max_requests=3)
    limiter.admit("old@x.com", 0.0)
    limiter.admit("new@x.com", 50.0)
    assert limiter.sweep(70.0) == 1
    assert len(limiter) == 1
    assert "new@x.com" in limiter._records


def test_sweep_job_uses_monotonic_clock():
    limiter = RateLimiter(window_seconds=60, max_requests=3)
    limiter.admit("stale@x.com", -1000.0)
    sweep_rate_limits(limiter)
    assert len(limiter) == 0


def test_scheduler_registers_sweep_job(config):
    limiter = RateLimiter(window_seconds=60, max_requests=3)
    scheduler = setup_scheduler(config, limiter)
    job = scheduler.get_job(SWEEP_JOB_ID)
    assert job is not None
    assert job.args == (limiter,)
