from __future__ import annotations

import math

import pytest

from chaoslab_core.chaos import LimitPolicy, clamp_int, parse_int
from chaoslab_core.config import Limits
from chaoslab_core.errors import ValidationError


@pytest.mark.core
@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (7, 7),
        ("42", 42),
        ("  12abc", 12),
        ("-3", -3),
        (3.9, 3),
        ("3.9", 3),
        (b"15", 15),
    ],
)
def test_parse_int_accepts_integer_prefixes(raw, expected):
    assert parse_int(raw) == expected


@pytest.mark.core
@pytest.mark.parametrize(
    "raw",
    [None, True, False, "", "abc", "  ", [], {}, math.nan, math.inf, object()],
)
def test_parse_int_rejects_garbage(raw):
    assert parse_int(raw) is None


@pytest.mark.core
@pytest.mark.parametrize(
    "raw",
    [
        -(10**12),
        -5,
        0,
        1,
        5,
        10,
        11,
        10**12,
        "999999999999999999999",
        "-1e9",
        2.5,
        "9" * 5000,
        "-" + "9" * 5000,
    ],
)
def test_clamp_int_stays_in_range(raw):
    assert 1 <= clamp_int(raw, 1, 10, 4) <= 10


@pytest.mark.core
@pytest.mark.parametrize("raw", [None, "nope", True, {"seconds": 3}])
def test_clamp_int_returns_fallback_for_unparseable(raw):
    assert clamp_int(raw, 1, 10, 7) == 7


@pytest.mark.core
def test_safe_mode_caps_duration_and_workers():
    policy = LimitPolicy(Limits(max_seconds=45, max_cpu_workers=4), safe_mode=True)

    params = policy.resolve("cpu", {"seconds": 1000, "workers": 99})

    assert params.seconds == 45
    assert params.values == {"workers": 4}
    assert params.defaulted == ()
    assert set(params.clamped) == {"seconds", "workers"}


@pytest.mark.core
@pytest.mark.parametrize(
    ("kind", "field", "limit_attr"),
    [
        ("cpu", "workers", "max_cpu_workers"),
        ("memory", "workers", "max_vm_workers"),
        ("memory", "mb", "max_mem_mb"),
        ("disk", "workers", "max_disk_workers"),
        ("io", "workers", "max_io_workers"),
        ("fork", "workers", "max_fork_workers"),
        ("net", "concurrency", "max_net_concurrency"),
    ],
)
def test_safe_mode_never_exceeds_kind_ceiling(kind, field, limit_attr):
    limits = Limits()
    policy = LimitPolicy(limits, safe_mode=True)

    for requested in (10**9, "10000000", -4, None, "junk"):
        params = policy.resolve(kind, {"seconds": 10**6, field: requested})
        assert params.values[field] <= getattr(limits, limit_attr)
        assert params.seconds <= limits.max_seconds


@pytest.mark.core
def test_low_ceiling_wins_over_default():
    policy = LimitPolicy(Limits(max_seconds=5, max_fork_workers=3), safe_mode=True)

    params = policy.resolve("fork", {})

    assert params.values["workers"] == 3
    assert params.seconds == 5
    assert params.defaulted == ("seconds", "workers")


@pytest.mark.core
def test_unsafe_mode_uses_absolute_ceilings():
    policy = LimitPolicy(Limits(max_seconds=45, max_cpu_workers=4), safe_mode=False)

    params = policy.resolve("cpu", {"seconds": 10**6, "workers": 10**6})
    assert params.seconds == 600
    assert params.values["workers"] == 4096

    memory = policy.resolve("memory", {"mb": 10**9})
    assert memory.values["mb"] == 1024 * 128

    net = policy.resolve("net", {"concurrency": "500"})
    assert net.values["concurrency"] == 500


@pytest.mark.core
def test_resolve_reports_defaulted_fields():
    policy = LimitPolicy(Limits(), safe_mode=True)

    params = policy.resolve("memory", {"seconds": "10", "mb": "lots"})

    assert params.seconds == 10
    assert params.values == {"workers": 1, "mb": 512}
    assert params.defaulted == ("workers", "mb")
    assert params.clamped == ()


@pytest.mark.core
def test_resolve_rejects_unknown_kind():
    with pytest.raises(ValidationError):
        LimitPolicy(Limits()).resolve("gpu", {})


@pytest.mark.core
def test_unready_seconds_bounds():
    policy = LimitPolicy(Limits())
    assert policy.unready_seconds("10") == 10
    assert policy.unready_seconds("abc") == 60
    assert policy.unready_seconds("0") == 1
    assert policy.unready_seconds("99999") == 3600


@pytest.mark.core
def test_parse_int_saturates_very_long_digit_runs():
    assert parse_int("9" * 5000) == 10**18
    assert parse_int("-" + "9" * 5000) == -(10**18)
    assert parse_int("0" * 5000 + "7") == 7
    assert clamp_int("9" * 5000, 1, 10, 4) == 10
    assert clamp_int("-" + "9" * 5000, 1, 10, 4) == 1
