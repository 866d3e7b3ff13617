# tpc/config.py

"""
Controller configuration.

This module contains only configuration data and its sanity checks.
"""

from tpc.constants import APP_NAME, CLEAN_UP_DELAY, DEFAULT_CLEAN_UP_RETRY_TIMES


# -------------------------------------------------------------------
# Feature flags
# -------------------------------------------------------------------
# Slice-id, slice-QoS and checker on/off. When False only attack entries
# and flush are served.
ENABLE_SLICE_CHECKER = True

# False: only the ACL punt rule is limited to locally mastered devices.
# True:  checker rules and slice meters are limited to them as well.
MASTERSHIP_FILTER_ALL = False


TPC_CONFIG = {
    "app_name": APP_NAME,

    "rest": {
        "host": "127.0.0.1",
        "port": 9090,
        # every route lives under this prefix, e.g. /tpc/add_attack
        "mount": "/tpc",
    },

    "cleanup": {
        "retry_times": DEFAULT_CLEAN_UP_RETRY_TIMES,
        "delay_ms": CLEAN_UP_DELAY,
    },

    "enable_slice_checker": ENABLE_SLICE_CHECKER,
    "mastership_filter_all": MASTERSHIP_FILTER_ALL,
}


def validate_config(conf):
    """Fail fast on missing or out-of-range settings."""
    assert conf is not None, "TPC config is None"
    assert conf.get("app_name"), "TPC config: missing app_name"

    rest = conf.get("rest")
    assert rest is not None, "TPC config: missing rest section"
    assert "host" in rest and "port" in rest, "TPC config: rest needs host and port"
    assert 0 <= int(rest["port"]) <= 65535, f"TPC config: invalid rest port {rest['port']}"
    assert str(rest.get("mount", "")).startswith("/"), f"TPC config: rest mount must start with '/', got {rest.get('mount')!r}"

    cleanup = conf.get("cleanup")
    assert cleanup is not None, "TPC config: missing cleanup section"
    assert int(cleanup["retry_times"]) >= 0, "TPC config: cleanup.retry_times must be >= 0"
    assert int(cleanup["delay_ms"]) >= 0, "TPC config: cleanup.delay_ms must be >= 0"

    assert "enable_slice_checker" in conf, "TPC config: missing enable_slice_checker"
    assert "mastership_filter_all" in conf, "TPC config: missing mastership_filter_all"
    return conf
