"""Environment profiles: fixed sampling and retention policy per environment."""

from dataclasses import dataclass


@dataclass(frozen=True)
class EnvironmentProfile:
    """Capture policy for one deployment environment.

    Attributes:
        name: Environment name ("development", "staging", "production"
              or "unknown").
        error_sample_rate: Fraction of events forwarded, in [0, 1].
        trace_sample_rate: Fraction of transactions forwarded, in [0, 1].
        debug: Whether the pipeline logs every forwarded event.
        max_breadcrumbs: Breadcrumb history kept per scope.
        flush_timeout: Seconds to wait for delivery on shutdown.
    """

    name: str
    error_sample_rate: float
    trace_sample_rate: float
    debug: bool
    max_breadcrumbs: int
    flush_timeout: float


DEVELOPMENT = EnvironmentProfile(
    name="development",
    error_sample_rate=1.0,
    trace_sample_rate=1.0,
    debug=True,
    max_breadcrumbs=50,
    flush_timeout=5.0,
)

STAGING = EnvironmentProfile(
    name="staging",
    error_sample_rate=0.5,
    trace_sample_rate=0.3,
    debug=False,
    max_breadcrumbs=100,
    flush_timeout=3.0,
)

PRODUCTION = EnvironmentProfile(
    name="production",
    error_sample_rate=0.1,
    trace_sample_rate=0.05,
    debug=False,
    max_breadcrumbs=100,
    flush_timeout=2.0,
)

UNKNOWN = EnvironmentProfile(
    name="unknown",
    error_sample_rate=0.1,
    trace_sample_rate=0.05,
    debug=False,
    max_breadcrumbs=100,
    flush_timeout=2.0,
)

_PROFILES = {p.name: p for p in (DEVELOPMENT, STAGING, PRODUCTION)}


def resolve_profile(name: str | None) -> EnvironmentProfile:
    """Return the profile for an environment name.

    Matching ignores surrounding whitespace and case. Unrecognized or
    missing names resolve to the ``unknown`` profile instead of failing.
    """
    if not name:
        return UNKNOWN
    return _PROFILES.get(name.strip().lower(), UNKNOWN)
