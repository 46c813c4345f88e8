"""
pipewright.orchestration.trigger_gate - Ref-Based Job Gating
==============================================================

Decides, per job and trigger event, whether the job runs at all. A job the
gate rejects is recorded as SKIPPED and never provisions an environment.

Pattern forms:
    main               exact ref name
    /^release-.*$/     regular expression, matched with re.search
    branches           any branch event
    tags               any tag event

Evaluation:
    - no rule            → runs
    - only given         → runs if ANY only-pattern matches
    - except given       → runs unless ANY except-pattern matches
    - both given         → both conditions must hold
"""

from __future__ import annotations

import re

import structlog

from pipewright.core.enums import RefKind
from pipewright.core.models import Job, TriggerEvent, is_regex_pattern


logger = structlog.get_logger()


def pattern_matches(pattern: str, event: TriggerEvent) -> bool:
    """Whether a single ref pattern matches ``event``."""
    if pattern == "branches":
        return event.kind == RefKind.BRANCH
    if pattern == "tags":
        return event.kind == RefKind.TAG
    if is_regex_pattern(pattern):
        return re.search(pattern[1:-1], event.ref) is not None
    return pattern == event.ref


class TriggerGate:
    """Evaluates job trigger rules against a trigger event.

    Example:
        >>> gate = TriggerGate()
        >>> gate.allows(deploy_job, TriggerEvent.branch("main"))
        True
        >>> gate.allows(deploy_job, TriggerEvent.branch("feature/login"))
        False
    """

    def __init__(self) -> None:
        self._logger = logger.bind(component="trigger_gate")

    def allows(self, job: Job, event: TriggerEvent) -> bool:
        rule = job.trigger
        if rule is None or rule.is_empty:
            return True

        if rule.only and not any(pattern_matches(p, event) for p in rule.only):
            self._logger.debug("job_gated", job=job.name, ref=event.ref, reason="only")
            return False
        if any(pattern_matches(p, event) for p in rule.except_):
            self._logger.debug("job_gated", job=job.name, ref=event.ref, reason="except")
            return False
        return True
