"""Release readiness decision built from both detection passes."""
from __future__ import annotations

import logging

from .autotest_pipeline import AutotestPipeline
from .fanout import gather_outcomes
from .models import (
    DetectionConfig,
    DetectionResult,
    IssueKind,
    ReleaseDecision,
    ReleaseReadiness,
    SectionStatus,
    SuiteResult,
    SuiteStatus,
)
from .pipeline import IssueDetectionPipeline


def decide(issues: DetectionResult, suites: list[SuiteResult]) -> ReleaseDecision:
    kinds = {issue.kind for issue in issues.issues}
    if IssueKind.BLOCKING in kinds:
        return ReleaseDecision.BLOCKED
    if IssueKind.CRITICAL in kinds or IssueKind.RESOLVED_BLOCKING in kinds:
        return ReleaseDecision.UNCERTAIN
    unreviewed = [
        suite
        for suite in suites
        if suite.status == SuiteStatus.FAILED and suite.section_status != SectionStatus.REVIEWED_NOT_BLOCKING
    ]
    if unreviewed:
        return ReleaseDecision.UNCERTAIN
    return ReleaseDecision.READY


class ReleaseReadinessAnalyzer:
    def __init__(self, *, issues: IssueDetectionPipeline, autotests: AutotestPipeline):
        self.issues = issues
        self.autotests = autotests
        self.logger = logging.getLogger("release_readiness")

    async def analyze(self, config: DetectionConfig) -> ReleaseReadiness:
        outcome = await gather_outcomes(
            {
                "issues": self.issues.run(config),
                "autotests": self.autotests.run(config.channel, config.date, use_semantic=config.use_semantic),
            }
        )
        if "issues" in outcome.failures:
            raise outcome.failures["issues"]
        suites: list[SuiteResult] = outcome.successes.get("autotests", [])
        if "autotests" in outcome.failures:
            self.logger.warning(
                "autotest_pass_failed channel=%s date=%s error=%s",
                config.channel,
                config.date,
                outcome.failures["autotests"],
            )
        issues: DetectionResult = outcome.successes["issues"]
        decision = decide(issues, suites)
        self.logger.info(
            "release_readiness channel=%s date=%s decision=%s issues=%s suites=%s",
            config.channel,
            config.date,
            decision.value,
            len(issues.issues),
            len(suites),
        )
        return ReleaseReadiness(
            date=config.date,
            channel=config.channel,
            decision=decision,
            issues=issues,
            suites=suites,
        )
