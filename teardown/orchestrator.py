"""Enumerate-and-delete teardown, independent of the graph that built the cloud.

Each ``TeardownTarget`` knows how to list one resource type, which of the
listed resources belong to the application, and how to delete one of them.
Types run concurrently; resources within a type run one after another, and a
failure is recorded against that resource only.
"""
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from typing import Callable, Iterable, Optional, Sequence

from attrs import define, field

from common.errors import EventualConsistencyError
from common.log import logger


class Outcome(str, Enum):
    DELETED = "deleted"
    SKIPPED = "skipped"
    RETRY_LATER = "retry_later"
    FATAL = "fatal"


@define(slots=True, frozen=True)
class ResourceOutcome:
    resource_type: str
    outcome: Outcome
    resource: Optional[str] = None
    message: Optional[str] = None


@define(slots=True, frozen=True)
class TeardownTarget:
    resource_type: str
    list_resources: Callable[[], Iterable[str]]
    delete_resource: Callable[[str], None]
    match: Callable[[str], bool] = field(
        default=lambda resource: True,
        metadata={"description": "Selects the application's resources among those listed"},
    )


@define(slots=True)
class TeardownReport:
    outcomes: list[ResourceOutcome] = field(factory=list)

    def counts(self) -> dict[str, dict[str, int]]:
        """Per resource type, how many resources ended in each outcome."""
        counts: dict[str, dict[str, int]] = {}
        for item in self.outcomes:
            per_type = counts.setdefault(
                item.resource_type, {outcome.value: 0 for outcome in Outcome}
            )
            per_type[item.outcome.value] += 1
        return counts

    def for_type(self, resource_type: str) -> list[ResourceOutcome]:
        return [item for item in self.outcomes if item.resource_type == resource_type]

    @property
    def complete(self) -> bool:
        return all(
            item.outcome in (Outcome.DELETED, Outcome.SKIPPED) for item in self.outcomes
        )


def _delete_one(target: TeardownTarget, resource: str) -> ResourceOutcome:
    try:
        target.delete_resource(resource)
    except EventualConsistencyError as e:
        logger.warning(
            "Resource not deletable yet, try again later",
            resource_type=target.resource_type,
            resource=resource,
            reason=str(e),
        )
        return ResourceOutcome(target.resource_type, Outcome.RETRY_LATER, resource, str(e))
    except Exception as e:
        logger.exception(
            "Failed to delete resource", resource_type=target.resource_type, resource=resource
        )
        return ResourceOutcome(target.resource_type, Outcome.FATAL, resource, str(e))
    logger.info("Deleted resource", resource_type=target.resource_type, resource=resource)
    return ResourceOutcome(target.resource_type, Outcome.DELETED, resource)


def teardown_target(target: TeardownTarget) -> list[ResourceOutcome]:
    """Delete every matching resource of one type; never raises."""
    try:
        resources = [resource for resource in target.list_resources() if target.match(resource)]
    except Exception as e:
        logger.exception("Failed to list resources", resource_type=target.resource_type)
        return [ResourceOutcome(target.resource_type, Outcome.FATAL, message=str(e))]

    if not resources:
        logger.info("No resources found", resource_type=target.resource_type)
        return [
            ResourceOutcome(target.resource_type, Outcome.SKIPPED, message="none found")
        ]
    return [_delete_one(target, resource) for resource in resources]


def run_teardown(
    targets: Sequence[TeardownTarget], max_workers: Optional[int] = None
) -> TeardownReport:
    """Run every target concurrently and aggregate the outcomes in target order."""
    report = TeardownReport()
    if not targets:
        return report
    with ThreadPoolExecutor(max_workers=max_workers or len(targets)) as executor:
        for outcomes in executor.map(teardown_target, targets):
            report.outcomes.extend(outcomes)
    logger.info("Teardown finished", counts=report.counts())
    return report
