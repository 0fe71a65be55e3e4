import threading

from common.errors import EventualConsistencyError
from teardown.orchestrator import (
    Outcome,
    TeardownTarget,
    run_teardown,
    teardown_target,
)


class FakeResources:
    """In-memory resource type whose deletes can be made to fail."""

    def __init__(self, names, failures=None) -> None:
        self.names = list(names)
        self.failures = dict(failures or {})
        self.deleted = []

    def list(self):
        return list(self.names)

    def delete(self, name: str) -> None:
        if name in self.failures:
            raise self.failures[name]
        self.deleted.append(name)


def always_fails(name: str) -> None:
    raise RuntimeError(f"cannot delete {name}")


def test_matching_resources_are_deleted():
    buckets = FakeResources(["acme-production-public", "other-app-bucket"])
    outcomes = teardown_target(
        TeardownTarget("bucket", buckets.list, buckets.delete, lambda name: "acme" in name)
    )

    assert buckets.deleted == ["acme-production-public"]
    assert [(item.outcome, item.resource) for item in outcomes] == [
        (Outcome.DELETED, "acme-production-public")
    ]


def test_nothing_found_is_skipped():
    (outcome,) = teardown_target(TeardownTarget("function", list, always_fails))
    assert outcome.outcome is Outcome.SKIPPED
    assert outcome.message == "none found"


def test_eventual_consistency_is_retried_later():
    functions = FakeResources(
        ["acme-origin-request", "acme-inbound"],
        failures={
            "acme-origin-request": EventualConsistencyError(
                "acme-origin-request", "replicas are still being removed"
            )
        },
    )
    outcomes = teardown_target(TeardownTarget("function", functions.list, functions.delete))

    assert [item.outcome for item in outcomes] == [Outcome.RETRY_LATER, Outcome.DELETED]
    assert "replicas" in outcomes[0].message


def test_listing_failure_is_fatal_for_that_type_only():
    def broken_listing():
        raise ConnectionError("endpoint unreachable")

    (outcome,) = teardown_target(TeardownTarget("log_group", broken_listing, always_fails))
    assert outcome.outcome is Outcome.FATAL
    assert outcome.resource is None


def test_a_failing_type_does_not_stop_the_others():
    buckets = FakeResources(["acme-a", "acme-b"])
    users = FakeResources(["acme-chris"])
    report = run_teardown(
        [
            TeardownTarget("bucket", buckets.list, buckets.delete),
            TeardownTarget("instance", lambda: ["i-1", "i-2"], always_fails),
            TeardownTarget("iam_user", users.list, users.delete),
        ]
    )

    assert buckets.deleted == ["acme-a", "acme-b"]
    assert users.deleted == ["acme-chris"]
    assert report.counts() == {
        "bucket": {"deleted": 2, "skipped": 0, "retry_later": 0, "fatal": 0},
        "instance": {"deleted": 0, "skipped": 0, "retry_later": 0, "fatal": 2},
        "iam_user": {"deleted": 1, "skipped": 0, "retry_later": 0, "fatal": 0},
    }
    assert not report.complete
    assert [item.resource for item in report.for_type("instance")] == ["i-1", "i-2"]


def test_types_run_concurrently():
    barrier = threading.Barrier(2, timeout=5)

    def wait_for_peer():
        barrier.wait()
        return ["resource"]

    report = run_teardown(
        [
            TeardownTarget("bucket", wait_for_peer, lambda name: None),
            TeardownTarget("function", wait_for_peer, lambda name: None),
        ]
    )
    assert report.complete
    assert [item.resource_type for item in report.outcomes] == ["bucket", "function"]


def test_report_counts_skips_as_complete():
    report = run_teardown([TeardownTarget("parameter", list, always_fails)])
    assert report.complete
    assert report.counts()["parameter"]["skipped"] == 1


def test_no_targets_is_an_empty_report():
    report = run_teardown([])
    assert report.outcomes == []
    assert report.complete
