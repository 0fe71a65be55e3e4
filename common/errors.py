from typing import Optional, Sequence


class CloudError(Exception):
    """Base class for composition and teardown errors."""


class ConfigurationError(CloudError):
    """The Config Source failed pre-flight validation.

    Carries every violation found, not just the first one.
    """

    def __init__(self, violations: Sequence[str]) -> None:
        self.violations = tuple(violations)
        super().__init__(
            "Invalid cloud configuration:\n"
            + "\n".join(f"  - {violation}" for violation in self.violations)
        )


class DependencyUnavailableError(CloudError):
    """A unit read an input that was never (or not yet) produced."""

    def __init__(self, unit: str, key: str, reason: str = "is not available") -> None:
        self.unit = unit
        self.key = key
        super().__init__(f"Unit '{unit}': input '{key}' {reason}")


class ProviderError(CloudError):
    """The Resource Provider rejected a call made while building a unit."""

    def __init__(self, message: str, unit: Optional[str] = None) -> None:
        self.unit = unit
        self.message = message
        prefix = f"Unit '{unit}': " if unit else ""
        super().__init__(f"{prefix}{message}")

    def for_unit(self, unit: str) -> "ProviderError":
        return ProviderError(self.message, unit=unit)


class EventualConsistencyError(CloudError):
    """The provider has not finished propagating an earlier change; retry later."""

    def __init__(self, resource: str, message: str) -> None:
        self.resource = resource
        super().__init__(f"{resource}: {message}")
