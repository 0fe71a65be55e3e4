"""Composition Graph Runner.

Units are pure functions ``build(ctx) -> outputs``. Each declares the
outputs it reads (``requires`` / ``optional``, as ``"<unit>.<output>"``
keys), the outputs it produces and, optionally, a config predicate that
gates the whole unit. ``compose`` checks the declarations against the
hand-specified order, then runs the CONSTRUCT units followed by the
INITIALIZE units, threading outputs forward.
"""
from enum import Enum
from graphlib import CycleError, TopologicalSorter
from typing import Any, Callable, Mapping, Optional, Sequence

from attrs import define, field

from common.config import CloudConfig, validate_config
from common.environment import EnvironmentIdentity
from common.errors import (
    CloudError,
    ConfigurationError,
    DependencyUnavailableError,
    ProviderError,
)
from common.log import logger

Outputs = Mapping[str, Any]
Condition = Callable[[CloudConfig], bool]


class Phase(str, Enum):
    CONSTRUCT = "construct"
    INITIALIZE = "initialize"


class Absence(Enum):
    ABSENT = "absent"

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "ABSENT"


# Marks an output whose producer was skipped, or that it chose not to build.
ABSENT = Absence.ABSENT


def is_absent(value: Any) -> bool:
    return value is ABSENT


@define(slots=True)
class Deferred:
    """Placeholder for an INITIALIZE-phase output."""

    key: str
    value: Any = field(default=None)
    resolved: bool = field(default=False)

    def resolve(self, value: Any) -> None:
        self.value = value
        self.resolved = True

    def get(self, unit: str) -> Any:
        if not self.resolved:
            raise DependencyUnavailableError(unit, self.key, "has not been resolved yet")
        return self.value


def _unit_of(key: str) -> str:
    return key.split(".", 1)[0]


@define(slots=True, frozen=True)
class Unit:
    id: str
    build: Callable[["UnitContext"], Outputs]
    requires: tuple[str, ...] = field(default=(), converter=tuple)
    optional: tuple[str, ...] = field(default=(), converter=tuple)
    provides: tuple[str, ...] = field(default=(), converter=tuple)
    condition: Optional[Condition] = field(default=None)
    phase: Phase = field(default=Phase.CONSTRUCT)

    @property
    def depends_on(self) -> tuple[str, ...]:
        seen: dict[str, None] = {}
        for key in self.requires + self.optional:
            seen.setdefault(_unit_of(key), None)
        return tuple(seen)

    def key(self, output: str) -> str:
        return f"{self.id}.{output}"

    def enabled(self, config: CloudConfig) -> bool:
        return self.condition is None or self.condition(config)


class UnitContext:
    """What a unit may see while building: config, identity, provider and its declared inputs."""

    def __init__(
        self,
        unit: Unit,
        config: CloudConfig,
        identity: EnvironmentIdentity,
        provider: Any,
        inputs: Mapping[str, Any],
    ) -> None:
        self.unit = unit
        self.config = config
        self.identity = identity
        self.provider = provider
        self._inputs = inputs

    def _lookup(self, key: str) -> Any:
        value = self._inputs[key]
        if isinstance(value, Deferred):
            return value.get(self.unit.id)
        return value

    def require(self, key: str) -> Any:
        if key not in self.unit.requires:
            raise DependencyUnavailableError(self.unit.id, key, "is not declared as required")
        value = self._lookup(key)
        if value is ABSENT:
            raise DependencyUnavailableError(
                self.unit.id, key, "was omitted by a conditionally skipped unit"
            )
        return value

    def optional(self, key: str) -> Any:
        """Return the input or ``ABSENT``; never a silent default."""
        if key not in self.unit.optional:
            raise DependencyUnavailableError(self.unit.id, key, "is not declared as optional")
        return self._lookup(key)

    def name(self, resource_type: str, action: Optional[str] = None, unique: bool = False) -> str:
        return self.identity.build_resource_name(resource_type, action=action, unique=unique)

    def resource_id(self, resource_type: str, action: Optional[str] = None) -> str:
        return self.identity.build_resource_id(resource_type, action=action)


@define(slots=True, frozen=True)
class OperatorOutput:
    name: str
    key: str
    description: str


@define(slots=True, frozen=True)
class CompositionResult:
    outputs: Mapping[str, Any]
    operator_outputs: Mapping[str, Any]
    invoked: tuple[str, ...]
    skipped: tuple[str, ...]

    def get(self, key: str) -> Any:
        return self.outputs.get(key, ABSENT)


def validate_graph(units: Sequence[Unit]) -> None:
    """Check unit declarations against the given order, failing fast."""
    by_id: dict[str, Unit] = {}
    position: dict[str, int] = {}
    for index, unit in enumerate(units):
        if unit.id in by_id:
            raise DependencyUnavailableError(unit.id, unit.id, "is declared twice")
        by_id[unit.id] = unit
        position[unit.id] = index

    for unit in units:
        for key in unit.requires + unit.optional:
            producer = by_id.get(_unit_of(key))
            if producer is None or key.split(".", 1)[-1] not in producer.provides:
                raise DependencyUnavailableError(unit.id, key, "is not provided by any unit")
            if producer.id == unit.id:
                raise DependencyUnavailableError(unit.id, key, "is produced by the unit itself")
            if unit.phase is Phase.CONSTRUCT and producer.phase is Phase.INITIALIZE:
                raise DependencyUnavailableError(
                    unit.id, key, "is only available in the initialization phase"
                )
            if (
                key in unit.requires
                and producer.condition is not None
                and producer.condition is not unit.condition
            ):
                raise DependencyUnavailableError(
                    unit.id, key, "comes from a conditional unit and must be optional"
                )

    try:
        TopologicalSorter(
            {unit.id: unit.depends_on for unit in units}
        ).prepare()
    except CycleError as e:
        cycle = e.args[1]
        raise DependencyUnavailableError(
            cycle[0], " -> ".join(cycle), "forms a dependency cycle"
        ) from e

    for unit in units:
        for dependency in unit.depends_on:
            if position[dependency] > position[unit.id]:
                raise DependencyUnavailableError(
                    unit.id, dependency, "is ordered after the unit that depends on it"
                )


def execution_order(units: Sequence[Unit]) -> list[Unit]:
    return [unit for unit in units if unit.phase is Phase.CONSTRUCT] + [
        unit for unit in units if unit.phase is Phase.INITIALIZE
    ]


def _run_unit(
    unit: Unit,
    config: CloudConfig,
    identity: EnvironmentIdentity,
    provider: Any,
    outputs: Mapping[str, Any],
) -> Outputs:
    inputs = {key: outputs[key] for key in unit.requires + unit.optional}
    ctx = UnitContext(unit, config, identity, provider, inputs)
    logger.info("Building unit", unit=unit.id, phase=unit.phase.value)
    try:
        produced = unit.build(ctx)
    except ProviderError as e:
        if e.unit:
            raise
        raise e.for_unit(unit.id) from e
    except CloudError:
        raise
    except Exception as e:
        logger.exception("Unit failed", unit=unit.id)
        raise ProviderError(str(e), unit=unit.id) from e

    missing = [name for name in unit.provides if name not in produced]
    if missing:
        raise DependencyUnavailableError(
            unit.id, unit.key(missing[0]), "was declared but not produced"
        )
    return produced


def preflight(config: CloudConfig) -> None:
    """Raise ``ConfigurationError`` carrying every violation in ``config``."""
    violations = validate_config(config)
    if violations:
        logger.error("Configuration failed validation", violations=violations)
        raise ConfigurationError(violations)


def compose(
    config: CloudConfig,
    identity: EnvironmentIdentity,
    provider: Any,
    units: Sequence[Unit],
    operator_outputs: Sequence[OperatorOutput] = (),
) -> CompositionResult:
    """Validate, then build every unit in order and export the operator outputs.

    Nothing reaches the provider unless the config and the graph are valid.
    Failures halt at the failing unit; resources already built are left in
    place for teardown.
    """
    preflight(config)
    validate_graph(units)

    outputs: dict[str, Any] = {}
    invoked: list[str] = []
    skipped: list[str] = []

    for unit in units:
        if unit.phase is Phase.INITIALIZE:
            for name in unit.provides:
                outputs[unit.key(name)] = Deferred(unit.key(name))

    for unit in execution_order(units):
        if not unit.enabled(config):
            logger.info("Skipping unit", unit=unit.id, reason="condition is false")
            produced: Outputs = {name: ABSENT for name in unit.provides}
            skipped.append(unit.id)
        else:
            produced = _run_unit(unit, config, identity, provider, outputs)
            invoked.append(unit.id)

        for name in unit.provides:
            key = unit.key(name)
            placeholder = outputs.get(key)
            if isinstance(placeholder, Deferred):
                placeholder.resolve(produced[name])
                logger.debug("Resolved deferred output", key=key)
            outputs[key] = produced[name]

    unresolved = [key for key, value in outputs.items() if isinstance(value, Deferred)]
    if unresolved:
        raise DependencyUnavailableError(
            _unit_of(unresolved[0]), unresolved[0], "was never resolved"
        )

    exported: dict[str, Any] = {}
    for output in operator_outputs:
        value = outputs.get(output.key, ABSENT)
        if value is ABSENT or value is None:
            continue
        provider.export(output.name, value, output.description)
        exported[output.name] = value
    logger.info("Composition finished", invoked=len(invoked), skipped=skipped)

    return CompositionResult(
        outputs=outputs,
        operator_outputs=exported,
        invoked=tuple(invoked),
        skipped=tuple(skipped),
    )
