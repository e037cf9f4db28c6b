"""Multi-strategy fallback fetch pipeline.

A pipeline tries an ordered list of ``AttemptProfile`` objects, one at a time,
until the merged result is complete or the profiles run out. Each profile is
a different way of issuing the same logical request: another user agent,
another mirror, another provider.

Every attempt ends in one of four outcomes:

- ``USABLE``: parsed and merged into the accumulator
- ``SOFT_BLOCK``: a bot wall or empty answer; any salvageable fields are merged
- ``TRANSPORT_FAILURE``: network error, timeout or server error
- ``PARSE_FAILURE``: the response looked usable but the parser raised

Attempts are strictly sequential. Profiles escalate in aggressiveness, so
profile N+1 only runs after profile N is judged insufficient.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, Iterable, Mapping, Optional, Sequence, TypeVar

from app.models import UpstreamExhaustedError

logger = logging.getLogger(__name__)

R = TypeVar("R")

DEFAULT_TIMEOUT_SECONDS = 10.0


class AttemptOutcome(str, Enum):
    USABLE = "usable"
    SOFT_BLOCK = "soft_block"
    TRANSPORT_FAILURE = "transport_failure"
    PARSE_FAILURE = "parse_failure"


@dataclass(frozen=True)
class AttemptProfile:
    """One way of issuing the request.

    The pipeline only reads ``name`` and ``timeout``; the remaining fields are
    for the operation's fetch function.
    """

    name: str
    headers: Mapping[str, str] = field(default_factory=dict)
    endpoint: Optional[str] = None
    options: Mapping[str, Any] = field(default_factory=dict)
    timeout: float = DEFAULT_TIMEOUT_SECONDS


@dataclass
class AttemptRecord:
    profile: str
    outcome: AttemptOutcome
    detail: str = ""
    fields: list[str] = field(default_factory=list)


def is_empty(value: Any) -> bool:
    """None, blank strings and empty containers carry no signal."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) == 0
    return False


class Accumulator:
    """Partially filled result with per-field merge tracking.

    Merge rule: the first non-empty value for a field wins and is never
    overwritten. Fields listed together in an atomic group (coordinate pairs,
    for instance) are only taken when every member of the group is non-empty
    in the same partial, and only while the group is still unfilled.
    """

    def __init__(
        self,
        fields: Iterable[str],
        atomic_groups: Iterable[Sequence[str]] = (),
    ) -> None:
        self._values: dict[str, Any] = {name: None for name in fields}
        self._groups: list[tuple[str, ...]] = []
        self._grouped: dict[str, tuple[str, ...]] = {}
        for group in atomic_groups:
            group = tuple(group)
            unknown = [name for name in group if name not in self._values]
            if unknown:
                raise ValueError(f"atomic group references unknown fields: {unknown}")
            self._groups.append(group)
            for name in group:
                self._grouped[name] = group
        self.filled_by: dict[str, str] = {}

    def merge(self, partial: Mapping[str, Any] | None, source: str = "") -> list[str]:
        """Merge ``partial`` into the accumulator.

        Unknown keys are ignored.

        Returns:
            Names of the fields this merge filled.
        """
        if not partial:
            return []

        filled: list[str] = []
        for group in self._groups:
            if self.is_filled(group[0]):
                continue
            if all(not is_empty(partial.get(name)) for name in group):
                for name in group:
                    self._set(name, partial[name], source)
                    filled.append(name)

        for name, value in partial.items():
            if name not in self._values or name in self._grouped:
                continue
            if self.is_filled(name) or is_empty(value):
                continue
            self._set(name, value, source)
            filled.append(name)
        return filled

    def _set(self, name: str, value: Any, source: str) -> None:
        self._values[name] = value
        self.filled_by[name] = source

    def is_filled(self, name: str) -> bool:
        return not is_empty(self._values.get(name))

    def get(self, name: str, default: Any = None) -> Any:
        value = self._values.get(name)
        return default if is_empty(value) else value

    @property
    def is_empty(self) -> bool:
        return not any(self.is_filled(name) for name in self._values)

    def missing(self) -> list[str]:
        return [name for name in self._values if not self.is_filled(name)]

    def to_dict(self) -> dict[str, Any]:
        return dict(self._values)


@dataclass
class PipelineResult:
    accumulator: Accumulator
    attempts: list[AttemptRecord]
    complete: bool

    def to_dict(self) -> dict[str, Any]:
        return self.accumulator.to_dict()


class FallbackPipeline(Generic[R]):
    """Runs profiles in order, merging partial results.

    Args:
        fetch: Issues the request for one profile. Raising is a transport failure.
        parse: Extracts a partial result from a usable response.
        classify: Returns ``USABLE`` or ``SOFT_BLOCK`` (or ``TRANSPORT_FAILURE``
            for server errors). Defaults to usable.
        salvage: Extracts partial signal from a soft-blocked response.
        is_complete: Stops the pipeline early once it returns True.
    """

    def __init__(
        self,
        name: str,
        fetch: Callable[[AttemptProfile], Awaitable[R]],
        parse: Callable[[R, AttemptProfile], Optional[Mapping[str, Any]]],
        classify: Optional[Callable[[R, AttemptProfile], AttemptOutcome]] = None,
        salvage: Optional[Callable[[R, AttemptProfile], Optional[Mapping[str, Any]]]] = None,
        is_complete: Optional[Callable[[Accumulator], bool]] = None,
    ) -> None:
        self.name = name
        self._fetch = fetch
        self._parse = parse
        self._classify = classify
        self._salvage = salvage
        self._is_complete = is_complete

    async def run(
        self, profiles: Sequence[AttemptProfile], accumulator: Accumulator
    ) -> PipelineResult:
        """Try ``profiles`` in order.

        Returns:
            The merged result, possibly incomplete.

        Raises:
            UpstreamExhaustedError: If every profile hit a transport failure and
                nothing was accumulated.
        """
        attempts: list[AttemptRecord] = []
        complete = False

        for profile in profiles:
            record = await self._attempt(profile, accumulator)
            attempts.append(record)
            if self._check_complete(accumulator):
                complete = True
                logger.info(f"[{self.name}] Complete after profile '{profile.name}'")
                break

        all_transport = all(a.outcome == AttemptOutcome.TRANSPORT_FAILURE for a in attempts)
        if all_transport and accumulator.is_empty:
            tried = ", ".join(a.profile for a in attempts) or "none"
            raise UpstreamExhaustedError(f"{self.name}: all profiles failed ({tried})")

        return PipelineResult(accumulator=accumulator, attempts=attempts, complete=complete)

    async def _attempt(self, profile: AttemptProfile, accumulator: Accumulator) -> AttemptRecord:
        try:
            response = await asyncio.wait_for(self._fetch(profile), timeout=profile.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"[{self.name}] {profile.name} timed out after {profile.timeout}s")
            return AttemptRecord(profile.name, AttemptOutcome.TRANSPORT_FAILURE, "timeout")
        except Exception as e:
            logger.warning(f"[{self.name}] {profile.name} transport failure: {e}")
            return AttemptRecord(profile.name, AttemptOutcome.TRANSPORT_FAILURE, str(e))

        outcome = self._classify(response, profile) if self._classify else AttemptOutcome.USABLE

        if outcome == AttemptOutcome.TRANSPORT_FAILURE:
            logger.warning(f"[{self.name}] {profile.name} returned a server error")
            return AttemptRecord(profile.name, outcome, "server error")

        if outcome == AttemptOutcome.SOFT_BLOCK:
            filled: list[str] = []
            if self._salvage is not None:
                try:
                    filled = accumulator.merge(self._salvage(response, profile), profile.name)
                except Exception as e:
                    logger.debug(f"[{self.name}] {profile.name} salvage failed: {e}")
            logger.info(
                f"[{self.name}] {profile.name} soft-blocked"
                + (f", salvaged {filled}" if filled else "")
            )
            return AttemptRecord(profile.name, outcome, "soft block", filled)

        try:
            partial = self._parse(response, profile)
        except Exception as e:
            logger.warning(f"[{self.name}] {profile.name} parse failure: {e}")
            return AttemptRecord(profile.name, AttemptOutcome.PARSE_FAILURE, str(e))

        filled = accumulator.merge(partial, profile.name)
        logger.debug(f"[{self.name}] {profile.name} filled {filled}")
        return AttemptRecord(profile.name, AttemptOutcome.USABLE, "", filled)

    def _check_complete(self, accumulator: Accumulator) -> bool:
        if self._is_complete is None:
            return not accumulator.missing()
        return self._is_complete(accumulator)
