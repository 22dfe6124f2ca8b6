"""Device selection for import.

A DeviceSelection is a running, monotonic working set over the devices of a
snapshot document. Callers grow it by applying criteria one after another
(all, id prefix, status, explicit ids); a device already in the set is never
added twice, and nothing is ever removed.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, Sequence, Union

from .entities import DeviceSnapshot, DeviceStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SelectAll:
    """Every device in the document."""


@dataclass(frozen=True)
class PrefixMatch:
    """Devices whose id starts with prefix, ignoring case."""

    prefix: str


@dataclass(frozen=True)
class StatusMatch:
    """Devices whose status equals status ("enabled"/"disabled"), ignoring case."""

    status: str


@dataclass(frozen=True)
class ExplicitIds:
    """Devices with exactly these ids; unknown ids are skipped."""

    device_ids: tuple[str, ...]

    @classmethod
    def from_csv(cls, value: str) -> "ExplicitIds":
        return cls(tuple(part.strip() for part in value.split(",") if part.strip()))


Criterion = Union[SelectAll, PrefixMatch, StatusMatch, ExplicitIds]


@dataclass
class SelectionOutcome:
    """What a single criterion application did to the selection."""

    matched: int = 0
    added: int = 0
    unknown_ids: list[str] = field(default_factory=list)


def matching_devices(
    devices: Sequence[DeviceSnapshot],
    criterion: Criterion,
) -> tuple[list[DeviceSnapshot], list[str]]:
    """Evaluate criterion against devices.

    Returns:
        (matches in document order, requested ids that were not found)
    """
    if isinstance(criterion, SelectAll):
        return list(devices), []

    if isinstance(criterion, PrefixMatch):
        if not criterion.prefix.strip():
            return [], []
        prefix = criterion.prefix.lower()
        return [d for d in devices if d.device_id.lower().startswith(prefix)], []

    if isinstance(criterion, StatusMatch):
        wanted = DeviceStatus.parse(criterion.status)
        if wanted is None:
            return [], []
        return [
            d for d in devices
            if (d.status or "").strip().lower() == wanted.value
        ], []

    if isinstance(criterion, ExplicitIds):
        by_id: dict[str, DeviceSnapshot] = {}
        for device in devices:
            by_id.setdefault(device.device_id, device)

        matches: list[DeviceSnapshot] = []
        unknown: list[str] = []
        for device_id in criterion.device_ids:
            device = by_id.get(device_id)
            if device is None:
                unknown.append(device_id)
            else:
                matches.append(device)
        return matches, unknown

    raise TypeError(f"Unsupported selection criterion: {criterion!r}")


class DeviceSelection:
    """Accumulated, duplicate-free selection of devices.

    Example:
        selection = DeviceSelection(document.devices)
        selection.apply(PrefixMatch("plant-a-"))
        selection.apply(StatusMatch("disabled"))
        report = await importer.execute(selection.devices)
    """

    def __init__(self, devices: Sequence[DeviceSnapshot]):
        self.available = tuple(devices)
        self._selected: dict[str, DeviceSnapshot] = {}

    def apply(self, criterion: Criterion) -> SelectionOutcome:
        """Add every device matching criterion that is not yet selected."""
        matches, unknown = matching_devices(self.available, criterion)
        outcome = SelectionOutcome(matched=len(matches), unknown_ids=unknown)

        for device in matches:
            if device.device_id not in self._selected:
                self._selected[device.device_id] = device
                outcome.added += 1

        for device_id in unknown:
            logger.info(f"Device {device_id} not found in snapshot, skipping")

        logger.debug(
            f"Applied {criterion!r}: {outcome.matched} matched, "
            f"{outcome.added} added, {len(self)} selected"
        )
        return outcome

    def apply_all(self, criteria: Iterable[Criterion]) -> None:
        for criterion in criteria:
            self.apply(criterion)

    @property
    def devices(self) -> list[DeviceSnapshot]:
        """Selected devices in the order they were added."""
        return list(self._selected.values())

    def is_selected(self, device_id: str) -> bool:
        return device_id in self._selected

    def __contains__(self, device_id: object) -> bool:
        return device_id in self._selected

    def __len__(self) -> int:
        return len(self._selected)


def select(
    devices: Sequence[DeviceSnapshot],
    criterion: Criterion,
    selection: DeviceSelection | None = None,
) -> DeviceSelection:
    """Apply one criterion, growing selection (or a new one) in place."""
    if selection is None:
        selection = DeviceSelection(devices)
    selection.apply(criterion)
    return selection
