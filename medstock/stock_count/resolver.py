"""Turn operator decisions on discrepancies into an adjustment plan."""

from __future__ import annotations

import hashlib
import json
from dataclasses import asdict, dataclass, field
from typing import Iterable, Mapping

from medstock.models import StockLocation

from .classifier import Discrepancies, FoundEntry, MissingEntry
from .exceptions import (
    DuplicateSerialError,
    IdentityAmbiguityError,
    InsufficientStockError,
    InvalidDecisionError,
)


MARK_MISSING = "mark_missing"
DERECOGNIZED = "derecognized"
MISSING_ACTIONS = (MARK_MISSING, DERECOGNIZED)


@dataclass(frozen=True)
class TransferAdjustment:
    scanned_item_id: int
    from_location: str
    to_location: str
    quantity: int | None = None


@dataclass(frozen=True)
class NewItemAdjustment:
    scanned_item_id: int
    location: str
    quantity: int


@dataclass(frozen=True)
class MissingAdjustment:
    inventory_item_id: int
    action: str
    # Uncovered units of a lot or untracked record; None removes the whole record.
    quantity: int | None = None


@dataclass
class AdjustmentPlan:
    transfers: list[TransferAdjustment] = field(default_factory=list)
    new_items: list[NewItemAdjustment] = field(default_factory=list)
    missing: list[MissingAdjustment] = field(default_factory=list)
    delete_investigated: list[int] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.transfers or self.new_items or self.missing or self.delete_investigated)

    def to_dict(self) -> dict[str, object]:
        return asdict(self)

    def fingerprint(self) -> str:
        """Stable digest used to recognise a resubmitted plan."""

        canonical = {
            "transfers": sorted(
                (asdict(entry) for entry in self.transfers),
                key=lambda entry: entry["scanned_item_id"],
            ),
            "new_items": sorted(
                (asdict(entry) for entry in self.new_items),
                key=lambda entry: entry["scanned_item_id"],
            ),
            "missing": sorted(
                (asdict(entry) for entry in self.missing),
                key=lambda entry: entry["inventory_item_id"],
            ),
            "delete_investigated": sorted(self.delete_investigated),
        }
        payload = json.dumps(canonical, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    @classmethod
    def from_dict(cls, data: Mapping[str, object] | None) -> "AdjustmentPlan":
        """Build a plan from its JSON form, raising ``ValueError`` on bad input."""

        data = data or {}
        try:
            transfers = [
                TransferAdjustment(
                    scanned_item_id=int(entry["scanned_item_id"]),
                    from_location=str(entry["from_location"]),
                    to_location=str(entry["to_location"]),
                    quantity=(
                        int(entry["quantity"])
                        if entry.get("quantity") is not None
                        else None
                    ),
                )
                for entry in data.get("transfers") or []
            ]
            new_items = [
                NewItemAdjustment(
                    scanned_item_id=int(entry["scanned_item_id"]),
                    location=str(entry["location"]),
                    quantity=int(entry["quantity"]),
                )
                for entry in data.get("new_items") or []
            ]
            missing = [
                MissingAdjustment(
                    inventory_item_id=int(entry["inventory_item_id"]),
                    action=str(entry["action"]),
                    quantity=(
                        int(entry["quantity"])
                        if entry.get("quantity") is not None
                        else None
                    ),
                )
                for entry in data.get("missing") or []
            ]
            delete_investigated = [int(value) for value in data.get("delete_investigated") or []]
        except (KeyError, TypeError, AttributeError) as exc:
            raise ValueError(f"Invalid adjustment plan: {exc}") from exc

        for transfer in transfers:
            if {transfer.from_location, transfer.to_location} != set(StockLocation.ALL_LOCATIONS):
                raise ValueError(
                    f"Transfer for scanned item {transfer.scanned_item_id} must move between home and car."
                )
            if transfer.quantity is not None and transfer.quantity <= 0:
                raise ValueError("Transfer quantities must be greater than zero.")
        for new_item in new_items:
            if new_item.location not in StockLocation.ALL_LOCATIONS:
                raise ValueError(f"Unknown location '{new_item.location}'.")
            if new_item.quantity <= 0:
                raise ValueError("New item quantities must be greater than zero.")
        for decision in missing:
            if decision.action not in MISSING_ACTIONS:
                raise ValueError(f"Unknown missing action '{decision.action}'.")
            if decision.quantity is not None and decision.quantity <= 0:
                raise ValueError("Missing quantities must be greater than zero.")

        return cls(
            transfers=transfers,
            new_items=new_items,
            missing=missing,
            delete_investigated=delete_investigated,
        )


def _transfer_quantity(transfer: TransferAdjustment, found_entry: FoundEntry) -> int:
    return transfer.quantity or found_entry.quantity or 1


def is_explained_by_transfers(
    missing_entry: MissingEntry,
    transfers: Iterable[TransferAdjustment],
    found_by_id: Mapping[int, FoundEntry],
) -> bool:
    """Whether planned transfers out of the missing record's location cover it."""

    identity = missing_entry.identity
    transferred = 0
    for transfer in transfers:
        if transfer.from_location != missing_entry.location:
            continue
        found_entry = found_by_id.get(transfer.scanned_item_id)
        if found_entry is None or found_entry.identity != identity:
            continue
        if identity.serial_number is not None:
            return True
        transferred += _transfer_quantity(transfer, found_entry)

    if identity.serial_number is not None:
        return False
    return transferred >= missing_entry.quantity


def visible_missing(
    missing: Iterable[MissingEntry],
    plan: AdjustmentPlan,
    found: Iterable[FoundEntry],
) -> list[MissingEntry]:
    """Missing entries still awaiting an operator decision.

    Recomputed from scratch on every call; entries explained by planned
    transfers or already deleted as investigated are hidden.
    """

    found_by_id = {entry.id: entry for entry in found}
    deleted = set(plan.delete_investigated)
    return [
        entry
        for entry in missing
        if entry.id not in deleted
        and not is_explained_by_transfers(entry, plan.transfers, found_by_id)
    ]


class AdjustmentResolver:
    """Accumulate operator decisions for one session's discrepancies."""

    def __init__(self, discrepancies: Discrepancies, plan: AdjustmentPlan | None = None) -> None:
        self.discrepancies = discrepancies
        self.plan = AdjustmentPlan()
        if plan is not None:
            self.replay(plan)

    def replay(self, plan: AdjustmentPlan) -> None:
        """Re-issue every decision of ``plan`` so each one is validated again."""

        for transfer in plan.transfers:
            # Already decided: a source drained since then is a stock shortfall.
            self._add_transfer(self._found(transfer.scanned_item_id), transfer.quantity)
        for new_item in plan.new_items:
            self.add_new(new_item.scanned_item_id, new_item.quantity)
        for decision in plan.missing:
            self.mark_missing(decision.inventory_item_id, decision.action)
        for inventory_item_id in plan.delete_investigated:
            # A deleted entry no longer carries its mark_missing decision.
            self.mark_missing(inventory_item_id, MARK_MISSING)
            self.delete_investigated(inventory_item_id)

    def _found(self, scanned_item_id: int) -> FoundEntry:
        entry = self.discrepancies.found_entry(scanned_item_id)
        if entry is None:
            raise InvalidDecisionError(
                f"Scanned item {scanned_item_id} is not a found discrepancy.",
                scanned_item_id=scanned_item_id,
            )
        if entry.duplicate_of is not None:
            raise DuplicateSerialError(
                f"Serial {entry.scanned_item.serial_number} was already scanned "
                f"as item {entry.duplicate_of}.",
                scanned_item_id=scanned_item_id,
            )
        if entry.ambiguous:
            raise IdentityAmbiguityError(
                f"Scanned item {scanned_item_id} matches several inventory records "
                f"({', '.join(str(value) for value in entry.candidate_ids)}).",
                scanned_item_id=scanned_item_id,
            )
        return entry

    def _missing(self, inventory_item_id: int) -> MissingEntry:
        entry = self.discrepancies.missing_entry(inventory_item_id)
        if entry is None:
            raise InvalidDecisionError(
                f"Inventory item {inventory_item_id} is not a missing discrepancy.",
                inventory_item_id=inventory_item_id,
            )
        return entry

    def _drop_found_decisions(self, scanned_item_id: int) -> None:
        self.plan.transfers = [
            entry for entry in self.plan.transfers if entry.scanned_item_id != scanned_item_id
        ]
        self.plan.new_items = [
            entry for entry in self.plan.new_items if entry.scanned_item_id != scanned_item_id
        ]

    def transfer(self, scanned_item_id: int, quantity: int | None = None) -> TransferAdjustment:
        entry = self._found(scanned_item_id)
        if not entry.exists_in_home:
            raise InvalidDecisionError(
                f"Scanned item {scanned_item_id} has no stock at the other location to transfer.",
                scanned_item_id=scanned_item_id,
            )
        return self._add_transfer(entry, quantity)

    def _add_transfer(self, entry: FoundEntry, quantity: int | None) -> TransferAdjustment:
        scanned_item_id = entry.id
        from_location = StockLocation.opposite(entry.scanned_location)
        quantity = quantity if quantity is not None else entry.quantity
        if entry.is_serial:
            quantity = 1
        if quantity <= 0 or quantity > entry.quantity:
            raise InvalidDecisionError(
                f"Transfer quantity for scanned item {scanned_item_id} must be between 1 and {entry.quantity}.",
                scanned_item_id=scanned_item_id,
            )

        if quantity > entry.available_elsewhere:
            raise InsufficientStockError(
                f"Not enough uncounted stock at {from_location} for scanned item "
                f"{scanned_item_id}. Available {entry.available_elsewhere}.",
                scanned_item_id=scanned_item_id,
                inventory_item_id=entry.candidate_ids[0] if entry.candidate_ids else None,
                adjustment="transfer",
            )

        self._drop_found_decisions(scanned_item_id)
        adjustment = TransferAdjustment(
            scanned_item_id=scanned_item_id,
            from_location=from_location,
            to_location=entry.scanned_location,
            quantity=quantity,
        )
        self.plan.transfers.append(adjustment)
        return adjustment

    def add_new(self, scanned_item_id: int, quantity: int | None = None) -> NewItemAdjustment:
        entry = self._found(scanned_item_id)
        quantity = quantity if quantity is not None else entry.quantity
        if entry.is_serial and quantity != 1:
            raise InvalidDecisionError(
                f"Serial-tracked scanned item {scanned_item_id} can only be added once.",
                scanned_item_id=scanned_item_id,
            )
        if quantity <= 0:
            raise InvalidDecisionError(
                "New item quantities must be greater than zero.",
                scanned_item_id=scanned_item_id,
            )

        self._drop_found_decisions(scanned_item_id)
        adjustment = NewItemAdjustment(
            scanned_item_id=scanned_item_id,
            location=entry.scanned_location,
            quantity=quantity,
        )
        self.plan.new_items.append(adjustment)
        return adjustment

    def clear_found_decision(self, scanned_item_id: int) -> None:
        self._drop_found_decisions(scanned_item_id)

    def mark_missing(self, inventory_item_id: int, action: str = MARK_MISSING) -> MissingAdjustment:
        if action not in MISSING_ACTIONS:
            raise InvalidDecisionError(
                f"Unknown missing action '{action}'.",
                inventory_item_id=inventory_item_id,
            )
        entry = self._missing(inventory_item_id)
        if inventory_item_id in self.plan.delete_investigated:
            raise InvalidDecisionError(
                f"Inventory item {inventory_item_id} was already deleted as investigated.",
                inventory_item_id=inventory_item_id,
            )

        self.clear_missing_decision(inventory_item_id)
        adjustment = MissingAdjustment(
            inventory_item_id=inventory_item_id,
            action=action,
            quantity=None if entry.identity.serial_number else entry.quantity,
        )
        self.plan.missing.append(adjustment)
        return adjustment

    def clear_missing_decision(self, inventory_item_id: int) -> None:
        self.plan.missing = [
            entry for entry in self.plan.missing if entry.inventory_item_id != inventory_item_id
        ]

    def delete_investigated(self, inventory_item_id: int) -> None:
        """Hard-delete a record previously marked missing once it was investigated."""

        self._missing(inventory_item_id)
        decision = next(
            (entry for entry in self.plan.missing if entry.inventory_item_id == inventory_item_id),
            None,
        )
        if decision is None or decision.action != MARK_MISSING:
            raise InvalidDecisionError(
                f"Inventory item {inventory_item_id} must be marked missing before it can be deleted.",
                inventory_item_id=inventory_item_id,
            )

        self.clear_missing_decision(inventory_item_id)
        if inventory_item_id not in self.plan.delete_investigated:
            self.plan.delete_investigated.append(inventory_item_id)

    def visible_missing(self) -> list[MissingEntry]:
        return visible_missing(self.discrepancies.missing, self.plan, self.discrepancies.found)

    def pending_found(self) -> list[FoundEntry]:
        decided = {entry.scanned_item_id for entry in self.plan.transfers}
        decided.update(entry.scanned_item_id for entry in self.plan.new_items)
        return [entry for entry in self.discrepancies.found if entry.id not in decided]

    def pending_missing(self) -> list[MissingEntry]:
        decided = {entry.inventory_item_id for entry in self.plan.missing}
        return [entry for entry in self.visible_missing() if entry.id not in decided]

    def submission_plan(self) -> AdjustmentPlan:
        """The plan to hand to the applier.

        Missing decisions on entries that planned transfers now explain are
        dropped so the transferred stock is not also derecognised.
        """

        visible_ids = {entry.id for entry in self.visible_missing()}
        return AdjustmentPlan(
            transfers=list(self.plan.transfers),
            new_items=list(self.plan.new_items),
            missing=[
                entry for entry in self.plan.missing if entry.inventory_item_id in visible_ids
            ],
            delete_investigated=list(self.plan.delete_investigated),
        )

    def worklist(self) -> dict[str, object]:
        return {
            "plan": self.plan.to_dict(),
            "visible_missing": [entry.to_dict() for entry in self.visible_missing()],
            "pending_found": [entry.to_dict() for entry in self.pending_found()],
            "pending_missing": [entry.to_dict() for entry in self.pending_missing()],
        }
