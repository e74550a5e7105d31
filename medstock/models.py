from datetime import datetime

from medstock.extensions import db


class StockLocation:
    HOME = "home"
    CAR = "car"

    ALL_LOCATIONS = [HOME, CAR]
    LABELS = {
        HOME: "Home",
        CAR: "Car",
    }

    @classmethod
    def opposite(cls, location: str) -> str:
        if location == cls.CAR:
            return cls.HOME
        if location == cls.HOME:
            return cls.CAR
        raise ValueError(f"Unknown stock location '{location}'.")


class TrackingMode:
    NONE = "none"
    SERIAL = "serial"
    LOT = "lot"

    ALL_MODES = [NONE, SERIAL, LOT]

    @classmethod
    def for_identity(cls, serial_number: str | None, lot_number: str | None) -> str:
        if serial_number:
            return cls.SERIAL
        if lot_number:
            return cls.LOT
        return cls.NONE


class CountType:
    CAR = "car"
    TOTAL = "total"

    ALL_TYPES = [CAR, TOTAL]
    COUNTED_LOCATIONS = {
        CAR: (StockLocation.CAR,),
        TOTAL: (StockLocation.HOME, StockLocation.CAR),
    }


class SessionStatus:
    IN_PROGRESS = "in_progress"
    RECONCILING = "reconciling"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    ACTIVE_STATES = {IN_PROGRESS, RECONCILING}
    ALL_STATUSES = [IN_PROGRESS, RECONCILING, COMPLETED, CANCELLED]


class Product(db.Model):
    __tablename__ = "product"

    id = db.Column(db.Integer, primary_key=True)
    model_number = db.Column(db.String, nullable=False)
    name = db.Column(db.String, nullable=False)
    category = db.Column(db.String, nullable=True)  # Device, Lead/Electrode, Material, Other
    manufacturer = db.Column(db.String, nullable=True)
    description = db.Column(db.Text, nullable=True)
    gtin = db.Column(db.String(14), nullable=True, index=True)
    barcode = db.Column(db.String, nullable=True)
    min_car_stock = db.Column(db.Integer, nullable=False, default=1)
    min_total_stock = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)


class InventoryItem(db.Model):
    """One physical stock record: a serial unit, a lot batch or untracked stock."""

    __tablename__ = "inventory_item"

    __table_args__ = (
        db.CheckConstraint("quantity >= 0", name="ck_inventory_item_quantity"),
        db.CheckConstraint(
            "(tracking_mode != 'serial') OR (quantity <= 1)",
            name="ck_inventory_item_serial_quantity",
        ),
        # Ids of deleted records stay retired so movements keep pointing at one record.
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("product.id"), nullable=False)
    location = db.Column(db.String(16), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    tracking_mode = db.Column(db.String(16), nullable=False, default=TrackingMode.NONE)
    serial_number = db.Column(db.String, nullable=True, unique=True)
    lot_number = db.Column(db.String, nullable=True)
    expiration_date = db.Column(db.Date, nullable=True)
    missing_since = db.Column(db.DateTime, nullable=True)
    updated_at = db.Column(
        db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    product = db.relationship("Product", backref="inventory_items")

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "location": self.location,
            "quantity": self.quantity,
            "tracking_mode": self.tracking_mode,
            "serial_number": self.serial_number,
            "lot_number": self.lot_number,
            "expiration_date": (
                self.expiration_date.isoformat() if self.expiration_date else None
            ),
            "missing_since": (
                self.missing_since.isoformat() if self.missing_since else None
            ),
        }


class StockCountSession(db.Model):
    __tablename__ = "stock_count_session"

    id = db.Column(db.Integer, primary_key=True)
    count_type = db.Column(db.String(16), nullable=False, default=CountType.CAR)
    status = db.Column(db.String(16), nullable=False, default=SessionStatus.IN_PROGRESS)
    person = db.Column(db.String, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    completed_at = db.Column(db.DateTime, nullable=True)

    # Reconciliation summary, written once when the plan is applied.
    matched_count = db.Column(db.Integer, nullable=True)
    transferred_count = db.Column(db.Integer, nullable=True)
    new_items_count = db.Column(db.Integer, nullable=True)
    marked_missing_count = db.Column(db.Integer, nullable=True)
    derecognized_count = db.Column(db.Integer, nullable=True)
    deleted_count = db.Column(db.Integer, nullable=True)
    plan_fingerprint = db.Column(db.String(64), nullable=True)

    scanned_items = db.relationship(
        "ScannedItem",
        backref="session",
        cascade="all, delete-orphan",
        order_by="ScannedItem.id",
    )

    @property
    def counted_locations(self) -> tuple[str, ...]:
        return CountType.COUNTED_LOCATIONS.get(self.count_type, ())

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "count_type": self.count_type,
            "status": self.status,
            "person": self.person,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "completed_at": (
                self.completed_at.isoformat() if self.completed_at else None
            ),
        }


class ScannedItem(db.Model):
    __tablename__ = "scanned_item"

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(
        db.Integer,
        db.ForeignKey("stock_count_session.id", ondelete="CASCADE"),
        nullable=False,
    )
    product_id = db.Column(db.Integer, db.ForeignKey("product.id"), nullable=False)
    scanned_location = db.Column(db.String(16), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    tracking_mode = db.Column(db.String(16), nullable=False, default=TrackingMode.NONE)
    serial_number = db.Column(db.String, nullable=True)
    lot_number = db.Column(db.String, nullable=True)
    expiration_date = db.Column(db.Date, nullable=True)
    raw_barcode = db.Column(db.String, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    product = db.relationship("Product")

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "product_id": self.product_id,
            "scanned_location": self.scanned_location,
            "quantity": self.quantity,
            "tracking_mode": self.tracking_mode,
            "serial_number": self.serial_number,
            "lot_number": self.lot_number,
            "expiration_date": (
                self.expiration_date.isoformat() if self.expiration_date else None
            ),
        }


class InventoryMovement(db.Model):
    __tablename__ = "inventory_movement"

    TRANSFER_OUT = "TRANSFER_OUT"
    TRANSFER_IN = "TRANSFER_IN"
    COUNT_NEW = "COUNT_NEW"
    COUNT_MISSING = "COUNT_MISSING"
    COUNT_DERECOGNIZED = "COUNT_DERECOGNIZED"
    COUNT_DELETED = "COUNT_DELETED"

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("product.id"), nullable=False)
    # Plain integer: the referenced record may have been deleted afterwards.
    inventory_item_id = db.Column(db.Integer, nullable=True)
    location = db.Column(db.String(16), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    movement_type = db.Column(db.String, nullable=False)
    serial_number = db.Column(db.String, nullable=True)
    lot_number = db.Column(db.String, nullable=True)
    person = db.Column(db.String, nullable=True)
    reference = db.Column(db.String, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    product = db.relationship("Product")


class AppliedAdjustment(db.Model):
    __tablename__ = "applied_adjustment"

    __table_args__ = (
        db.UniqueConstraint(
            "session_id",
            "kind",
            "reference_id",
            name="uq_applied_adjustment_reference",
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(
        db.Integer,
        db.ForeignKey("stock_count_session.id", ondelete="CASCADE"),
        nullable=False,
    )
    kind = db.Column(db.String(32), nullable=False)
    reference_id = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
