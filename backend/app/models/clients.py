from __future__ import annotations

from ..extensions import db
from app.time_utils import to_utc_z, to_iso_date


MEASUREMENT_FIELDS = (
    "breast_size",
    "waist_size",
    "sleeve_size",
    "hip_size",
    "shoulder_size",
    "length_size",
    "measurement_notes",
)


class Client(db.Model):
    """
    Customer of the atelier.

    national_id is the 14-digit national number and is unique; phones live
    in ClientPhone and are unique across all clients.
    """
    __tablename__ = "clients"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    first_name = db.Column(db.String(100), nullable=False)
    middle_name = db.Column(db.String(100), nullable=True)
    last_name = db.Column(db.String(100), nullable=False)
    date_of_birth = db.Column(db.Date, nullable=True)
    national_id = db.Column(db.String(14), nullable=True, unique=True)
    source = db.Column(db.String(64), nullable=True)

    # Address
    city = db.Column(db.String(100), nullable=True)
    street = db.Column(db.String(255), nullable=True)
    building = db.Column(db.String(100), nullable=True)
    address_notes = db.Column(db.Text, nullable=True)

    # Body measurements
    breast_size = db.Column(db.String(32), nullable=True)
    waist_size = db.Column(db.String(32), nullable=True)
    sleeve_size = db.Column(db.String(32), nullable=True)
    hip_size = db.Column(db.String(32), nullable=True)
    shoulder_size = db.Column(db.String(32), nullable=True)
    length_size = db.Column(db.String(32), nullable=True)
    measurement_notes = db.Column(db.Text, nullable=True)
    last_measurement_date = db.Column(db.Date, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    phones = db.relationship(
        "ClientPhone",
        backref="client",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="ClientPhone.id",
    )

    @property
    def full_name(self) -> str:
        parts = [self.first_name, self.middle_name, self.last_name]
        return " ".join(p for p in parts if p)

    def measurements_dict(self) -> dict:
        data = {field: getattr(self, field) for field in MEASUREMENT_FIELDS}
        data["last_measurement_date"] = to_iso_date(self.last_measurement_date)
        return data

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "first_name": self.first_name,
            "middle_name": self.middle_name,
            "last_name": self.last_name,
            "name": self.full_name,
            "date_of_birth": to_iso_date(self.date_of_birth),
            "national_id": self.national_id,
            "source": self.source,
            "address": {
                "city": self.city,
                "street": self.street,
                "building": self.building,
                "notes": self.address_notes,
            },
            "phones": [p.to_dict() for p in self.phones],
            "measurements": self.measurements_dict(),
            "created_at": to_utc_z(self.created_at),
        }


class ClientPhone(db.Model):
    __tablename__ = "client_phones"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id", ondelete="CASCADE"), nullable=False, index=True)
    phone = db.Column(db.String(32), nullable=False, unique=True)
    type = db.Column(db.String(16), nullable=True)  # mobile / whatsapp / landline

    def to_dict(self) -> dict:
        return {"id": self.id, "phone": self.phone, "type": self.type}
