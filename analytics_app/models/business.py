# analytics_app/models/business.py

"""
Analytics-side business tables populated by the legacy sync.
"""

from sqlalchemy import Index, UniqueConstraint

from .base import BaseModel, db


class Customer(BaseModel):
    """Paying customer; identity is the (case-insensitive) email."""

    __tablename__ = "customers"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(200), nullable=False, unique=True, index=True)
    phone = db.Column(db.String(50), nullable=False, default="")
    registration_date = db.Column(db.DateTime(timezone=True), nullable=True)
    customer_type = db.Column(db.String(50), nullable=False, default="regular")
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    students = db.relationship("Student", back_populates="customer", cascade="all, delete-orphan")
    transactions = db.relationship("Transaction", back_populates="customer", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Customer {self.email}>"


class Student(BaseModel):
    """Enrolled student linked to the customer that pays for them."""

    __tablename__ = "students"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(200), nullable=False, unique=True, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id", ondelete="CASCADE"), nullable=False)
    enrollment_date = db.Column(db.DateTime(timezone=True), nullable=True)
    program = db.Column(db.String(200), nullable=False, default="")
    status = db.Column(db.String(50), nullable=False, default="active")
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    customer = db.relationship("Customer", back_populates="students")
    diagnostics = db.relationship("DiagnosticResult", back_populates="student", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Student {self.email}>"


class Location(BaseModel):
    """Physical site where courses take place."""

    __tablename__ = "locations"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False, unique=True, index=True)
    address = db.Column(db.String(500), nullable=False, default="")
    city = db.Column(db.String(100), nullable=False, default="")
    country = db.Column(db.String(100), nullable=False, default="")
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    opening_date = db.Column(db.DateTime(timezone=True), nullable=True)

    rooms = db.relationship("Room", back_populates="location", cascade="all, delete-orphan")
    transactions = db.relationship("Transaction", back_populates="location")

    def __repr__(self):
        return f"<Location {self.name}>"


class Room(BaseModel):
    """Room inside a location; unique per (location, name)."""

    __tablename__ = "rooms"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    capacity = db.Column(db.Integer, nullable=False, default=0)
    room_type = db.Column(db.String(50), nullable=False, default="classroom")
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id", ondelete="CASCADE"), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    location = db.relationship("Location", back_populates="rooms")

    __table_args__ = (UniqueConstraint("location_id", "name", name="uq_rooms_location_name"),)

    def __repr__(self):
        return f"<Room {self.name} @ {self.location_id}>"


class Transaction(BaseModel):
    """Money movement; legacy sales are keyed by their generated description."""

    __tablename__ = "transactions"

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id", ondelete="CASCADE"), nullable=False)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id", ondelete="SET NULL"), nullable=True)
    transaction_date = db.Column(db.DateTime, nullable=False)
    amount = db.Column(db.Numeric(14, 2), nullable=False)
    transaction_type = db.Column(db.String(50), nullable=False, default="sale")
    payment_method = db.Column(db.String(50), nullable=False, default="legacy")
    description = db.Column(db.String(255), nullable=False, default="")
    status = db.Column(db.String(50), nullable=False, default="completed")

    customer = db.relationship("Customer", back_populates="transactions")
    location = db.relationship("Location", back_populates="transactions")

    __table_args__ = (
        Index("idx_transactions_description", "description"),
        Index("idx_transactions_date", "transaction_date"),
    )

    def __repr__(self):
        return f"<Transaction {self.description or self.id}>"


class DiagnosticResult(BaseModel):
    """Placement diagnostic taken by a student on a given day."""

    __tablename__ = "diagnostic_results"

    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey("students.id", ondelete="CASCADE"), nullable=False)
    assessment_date = db.Column(db.Date, nullable=False)
    score = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    type = db.Column(db.String(50), nullable=False, default="adults")
    result_data = db.Column(db.Text, nullable=True)

    student = db.relationship("Student", back_populates="diagnostics")

    __table_args__ = (UniqueConstraint("student_id", "assessment_date", name="uq_diagnostic_student_date"),)
