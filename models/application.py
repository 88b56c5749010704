from sqlalchemy import Column, Date, DateTime, String, Text, func

from database import Base

APPLICATION_STATUSES = ("Pending", "In Process", "Success", "Rejected")
DEFAULT_STATUS = "Pending"


class VisaApplication(Base):
    __tablename__ = "applications"

    id = Column(String(64), primary_key=True, index=True)
    # Business key; uniqueness is what turns a duplicate create into a conflict
    application_id = Column(String(128), unique=True, nullable=False, index=True)
    name = Column(String(256), nullable=False)
    passport_number = Column(String(64), nullable=False, index=True)
    nationality = Column(String(128), nullable=False)
    dob = Column(Date, nullable=False)
    address = Column(Text, nullable=False)
    status = Column(String(32), nullable=False, default=DEFAULT_STATUS, index=True)
    # Single canonical reference (URL or local path) plus the backend that produced it
    document_ref = Column(String(1024), nullable=True)
    document_provider = Column(String(32), nullable=True)
    document_content_type = Column(String(128), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
