"""
SQLAlchemy models for the persisted salt catalog.

One row per salt and one row per (salt, ion) contribution. Ions are stored
as their canonical code string ("Nitrate", "Calcium", ...) and parsed back
through the ion code table when the catalog is loaded.
"""
from sqlalchemy import Column, Float, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class SaltRecord(Base):
    __tablename__ = "salts"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(120), unique=True, nullable=False, index=True)
    formula = Column(String(120), nullable=False, default="")
    molecular_weight = Column(Float, nullable=False)

    contributions = relationship(
        "SaltIonContributionRecord",
        back_populates="salt",
        cascade="all, delete-orphan",
        order_by="SaltIonContributionRecord.id",
    )


class SaltIonContributionRecord(Base):
    __tablename__ = "salt_ion_contributions"
    __table_args__ = (UniqueConstraint("salt_id", "ion_code", name="uq_salt_ion"),)

    id = Column(Integer, primary_key=True)
    salt_id = Column(Integer, ForeignKey("salts.id", ondelete="CASCADE"), nullable=False)
    ion_code = Column(String(32), nullable=False)
    grams_per_mole = Column(Float, nullable=False)

    salt = relationship("SaltRecord", back_populates="contributions")
