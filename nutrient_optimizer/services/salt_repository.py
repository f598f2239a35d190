"""
Salt Repository - relational persistence of the salt catalog.

Reads return plain Salt objects; ion code strings are parsed through the
ion code table, so a row with an unknown code stops the load with a
CatalogLoadError naming the salt instead of surfacing later in a solve.
"""
from typing import Callable, List, Optional, Sequence
import logging

from sqlalchemy.orm import Session, selectinload

from nutrient_optimizer.models.database_models import SaltIonContributionRecord, SaltRecord
from nutrient_optimizer.services.chemistry import Salt, ion_from_code, ion_to_code
from nutrient_optimizer.services.exceptions import CatalogLoadError, UnknownIonError

logger = logging.getLogger(__name__)


def record_to_salt(record: SaltRecord) -> Salt:
    try:
        contributions = {
            ion_from_code(row.ion_code): row.grams_per_mole
            for row in record.contributions
        }
    except UnknownIonError as e:
        logger.error(f"Salt '{record.name}' has an unknown ion code: {e.code!r}")
        raise CatalogLoadError(f"Salt '{record.name}': {e}", source=SaltRecord.__tablename__) from e
    return Salt(
        name=record.name,
        formula=record.formula or "",
        molecular_weight=record.molecular_weight,
        ion_contributions=contributions,
    )


class SaltRepository:
    """Catalog access through an SQLAlchemy session owned by the caller."""

    def __init__(self, db: Session):
        self.db = db

    def _query(self):
        return self.db.query(SaltRecord).options(selectinload(SaltRecord.contributions))

    def list_salts(self) -> List[Salt]:
        """All salts ordered by name."""
        records = self._query().order_by(SaltRecord.name).all()
        return [record_to_salt(record) for record in records]

    def get_by_name(self, name: str) -> Optional[Salt]:
        record = self._query().filter(SaltRecord.name == name).first()
        if record is None:
            return None
        return record_to_salt(record)

    def count(self) -> int:
        return self.db.query(SaltRecord).count()

    def save_salts(self, salts: Sequence[Salt]) -> int:
        """
        Insert or update salts by name.

        Existing contributions of an updated salt are replaced wholesale.
        Returns the number of salts written.
        """
        written = 0
        for salt in salts:
            record = self.db.query(SaltRecord).filter(SaltRecord.name == salt.name).first()
            if record is None:
                record = SaltRecord(name=salt.name)
                self.db.add(record)
            record.formula = salt.formula
            record.molecular_weight = salt.molecular_weight
            # Old rows must be gone before new ones hit uq_salt_ion
            record.contributions.clear()
            self.db.flush()
            record.contributions = [
                SaltIonContributionRecord(ion_code=ion_to_code(ion), grams_per_mole=grams)
                for ion, grams in salt.ion_contributions.items()
            ]
            written += 1
        self.db.commit()
        logger.info(f"Saved {written} salt(s) to the catalog")
        return written


def repository_loader(session_factory: Callable[[], Session]) -> Callable[[], List[Salt]]:
    """Catalog loader that reads the salts table in a short-lived session."""

    def load() -> List[Salt]:
        db = session_factory()
        try:
            return SaltRepository(db).list_salts()
        finally:
            db.close()

    return load
