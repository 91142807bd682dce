import logging
from typing import Iterable, List

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from .models import db, Region
from .errors import ValidationError, NotFoundError

logger = logging.getLogger(__name__)

CLASSIFICATIONS = ('state', 'territory', 'union_territory')
SUB_STATE_CLASSIFICATIONS = ('territory', 'union_territory')

_OPTIONAL_FIELDS = ('name_en', 'external_id', 'area_km2', 'population', 'capital')


class CatalogStore:
    """
    The canonical list of assignable regions.

    Rows come from an external geodata loader; this store only validates and
    upserts them. Regions are session-independent.
    """

    def load_regions(self, rows: Iterable[dict]) -> dict:
        """Upsert regions keyed by their external reference code."""
        rows = list(rows)
        for position, row in enumerate(rows):
            self._validate_row(row, position)

        inserted = 0
        updated = 0
        try:
            for position, row in enumerate(rows):
                region = Region.query.filter_by(code=row['code']).first()
                if region is None:
                    region = Region(code=row['code'])
                    db.session.add(region)
                    inserted += 1
                else:
                    updated += 1

                region.name = row['name'].strip()
                region.classification = row['classification']
                region.is_active = bool(row.get('is_active', True))
                for field in _OPTIONAL_FIELDS:
                    if field in row:
                        setattr(region, field, row[field])
                self._flush_row(row, position)

            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        logger.info(f"Loaded region catalog: {inserted} inserted, {updated} updated")
        return {'inserted': inserted, 'updated': updated, 'total': len(rows)}

    def _flush_row(self, row: dict, position: int):
        try:
            db.session.flush()
        except IntegrityError as e:
            logger.warning(f"Catalog row {position} ({row['code']}) conflicts with an existing region: {e.orig}")
            raise ValidationError(
                f"Catalog row {position} ({row['code']}) reuses the name or external id of another region",
                code='invalid_catalog_row',
                details={'row': position, 'code': row['code'], 'name': row['name']}
            )

    def _validate_row(self, row: dict, position: int):
        if not isinstance(row, dict):
            raise ValidationError(
                f"Catalog row {position} must be an object, got {type(row).__name__}",
                code='invalid_catalog_row',
                details={'row': position}
            )
        missing = [f for f in ('name', 'code', 'classification') if not row.get(f)]
        if missing:
            raise ValidationError(
                f"Catalog row {position} is missing {', '.join(missing)}",
                code='invalid_catalog_row',
                details={'row': position, 'missing': missing}
            )
        not_text = [f for f in ('name', 'code') if not isinstance(row[f], str)]
        if not_text:
            raise ValidationError(
                f"Catalog row {position} has non-text {', '.join(not_text)}",
                code='invalid_catalog_row',
                details={'row': position, 'invalid': not_text}
            )
        if row['classification'] not in CLASSIFICATIONS:
            raise ValidationError(
                f"Catalog row {position} has unknown classification '{row['classification']}'",
                code='invalid_catalog_row',
                details={'row': position, 'classification': row['classification']}
            )

    def list_active_regions(self) -> List[Region]:
        return Region.query.filter_by(is_active=True).order_by(Region.name, Region.id).all()

    def get_region(self, code: str) -> Region:
        region = Region.query.filter_by(code=code).first()
        if region is None:
            raise NotFoundError(f"Region {code} not found", code='unknown_region', details={'code': code})
        return region

    def set_region_active(self, code: str, active: bool) -> Region:
        region = self.get_region(code)
        region.is_active = active
        db.session.commit()
        logger.info(f"Region {code} marked {'active' if active else 'inactive'}")
        return region

    def get_statistics(self) -> dict:
        regions = Region.query.all()
        by_type = dict(
            db.session.query(Region.classification, func.count(Region.id))
            .group_by(Region.classification)
            .all()
        )

        return {
            'total_regions': len(regions),
            'active_regions': sum(1 for r in regions if r.is_active),
            'inactive_regions': sum(1 for r in regions if not r.is_active),
            'states': sum(1 for r in regions if r.classification == 'state'),
            'sub_state_regions': sum(1 for r in regions if r.classification in SUB_STATE_CLASSIFICATIONS),
            'regions_by_type': by_type,
            'regions_with_code': sum(1 for r in regions if r.query_ready),
            'regions_ready_for_query': sum(1 for r in regions if r.query_ready and r.is_active),
        }
