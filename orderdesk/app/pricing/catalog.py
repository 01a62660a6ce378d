"""Read-only pack catalog sources."""
from __future__ import annotations

from decimal import Decimal
from threading import Lock
from typing import Dict, Iterable, List, Optional

from psycopg2.extensions import connection as PgConnection

from ..db import dict_cursor
from .models import Pack, PricedEntity, PricedEntityKind, PricingStructure, PricingTier


class InMemoryPackCatalog:
    """Catalog holding pack definitions in memory."""

    def __init__(self, packs: Iterable[Pack] = ()) -> None:
        self._lock = Lock()
        self._packs: Dict[str, Pack] = {pack.pack_id: pack for pack in packs}

    def add(self, pack: Pack) -> None:
        with self._lock:
            self._packs[pack.pack_id] = pack

    def get_pack(self, pack_id: str) -> Optional[Pack]:
        with self._lock:
            return self._packs.get(pack_id)

    def list_packs(self) -> List[Pack]:
        with self._lock:
            return list(self._packs.values())


def _row_to_tier(row: dict) -> PricingTier:
    return PricingTier(
        label=row["label"],
        price=Decimal(row["price"]),
        sort_order=int(row.get("sort_order") or 0),
        flat=bool(row.get("flat")),
    )


def _entity(entity_id: str, name: str, structure: Optional[str], base_price, tiers: List[PricingTier]) -> PricedEntity:
    return PricedEntity(
        entity_id=entity_id,
        kind=PricedEntityKind.PACK,
        name=name,
        pricing_structure=PricingStructure(structure or PricingStructure.SINGLE.value),
        base_price=Decimal(base_price) if base_price is not None else None,
        tiers=tiers,
    )


class PostgresPackCatalog:
    """Catalog reading ``packs`` and their ``pricing_tiers``.

    Overage tiers are stored under the entity id ``<pack_id>:overage``.
    """

    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    def get_pack(self, pack_id: str) -> Optional[Pack]:
        overage_id = f"{pack_id}:overage"
        with dict_cursor(self._conn) as cursor:
            cursor.execute(
                """
                SELECT pack_id, name, pricing_structure, base_price, included_units,
                       overage_pricing_structure, overage_base_price
                FROM packs
                WHERE pack_id = %s
                """,
                (pack_id,),
            )
            row = cursor.fetchone()
            if not row:
                return None
            cursor.execute(
                """
                SELECT entity_id, label, price, sort_order, flat
                FROM pricing_tiers
                WHERE entity_id IN (%s, %s)
                ORDER BY sort_order, label
                """,
                (pack_id, overage_id),
            )
            tier_rows = cursor.fetchall() or []

        tiers = [_row_to_tier(tier) for tier in tier_rows if tier["entity_id"] == pack_id]
        overage_tiers = [_row_to_tier(tier) for tier in tier_rows if tier["entity_id"] == overage_id]
        name = row.get("name") or ""
        overage = None
        if row.get("overage_pricing_structure") or row.get("overage_base_price") is not None or overage_tiers:
            overage = _entity(
                overage_id,
                f"{name} overage",
                row.get("overage_pricing_structure"),
                row.get("overage_base_price"),
                overage_tiers,
            )
        return Pack(
            pack_id=row["pack_id"],
            name=name,
            price=_entity(pack_id, name, row.get("pricing_structure"), row.get("base_price"), tiers),
            included_units=int(row.get("included_units") or 0),
            overage=overage,
        )


__all__ = ["InMemoryPackCatalog", "PostgresPackCatalog"]
