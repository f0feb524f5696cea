"""
LedgerRepository - reads and appends ledger entries in MongoDB.

This is the only I/O the ledger engine has:
1. fetch_entries: raw entries for one counterparty or a whole ledger type,
   with entityId / referenceId populated where the linked document exists
2. create_entry: append a new entry and echo it back with its id and dates

Ordering of fetched entries is not guaranteed to callers; the balance
calculator always re-sorts. Driver failures surface as UpstreamError.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from app.core.config import settings
from app.models.base import id_variants, stringify_ids
from app.models.ledger import LedgerType, NewLedgerEntry
from app.utils.ledger_validation import UpstreamError

logger = logging.getLogger(__name__)

# Collections holding the counterparties of each ledger type
ENTITY_COLLECTIONS = {
    LedgerType.SUPPLIER.value: "suppliers",
    LedgerType.BUYER.value: "buyers",
    LedgerType.LOGISTICS.value: "logisticscompanies",
}

# referenceModel -> collection
REFERENCE_COLLECTIONS = {
    "DispatchOrder": "dispatchorders",
    "Purchase": "purchases",
    "Return": "returns",
    "Sale": "sales",
}

ENTITY_FIELDS = {"_id": 1, "name": 1, "company": 1}
REFERENCE_FIELDS = {
    "_id": 1,
    "orderNumber": 1,
    "purchaseNumber": 1,
    "returnNumber": 1,
    "totalDiscount": 1,
    "discount": 1,
}


class LedgerRepository:
    """Repository for raw ledger entries."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db[settings.LEDGER_COLLECTION]

    async def fetch_entries(
        self,
        entity_id: Optional[str] = None,
        ledger_type: Optional[str] = None,
        limit: Optional[int] = None,
        populate: bool = True,
    ) -> List[Dict[str, Any]]:
        """
        Fetch raw entries, newest first, as plain dicts with string ids.

        - entity_id: one counterparty; None or "all" for every counterparty
        - ledger_type: supplier | buyer | logistics
        - limit: defaults to settings.LEDGER_FETCH_LIMIT
        """
        query: Dict[str, Any] = {}
        if ledger_type:
            query["type"] = ledger_type
        if entity_id and entity_id != "all":
            query["entityId"] = {"$in": id_variants(entity_id)}

        pipeline: List[Dict[str, Any]] = [
            {"$match": query},
            {"$sort": {"date": -1, "createdAt": -1}},
            {"$limit": limit or settings.LEDGER_FETCH_LIMIT},
        ]
        if populate:
            pipeline.extend(self._populate_stages(ledger_type))

        try:
            docs = await self.collection.aggregate(pipeline).to_list(None)
        except PyMongoError as exc:
            logger.error(
                "Ledger fetch failed",
                extra={"entity_id": entity_id, "ledger_type": ledger_type},
            )
            raise UpstreamError("fetch", str(exc)) from exc

        return [stringify_ids(doc) for doc in docs]

    async def create_entry(self, entry: NewLedgerEntry) -> Dict[str, Any]:
        """
        Insert a new entry. Returns the stored document (string ids) with the
        persisted _id, date and createdAt.
        """
        doc = entry.model_dump(by_alias=True, exclude_none=True)
        doc["entityId"] = self._to_object_id(doc["entityId"])
        if "referenceId" in doc:
            doc["referenceId"] = self._to_object_id(doc["referenceId"])

        now = datetime.now(timezone.utc)
        doc["createdAt"] = now
        doc["updatedAt"] = now

        try:
            result = await self.collection.insert_one(doc)
        except PyMongoError as exc:
            logger.error(
                "Ledger write failed",
                extra={"entity_id": entry.entity_id, "transaction_type": entry.transaction_type},
            )
            raise UpstreamError("write", str(exc)) from exc

        doc["_id"] = result.inserted_id
        logger.info(
            "Ledger entry created",
            extra={"entry_id": str(result.inserted_id), "entity_id": entry.entity_id},
        )
        return stringify_ids(doc)

    # ===== PRIVATE HELPERS =====

    def _populate_stages(self, ledger_type: Optional[str]) -> List[Dict[str, Any]]:
        """
        $lookup stages that swap bare entityId / referenceId values for the
        linked documents. Ids with no matching document are left as they are.
        """
        stages: List[Dict[str, Any]] = []

        entity_collection = ENTITY_COLLECTIONS.get(ledger_type or "")
        if entity_collection:
            stages.extend([
                {
                    "$lookup": {
                        "from": entity_collection,
                        "localField": "entityId",
                        "foreignField": "_id",
                        "pipeline": [{"$project": ENTITY_FIELDS}],
                        "as": "_entity",
                    }
                },
                {"$set": {"entityId": {"$ifNull": [{"$first": "$_entity"}, "$entityId"]}}},
            ])

        lookups = []
        for model, collection in REFERENCE_COLLECTIONS.items():
            alias = f"_ref{model}"
            stages.append({
                "$lookup": {
                    "from": collection,
                    "localField": "referenceId",
                    "foreignField": "_id",
                    "pipeline": [{"$project": REFERENCE_FIELDS}],
                    "as": alias,
                }
            })
            lookups.append({
                "$cond": [
                    {"$eq": ["$referenceModel", model]},
                    {"$first": f"${alias}"},
                    None,
                ]
            })

        stages.append({"$set": {"referenceId": {"$ifNull": lookups + ["$referenceId"]}}})
        stages.append({"$unset": ["_entity"] + [f"_ref{model}" for model in REFERENCE_COLLECTIONS]})
        return stages

    @staticmethod
    def _to_object_id(value: Any) -> Any:
        if isinstance(value, str) and ObjectId.is_valid(value):
            return ObjectId(value)
        return value
