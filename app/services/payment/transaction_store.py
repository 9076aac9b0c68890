"""
Transaction Store
MongoDB persistence for transactions and payment methods
"""
import re
from datetime import datetime
from typing import Optional, Dict, Any, List
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument, ASCENDING, DESCENDING

from app.models.payment.transaction import (
    ReconciliationEntry,
    ReconciliationSource,
    TransactionInDB,
    TransactionStatus,
)

# MongoDB field names may not contain "." or start with "$"
_UNSAFE_KEY = re.compile(r"[.$]")


def sanitize_key(key: Any) -> str:
    return _UNSAFE_KEY.sub("_", str(key)) or "_"


def sanitize_fragment(fragment: Dict[str, Any]) -> Dict[str, Any]:
    """Make a gateway payload safe to store as nested document keys"""
    clean: Dict[str, Any] = {}
    for key, value in (fragment or {}).items():
        if isinstance(value, dict):
            value = sanitize_fragment(value)
        clean[sanitize_key(key)] = value
    return clean


def serialize_document(document: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Convert ObjectId to string"""
    if document and "_id" in document:
        document["_id"] = str(document["_id"])
    return document


class TransactionStore:
    """
    Transaction persistence.

    Every status change and response merge goes through a single
    find_one_and_update so concurrent reconciliations of the same document
    can never lose each other's merge keys.
    """

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.transactions = db.transactions

    async def find_by_reference(self, reference: str) -> Optional[Dict[str, Any]]:
        """Lookup by correlation reference"""
        if not reference:
            return None
        document = await self.transactions.find_one({"transaction_id": reference})
        return serialize_document(document)

    async def find_by_either_id(
        self,
        reference: Optional[str],
        echo_id: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        """
        Lookup by transaction reference first, then by gateway echo id.
        The internal id is accepted as a reference too.
        """
        if reference:
            document = await self.transactions.find_one(
                {"$or": [{"transaction_id": reference}, {"internal_id": reference}]}
            )
            if document:
                return serialize_document(document)
            document = await self.transactions.find_one({"gateway_transaction_id": reference})
            if document:
                return serialize_document(document)

        if echo_id:
            document = await self.transactions.find_one({"gateway_transaction_id": echo_id})
            return serialize_document(document)

        return None

    async def insert(self, transaction: TransactionInDB) -> Dict[str, Any]:
        document = transaction.model_dump()
        document["payment_response"] = sanitize_fragment(document.get("payment_response", {}))
        result = await self.transactions.insert_one(document)
        document["_id"] = str(result.inserted_id)
        return document

    async def update_status_and_merge(
        self,
        transaction_id: str,
        new_status: Optional[TransactionStatus],
        fragment: Dict[str, Any],
        source: ReconciliationSource,
        echo_id: Optional[str] = None,
        previous_status: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Atomically merge a response fragment into payment_response, record
        the reconciliation, and overwrite status / gateway id when supplied.

        Args:
            transaction_id: Correlation reference of the stored transaction
            new_status: New status, or None to leave status untouched
            fragment: Gateway payload; its keys win over stored keys
            source: Channel that delivered the update
            echo_id: Gateway echo id to record
            previous_status: Status observed before this update (audit only)

        Returns:
            Updated document, or None if no transaction matched
        """
        now = datetime.utcnow()
        clean = sanitize_fragment(fragment)
        source_value = ReconciliationSource(source).value

        set_fields: Dict[str, Any] = {
            f"payment_response.{key}": value for key, value in clean.items()
        }
        set_fields["payment_response.last_reconciliation"] = {
            "source": source_value,
            "received_at": now,
        }
        set_fields["updated_at"] = now

        if new_status is not None:
            set_fields["status"] = TransactionStatus(new_status).value
        if echo_id:
            set_fields["gateway_transaction_id"] = echo_id

        entry = ReconciliationEntry(
            source=source_value,
            received_at=now,
            status=new_status,
            previous_status=previous_status or TransactionStatus.PENDING,
            status_changed=new_status is not None,
            payload=clean,
        )

        document = await self.transactions.find_one_and_update(
            {"transaction_id": transaction_id},
            {
                "$set": set_fields,
                "$push": {"reconciliation_log": entry.model_dump()},
            },
            return_document=ReturnDocument.AFTER,
        )
        return serialize_document(document)

    async def find_pending(self, created_before: datetime, limit: int = 50) -> List[Dict[str, Any]]:
        """Oldest pending transactions created before the cutoff"""
        cursor = self.transactions.find(
            {"status": TransactionStatus.PENDING.value, "created_at": {"$lt": created_before}}
        ).sort("created_at", ASCENDING).limit(limit)
        documents = await cursor.to_list(length=limit)
        return [serialize_document(doc) for doc in documents]

    async def exists_with_client_reference(self, reference: str) -> bool:
        document = await self.transactions.find_one(
            {"$or": [{"transaction_id": reference}, {"internal_id": reference}]},
            {"_id": 1},
        )
        return document is not None

    async def find_many(
        self,
        filters: Optional[Dict[str, Any]] = None,
        skip: int = 0,
        limit: int = 20
    ) -> List[Dict[str, Any]]:
        cursor = self.transactions.find(filters or {}).sort("created_at", DESCENDING).skip(skip).limit(limit)
        documents = await cursor.to_list(length=limit)
        return [serialize_document(doc) for doc in documents]

    async def count(self, filters: Optional[Dict[str, Any]] = None) -> int:
        return await self.transactions.count_documents(filters or {})


class PaymentMethodStore:
    """Read-only access to payment method activation state"""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.payment_methods = db.payment_methods

    async def find_active(self, gateway: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """First active payment method, optionally for a given gateway"""
        query: Dict[str, Any] = {"is_active": True}
        if gateway:
            query["gateway"] = gateway
        cursor = self.payment_methods.find(query).sort("created_at", ASCENDING).limit(1)
        documents = await cursor.to_list(length=1)
        return serialize_document(documents[0]) if documents else None
