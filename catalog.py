"""
Listing lifecycle: creating, browsing, editing and removing catalog entries.

Rules enforced here rather than in the routes:

* ``seller`` always comes from the verified requester, never from the payload.
* Only the seller may update or delete a listing.
* Public browse, category and search only return ``active`` listings; lookups
  by id and by owner return inactive ones too.
* Updates change exactly the fields that were supplied.
"""
import logging
import re
from datetime import datetime, timezone
from typing import Any, BinaryIO, Dict, Iterable, List, Sequence

import pydantic
from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.database import Database

from database import as_object_id, create_document, get_documents
from errors import AuthorizationError, NotFoundError, ValidationError
from schemas import ListingStatus, Product, ProductFields, ProductUpdate
from uploads import upload_images

logger = logging.getLogger(__name__)

COLLECTION = "product"
# _id breaks ties between listings created within the same millisecond
NEWEST_FIRST = [("created_at", -1), ("_id", -1)]
SEARCH_FIELDS = ("name", "description", "category", "subCategory")


def describe(error: pydantic.ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first["loc"])
    return f"{location}: {first['msg']}" if location else first["msg"]


def serialize(doc: Dict[str, Any]) -> Dict[str, Any]:
    item = dict(doc)
    item["_id"] = str(item["_id"])
    if isinstance(item.get("seller"), ObjectId):
        item["seller"] = str(item["seller"])
    return item


def resolve_sellers(database: Database, docs: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Serialize listings with ``seller`` expanded to the public profile."""
    docs = list(docs)
    seller_ids = list({doc["seller"] for doc in docs if isinstance(doc.get("seller"), ObjectId)})
    profiles = {}
    if seller_ids:
        for user in database["user"].find({"_id": {"$in": seller_ids}}, {"name": 1, "email": 1}):
            profiles[user["_id"]] = {"_id": str(user["_id"]), "name": user.get("name"), "email": user.get("email")}
    items = []
    for doc in docs:
        item = serialize(doc)
        profile = profiles.get(doc.get("seller"))
        if profile:
            item["seller"] = profile
        items.append(item)
    return items


def _seller_ref(requester_id: str):
    return as_object_id(requester_id) or requester_id


def _load(database: Database, listing_id: str) -> Dict[str, Any]:
    oid = as_object_id(listing_id)
    doc = database[COLLECTION].find_one({"_id": oid}) if oid is not None else None
    if doc is None:
        raise NotFoundError()
    return doc


def _load_owned(database: Database, requester_id: str, listing_id: str, action: str) -> Dict[str, Any]:
    doc = _load(database, listing_id)
    if str(doc.get("seller")) != str(requester_id):
        logger.info("User %s tried to %s listing %s owned by %s", requester_id, action, listing_id, doc.get("seller"))
        raise AuthorizationError(f"You can only {action} your own products")
    return doc


def create_listing(database: Database, uploader, requester_id: str, fields: Dict[str, Any],
                   files: Sequence[BinaryIO]) -> Dict[str, Any]:
    if not files:
        raise ValidationError("At least one image is required")
    try:
        validated = ProductFields.model_validate(fields)
    except pydantic.ValidationError as e:
        raise ValidationError(describe(e))

    urls = upload_images(uploader, files)
    product = Product(**validated.model_dump(), images=urls, seller=str(requester_id))
    doc = product.model_dump(by_alias=True)
    doc["seller"] = _seller_ref(requester_id)
    listing_id = create_document(COLLECTION, doc, database)
    logger.info("User %s listed %s (%s)", requester_id, listing_id, product.name)
    return get_listing(database, listing_id)


def list_listings(database: Database, status: str = ListingStatus.ACTIVE) -> List[Dict[str, Any]]:
    docs = get_documents(COLLECTION, {"status": ListingStatus(status).value}, sort=NEWEST_FIRST, database=database)
    return resolve_sellers(database, docs)


def list_owner_listings(database: Database, requester_id: str) -> List[Dict[str, Any]]:
    docs = get_documents(COLLECTION, {"seller": _seller_ref(requester_id)}, sort=NEWEST_FIRST, database=database)
    return [serialize(doc) for doc in docs]


def list_category_listings(database: Database, category: str) -> List[Dict[str, Any]]:
    filt = {"status": ListingStatus.ACTIVE.value, "category": category}
    docs = get_documents(COLLECTION, filt, sort=NEWEST_FIRST, database=database)
    return resolve_sellers(database, docs)


def search_listings(database: Database, query: str) -> List[Dict[str, Any]]:
    pattern = re.escape(query.strip())
    filt = {
        "status": ListingStatus.ACTIVE.value,
        "$or": [{field: {"$regex": pattern, "$options": "i"}} for field in SEARCH_FIELDS],
    }
    docs = get_documents(COLLECTION, filt, sort=NEWEST_FIRST, database=database)
    return resolve_sellers(database, docs)


def get_listing(database: Database, listing_id: str) -> Dict[str, Any]:
    # no status or owner check: any id holder can open a permalink
    return resolve_sellers(database, [_load(database, listing_id)])[0]


def update_listing(database: Database, uploader, requester_id: str, listing_id: str, fields: Dict[str, Any],
                   files: Sequence[BinaryIO] = ()) -> Dict[str, Any]:
    doc = _load_owned(database, requester_id, listing_id, "update")
    try:
        changes = ProductUpdate.model_validate(fields).changes()
    except pydantic.ValidationError as e:
        raise ValidationError(describe(e))

    if files:
        changes["images"] = upload_images(uploader, files)
    changes["updated_at"] = datetime.now(timezone.utc)
    updated = database[COLLECTION].find_one_and_update(
        {"_id": doc["_id"]}, {"$set": changes}, return_document=ReturnDocument.AFTER
    )
    if updated is None:
        raise NotFoundError()
    logger.info("User %s updated listing %s: %s", requester_id, listing_id, sorted(changes))
    return resolve_sellers(database, [updated])[0]


def delete_listing(database: Database, requester_id: str, listing_id: str) -> None:
    doc = _load_owned(database, requester_id, listing_id, "delete")
    database[COLLECTION].delete_one({"_id": doc["_id"]})
    logger.info("User %s removed listing %s", requester_id, listing_id)
