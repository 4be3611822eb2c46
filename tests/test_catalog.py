import pytest
from bson import ObjectId

import catalog
from conftest import LAMP, image_files
from errors import AuthorizationError, NotFoundError, UnexpectedError, ValidationError


def test_create_sets_seller_from_requester(database, uploader, make_user):
    owner_id, _ = make_user("Ada")
    intruder_id, _ = make_user("Eve")
    fields = dict(LAMP, seller=intruder_id, status="inactive")

    listing = catalog.create_listing(database, uploader, owner_id, fields, image_files("lamp"))

    assert listing["seller"]["_id"] == owner_id
    assert listing["seller"]["name"] == "Ada"
    assert listing["status"] == "active"
    assert listing["created_at"] is not None
    stored = database["product"].find_one({"_id": ObjectId(listing["_id"])})
    assert stored["seller"] == ObjectId(owner_id)


def test_create_fills_defaults(database, uploader, make_user):
    owner_id, _ = make_user()
    fields = {k: v for k, v in LAMP.items() if k != "condition"}

    listing = catalog.create_listing(database, uploader, owner_id, fields, image_files("lamp"))

    assert listing["condition"] == "Good"
    assert listing["stock"] == 1
    assert listing["bestseller"] is False
    assert listing["sizes"] == []
    assert listing["price"] == 15.0


def test_create_without_images_fails_even_when_fields_are_valid(database, uploader, make_user):
    owner_id, _ = make_user()

    with pytest.raises(ValidationError, match="image"):
        catalog.create_listing(database, uploader, owner_id, dict(LAMP, sizes='["M"]'), [])

    assert database["product"].count_documents({}) == 0
    assert uploader.calls == 0


@pytest.mark.parametrize("sizes", ["S,M", '{"size": "M"}', "[1, 2]", "null"])
def test_create_rejects_malformed_sizes(database, uploader, make_user, sizes):
    owner_id, _ = make_user()

    with pytest.raises(ValidationError, match="sizes"):
        catalog.create_listing(database, uploader, owner_id, dict(LAMP, sizes=sizes), image_files("lamp"))

    assert uploader.calls == 0


def test_create_parses_size_list(make_user, make_listing):
    owner_id, _ = make_user()

    listing = make_listing(owner_id, sizes='["S", "M", "XL"]', bestseller="true", stock="3")

    assert listing["sizes"] == ["S", "M", "XL"]
    assert listing["bestseller"] is True
    assert listing["stock"] == 3


@pytest.mark.parametrize("price", ["-1", "abc", "", "nan"])
def test_create_rejects_bad_price(database, uploader, make_user, price):
    owner_id, _ = make_user()

    with pytest.raises(ValidationError, match="price"):
        catalog.create_listing(database, uploader, owner_id, dict(LAMP, price=price), image_files("lamp"))


@pytest.mark.parametrize("field", ["name", "description", "category", "subCategory"])
def test_create_requires_descriptive_fields(database, uploader, make_user, field):
    owner_id, _ = make_user()
    missing = {k: v for k, v in LAMP.items() if k != field}
    blank = dict(LAMP, **{field: "   "})

    with pytest.raises(ValidationError):
        catalog.create_listing(database, uploader, owner_id, missing, image_files("lamp"))
    with pytest.raises(ValidationError):
        catalog.create_listing(database, uploader, owner_id, blank, image_files("lamp"))


def test_create_rejects_unknown_condition(database, uploader, make_user):
    owner_id, _ = make_user()

    with pytest.raises(ValidationError, match="condition"):
        catalog.create_listing(database, uploader, owner_id, dict(LAMP, condition="Mint"), image_files("lamp"))


def test_one_failed_upload_aborts_create(database, uploader, make_user):
    owner_id, _ = make_user()
    uploader.fail_on = "back"

    with pytest.raises(UnexpectedError, match="upload"):
        catalog.create_listing(database, uploader, owner_id, LAMP, image_files("front", "back", "side"))

    assert database["product"].count_documents({}) == 0


def test_images_keep_slot_order(make_user, make_listing):
    owner_id, _ = make_user()

    listing = make_listing(owner_id, images=("front", "back", "side", "top"))

    assert listing["images"] == [
        "https://images.test/front",
        "https://images.test/back",
        "https://images.test/side",
        "https://images.test/top",
    ]


def test_update_by_non_owner_is_forbidden(database, uploader, make_user, make_listing):
    owner_id, _ = make_user("Ada")
    other_id, _ = make_user("Eve")
    listing = make_listing(owner_id)

    with pytest.raises(AuthorizationError):
        catalog.update_listing(database, uploader, other_id, listing["_id"], {"price": "5"}, image_files("new"))

    after = catalog.get_listing(database, listing["_id"])
    assert after["price"] == 15.0
    assert after["images"] == listing["images"]
    assert uploader.calls == 1


def test_delete_by_non_owner_is_forbidden(database, make_user, make_listing):
    owner_id, _ = make_user("Ada")
    other_id, _ = make_user("Eve")
    listing = make_listing(owner_id)

    with pytest.raises(AuthorizationError):
        catalog.delete_listing(database, other_id, listing["_id"])

    assert catalog.get_listing(database, listing["_id"])["name"] == "Desk Lamp"


def test_partial_update_keeps_omitted_fields(database, uploader, make_user, make_listing):
    owner_id, _ = make_user()
    listing = make_listing(owner_id, sizes='["M"]')

    updated = catalog.update_listing(database, uploader, owner_id, listing["_id"], {"price": "10"})

    assert updated["price"] == 10.0
    for key in ("name", "description", "category", "subCategory", "condition", "sizes", "images", "status"):
        assert updated[key] == listing[key]
    assert updated["created_at"] == listing["created_at"]


def test_update_applies_zero_and_false_values(database, uploader, make_user, make_listing):
    owner_id, _ = make_user()
    listing = make_listing(owner_id, bestseller="true", stock="4")

    updated = catalog.update_listing(
        database, uploader, owner_id, listing["_id"], {"price": "0", "bestseller": "false", "stock": "0"}
    )

    assert updated["price"] == 0
    assert updated["bestseller"] is False
    assert updated["stock"] == 0


def test_update_rejects_blank_name_without_changes(database, uploader, make_user, make_listing):
    owner_id, _ = make_user()
    listing = make_listing(owner_id)

    with pytest.raises(ValidationError, match="name"):
        catalog.update_listing(database, uploader, owner_id, listing["_id"], {"name": "", "price": "3"})

    after = catalog.get_listing(database, listing["_id"])
    assert after["name"] == "Desk Lamp"
    assert after["price"] == 15.0


def test_update_replaces_images_only_when_new_files_are_given(database, uploader, make_user, make_listing):
    owner_id, _ = make_user()
    listing = make_listing(owner_id, images=("front", "back"))

    kept = catalog.update_listing(database, uploader, owner_id, listing["_id"], {"stock": "2"}, [])
    replaced = catalog.update_listing(database, uploader, owner_id, listing["_id"], {}, image_files("new"))

    assert kept["images"] == listing["images"]
    assert replaced["images"] == ["https://images.test/new"]


def test_update_can_deactivate_listing(database, uploader, make_user, make_listing):
    owner_id, _ = make_user()
    listing = make_listing(owner_id)

    updated = catalog.update_listing(database, uploader, owner_id, listing["_id"], {"status": "inactive"})

    assert updated["status"] == "inactive"
    with pytest.raises(ValidationError):
        catalog.update_listing(database, uploader, owner_id, listing["_id"], {"status": "sold"})


@pytest.mark.parametrize("listing_id", [str(ObjectId()), "not-an-id"])
def test_missing_listing_is_not_found(database, uploader, make_user, listing_id):
    owner_id, _ = make_user()

    with pytest.raises(NotFoundError):
        catalog.get_listing(database, listing_id)
    with pytest.raises(NotFoundError):
        catalog.update_listing(database, uploader, owner_id, listing_id, {"price": "1"})
    with pytest.raises(NotFoundError):
        catalog.delete_listing(database, owner_id, listing_id)


def test_public_list_hides_inactive_but_owner_sees_it(database, uploader, make_user, make_listing):
    owner_id, _ = make_user()
    visible = make_listing(owner_id, name="Chair")
    hidden = make_listing(owner_id, name="Sofa")
    catalog.update_listing(database, uploader, owner_id, hidden["_id"], {"status": "inactive"})

    public_ids = [p["_id"] for p in catalog.list_listings(database)]
    owner_ids = [p["_id"] for p in catalog.list_owner_listings(database, owner_id)]
    inactive_ids = [p["_id"] for p in catalog.list_listings(database, status="inactive")]

    assert public_ids == [visible["_id"]]
    assert set(owner_ids) == {visible["_id"], hidden["_id"]}
    assert inactive_ids == [hidden["_id"]]


def test_lists_are_newest_first(database, make_user, make_listing):
    owner_id, _ = make_user()
    first = make_listing(owner_id, name="First")
    second = make_listing(owner_id, name="Second")
    third = make_listing(owner_id, name="Third")

    expected = [third["_id"], second["_id"], first["_id"]]
    assert [p["_id"] for p in catalog.list_listings(database)] == expected
    assert [p["_id"] for p in catalog.list_owner_listings(database, owner_id)] == expected


def test_owner_listing_only_returns_own(database, make_user, make_listing):
    ada, _ = make_user("Ada")
    eve, _ = make_user("Eve")
    make_listing(ada)
    make_listing(eve)

    assert [p["seller"] for p in catalog.list_owner_listings(database, ada)] == [ada]


def test_category_listing(database, uploader, make_user, make_listing):
    owner_id, _ = make_user()
    lamp = make_listing(owner_id)
    make_listing(owner_id, name="Phone", category="Electronics", subCategory="Mobile Phones")
    hidden = make_listing(owner_id, name="Rug")
    catalog.update_listing(database, uploader, owner_id, hidden["_id"], {"status": "inactive"})

    assert [p["_id"] for p in catalog.list_category_listings(database, "Home & Garden")] == [lamp["_id"]]
    assert catalog.list_category_listings(database, "Books") == []


@pytest.mark.parametrize("query", ["lamp", "LAMP", "Vintage", "brass", "garden", "DECOR"])
def test_search_matches_any_text_field_case_insensitively(database, make_user, make_listing, query):
    owner_id, _ = make_user()
    lamp = make_listing(owner_id, name="Vintage Lamp")
    make_listing(owner_id, name="Phone", description="Unlocked", category="Electronics", subCategory="Mobile Phones")

    assert [p["_id"] for p in catalog.search_listings(database, query)] == [lamp["_id"]]


def test_search_treats_query_literally_and_skips_inactive(database, uploader, make_user, make_listing):
    owner_id, _ = make_user()
    lamp = make_listing(owner_id)

    assert catalog.search_listings(database, "l.mp") == []
    catalog.update_listing(database, uploader, owner_id, lamp["_id"], {"status": "inactive"})
    assert catalog.search_listings(database, "lamp") == []


def test_get_by_id_returns_inactive_listing_with_seller_profile(database, uploader, make_user, make_listing):
    owner_id, _ = make_user("Ada")
    listing = make_listing(owner_id)
    catalog.update_listing(database, uploader, owner_id, listing["_id"], {"status": "inactive"})

    fetched = catalog.get_listing(database, listing["_id"])

    assert fetched["status"] == "inactive"
    assert fetched["seller"] == {"_id": owner_id, "name": "Ada", "email": "ada@gmail.com"}


def test_listing_lifecycle(database, uploader, make_user):
    u1, _ = make_user("Ada")
    u2, _ = make_user("Eve")

    created = catalog.create_listing(database, uploader, u1, LAMP, image_files("url1"))
    fetched = catalog.get_listing(database, created["_id"])
    assert fetched["seller"]["_id"] == u1
    assert fetched["status"] == "active"

    with pytest.raises(AuthorizationError):
        catalog.update_listing(database, uploader, u2, created["_id"], {"price": "5"})
    assert catalog.get_listing(database, created["_id"])["price"] == 15.0

    catalog.update_listing(database, uploader, u1, created["_id"], {"price": "5"})
    fetched = catalog.get_listing(database, created["_id"])
    assert fetched["price"] == 5.0
    assert fetched["name"] == "Desk Lamp"

    catalog.delete_listing(database, u1, created["_id"])
    with pytest.raises(NotFoundError):
        catalog.get_listing(database, created["_id"])


def test_update_rejects_null_sizes(database, uploader, make_user, make_listing):
    owner_id, _ = make_user()
    listing = make_listing(owner_id, sizes='["M"]')

    with pytest.raises(ValidationError, match="sizes"):
        catalog.update_listing(database, uploader, owner_id, listing["_id"], {"sizes": "null"})

    assert catalog.get_listing(database, listing["_id"])["sizes"] == ["M"]
