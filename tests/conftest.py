import io

import mongomock
import pytest
from fastapi.testclient import TestClient

import catalog
import main
from auth import create_token
from database import create_document, get_db
from uploads import get_uploader

LAMP = {
    "name": "Desk Lamp",
    "description": "Brass desk lamp, works fine",
    "price": "15",
    "category": "Home & Garden",
    "subCategory": "Decor",
    "condition": "Good",
}


class FakeUploader:
    """Returns a URL derived from the file content so tests can predict it."""

    def __init__(self):
        self.calls = 0
        self.fail_on = None

    def upload(self, file):
        self.calls += 1
        content = file.read().decode()
        if content == self.fail_on:
            raise RuntimeError("cloud unavailable")
        return f"https://images.test/{content}"


def image_files(*names):
    return [io.BytesIO(name.encode()) for name in names]


@pytest.fixture
def database():
    return mongomock.MongoClient().marketplace


@pytest.fixture
def uploader():
    return FakeUploader()


@pytest.fixture
def client(database, uploader):
    main.app.dependency_overrides[get_db] = lambda: database
    main.app.dependency_overrides[get_uploader] = lambda: uploader
    with TestClient(main.app) as c:
        yield c
    main.app.dependency_overrides.clear()


@pytest.fixture
def make_user(database):
    """Insert a user and return (user_id, token)."""
    def make(name="Seller"):
        email = f"{name.lower().replace(' ', '.')}@gmail.com"
        user_id = create_document(
            "user",
            {"name": name, "email": email, "hashed_password": "unused", "cart_data": {}, "wishlist": []},
            database,
        )
        return user_id, create_token({"_id": user_id, "email": email})
    return make


@pytest.fixture
def make_listing(database, uploader):
    def make(seller_id, images=("lamp",), **overrides):
        fields = dict(LAMP, **overrides)
        return catalog.create_listing(database, uploader, seller_id, fields, image_files(*images))
    return make
