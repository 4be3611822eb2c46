"""
Database Schemas for the second-hand marketplace

Each Pydantic model corresponds to a MongoDB collection. The collection name is the lowercase of the class name.

Example: class Product -> collection "product"

ProductFields and ProductUpdate are not collections: they validate the
seller-supplied part of a listing on create and on partial update.
"""
import json
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


class Condition(str, Enum):
    NEW = "New"
    LIKE_NEW = "Like New"
    GOOD = "Good"
    FAIR = "Fair"
    POOR = "Poor"


class ListingStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class User(BaseModel):
    name: str
    email: EmailStr
    hashed_password: str
    # {product_id: {size: quantity}}
    cart_data: Dict[str, Dict[str, int]] = Field(default_factory=dict)
    wishlist: List[str] = Field(default_factory=list)


class ListingRules(BaseModel):
    """Field rules shared by create and partial update."""
    model_config = ConfigDict(populate_by_name=True, use_enum_values=True, validate_default=True)

    @field_validator("name", "description", "category", "sub_category", mode="before", check_fields=False)
    @classmethod
    def non_empty_text(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip()
            if not value:
                raise ValueError("must not be empty")
        return value

    @field_validator("sizes", mode="before", check_fields=False)
    @classmethod
    def size_list(cls, value: Any) -> Any:
        # multipart forms carry sizes as a JSON encoded array
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except ValueError:
                raise ValueError("sizes must be a JSON list of strings")
            if value is None:
                raise ValueError("sizes must be a JSON list of strings")
        if value is not None and (not isinstance(value, list) or not all(isinstance(s, str) for s in value)):
            raise ValueError("sizes must be a list of strings")
        return value


class ProductFields(ListingRules):
    name: str
    description: str
    price: float = Field(..., ge=0, allow_inf_nan=False)
    category: str
    sub_category: str = Field(..., alias="subCategory")
    sizes: List[str] = Field(default_factory=list)
    bestseller: bool = False
    condition: Condition = Condition.GOOD
    stock: int = Field(1, ge=0)


class Product(ProductFields):
    images: List[str] = Field(..., min_length=1)
    seller: str
    status: ListingStatus = ListingStatus.ACTIVE


class ProductUpdate(ListingRules):
    """Only the fields a caller actually supplied are set on this model."""
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0, allow_inf_nan=False)
    category: Optional[str] = None
    sub_category: Optional[str] = Field(None, alias="subCategory")
    sizes: Optional[List[str]] = None
    bestseller: Optional[bool] = None
    condition: Optional[Condition] = None
    status: Optional[ListingStatus] = None
    stock: Optional[int] = Field(None, ge=0)

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_unset=True, exclude_none=True)
