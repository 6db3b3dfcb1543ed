from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, model_validator

from services.production.ranges import BatchRange


class RangeIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # Bounds are checked by the allocator so the caller gets its specific message.
    from_: int = Field(..., alias="from")
    to: int

    def to_range(self) -> BatchRange:
        return BatchRange(self.from_, self.to)


class ProductQtyIn(BaseModel):
    product_id: str = Field(..., max_length=64)
    product_name: str | None = Field(default=None, max_length=256)
    quantity: int = Field(..., ge=0)


class BindingAdviceIn(BaseModel):
    number: str = Field(..., max_length=64)
    quantity: int = Field(..., gt=0)
    client_name: str | None = Field(default=None, max_length=256)
    meta: dict = Field(default_factory=dict)


class JobCardIn(BaseModel):
    quantity: int
    number: str | None = Field(default=None, max_length=64)
    products: list[ProductQtyIn] = Field(default_factory=list)


class BatchIn(BaseModel):
    """Either `range` (unit range) or `quantity` (count-only, placed by the allocator)."""

    range: RangeIn | None = None
    quantity: int | None = None
    products: list[ProductQtyIn] = Field(default_factory=list)
    notes: str | None = None

    @model_validator(mode="after")
    def _one_of(self):
        if (self.range is None) == (self.quantity is None):
            raise ValueError("provide exactly one of 'range' or 'quantity'")
        return self


class ProgressIn(BaseModel):
    """Absolute completed/rejected quantities for the current stage.

    Entities without a product breakdown use `completed`/`rejected`; multi-product
    entities use the per-product maps.
    """

    completed: int | None = None
    rejected: int | None = None
    products: dict[str, int] | None = None
    rejected_products: dict[str, int] | None = None

    @model_validator(mode="after")
    def _shape(self):
        if self.completed is None and not self.products:
            raise ValueError("provide 'completed' or 'products'")
        if self.completed is not None and self.products:
            raise ValueError("'completed' and 'products' are mutually exclusive")
        return self

    def completed_value(self):
        return self.products if self.products else self.completed

    def rejected_value(self):
        return self.rejected_products if self.rejected_products else self.rejected


class DispatchIn(BaseModel):
    quantity: int
