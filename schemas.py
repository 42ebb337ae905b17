from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from models import CategoryMain, ConfirmationMode, Frequency, YearlyMode


class SubcategoryIn(BaseModel):
    category_main: CategoryMain
    name: str = Field(..., min_length=1, max_length=100)


class ObligationGroupIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    # Appended after the last group when omitted.
    sort_order: Optional[int] = Field(default=None, ge=0)


class BudgetApplicationIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    year: int = Field(..., ge=1970, le=3000)
    mode: YearlyMode = YearlyMode.divide
    # 0-based, January is 0.
    target_month: Optional[int] = Field(default=None, ge=0, le=11)


class ObligationIn(BaseModel):
    title: Optional[str] = Field(default=None, max_length=120)
    category_main: CategoryMain
    subcategory_id: Optional[int] = None
    subcategory_name: Optional[str] = Field(default=None, max_length=100)
    amount_cents: int = Field(..., ge=0)
    payee: Optional[str] = Field(default=None, max_length=120)
    note: Optional[str] = None
    frequency: Frequency
    confirmation_mode: ConfirmationMode = ConfirmationMode.manual
    start_date: date
    end_date: Optional[date] = None
    group_id: Optional[int] = None
    budget: Optional[BudgetApplicationIn] = None

    @model_validator(mode="after")
    def _check_reference_and_dates(self) -> "ObligationIn":
        if self.subcategory_id is None and not (
            self.subcategory_name and self.subcategory_name.strip()
        ):
            raise ValueError("Either subcategory_id or subcategory_name is required")
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self
