from typing import Optional

from pydantic import BaseModel, ConfigDict


class BorrowToolRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    toolId: Optional[str] = None
    borrowerName: Optional[str] = None
    borrowerLocation: Optional[str] = None
    purpose: Optional[str] = None


class ReturnToolRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    borrowRecordId: Optional[str] = None
