from typing import Any

from pydantic import BaseModel, Field


class CommitRequest(BaseModel):
    # Rows are decoded one by one at commit; undecodable rows are dropped, not rejected with the batch.
    rows: list[dict[str, Any]] = Field(default_factory=list)
