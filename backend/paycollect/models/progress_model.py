# models/progress_model.py
from datetime import datetime, timezone

from pydantic import BaseModel, Field

# Operation keys shared by triggers, jobs and the progress endpoint
GENERATE_LINKS = "payment_links_generating"
BATCH_SMS = "batch_sms_sending"

OPERATION_KEYS = (GENERATE_LINKS, BATCH_SMS)


class BatchProgress(BaseModel):
    """Snapshot of a running batch. Written whole, never merged."""
    operation_key: str
    total: int = Field(..., ge=0)
    processed: int = Field(0, ge=0)
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def start(cls, operation_key: str, total: int) -> "BatchProgress":
        return cls(operation_key=operation_key, total=total, processed=0)

    def advance_to(self, processed: int) -> "BatchProgress":
        # Non-decreasing, capped at total
        processed = min(max(processed, self.processed), self.total)
        return self.model_copy(update={"processed": processed})

    @property
    def percent(self) -> int:
        if not self.total:
            return 0
        return int(self.processed * 100 / self.total)
