"""
Queue payload schema.
"""
from pydantic import BaseModel, ConfigDict, Field, StrictStr


class ProcessingJob(BaseModel):
    """
    Payload of one bick-processing job.

    Serialized as {"bickId", "storageKey", "originalFilename"}; all three are
    required non-empty strings.
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    bick_id: StrictStr = Field(alias="bickId", min_length=1)
    storage_key: StrictStr = Field(alias="storageKey", min_length=1)
    original_filename: StrictStr = Field(alias="originalFilename", min_length=1)

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True)
