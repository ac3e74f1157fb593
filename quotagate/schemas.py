from pydantic import BaseModel, Field


class UploadRequest(BaseModel):
    key: str = ""
    partition: str
    relative_path: str = ""


class UploadResponse(BaseModel):
    size: int


class DeleteRequest(BaseModel):
    key: str
    partition: str
    relative_path: str = ""


class CreateKeyRequest(BaseModel):
    sudo_key: str
    partitions: list[str] = Field(default_factory=list)


class CreateKeyResponse(BaseModel):
    key: str


class DeleteKeyRequest(BaseModel):
    sudo_key: str
    key: str


class CreatePartitionRequest(BaseModel):
    sudo_key: str
    name: str
    rule_set: str = ""


class PartitionRequest(BaseModel):
    sudo_key: str
    name: str


class SweepResponse(BaseModel):
    partition: str
    deleted: int
    failed: int
