import sys

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

HALF_GIB = 500 * 1024 * 1024


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Metadata store
    DATABASE_URL: str = Field(..., validation_alias="DATABASE_URL")

    # Blob store
    AWS_ACCESS_KEY_ID: str = Field(..., validation_alias="AWS_ACCESS_KEY_ID")
    AWS_SECRET_ACCESS_KEY: str = Field(..., validation_alias="AWS_SECRET_ACCESS_KEY")
    AWS_REGION: str = Field(..., validation_alias="AWS_REGION")
    AWS_BUCKET_NAME: str = Field(..., validation_alias="AWS_BUCKET_NAME")
    AWS_ENDPOINT: str = Field(default="", validation_alias="AWS_ENDPOINT")
    ENSURE_BUCKET: bool = Field(default=False, validation_alias="ENSURE_BUCKET")

    # Admin
    SUDO_KEY: str = Field(..., min_length=1, validation_alias="QUOTAGATE_SUDO_KEY")

    # HTTP
    HOST: str = Field(default="0.0.0.0", validation_alias="HOST")
    PORT: int = Field(default=6050, validation_alias="PORT")

    # Limits
    MAX_UPLOAD_BYTES: int = Field(default=HALF_GIB, gt=0, validation_alias="MAX_UPLOAD_BYTES")
    DEFAULT_PARTITION_SIZE: int = Field(
        default=HALF_GIB, gt=0, validation_alias="DEFAULT_PARTITION_SIZE"
    )

    # Logging knobs
    LOGGER_NAME: str = "quotagate"
    LOG_LEVEL: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    LOG_TO_FILE: bool = Field(default=False, validation_alias="LOG_TO_FILE")
    LOG_DIR: str = Field(default="logs", validation_alias="LOG_DIR")
    LOG_FILE_NAME: str = Field(default="quotagate.log", validation_alias="LOG_FILE_NAME")
    LOG_MAX_BYTES: int = Field(default=50 * 1024 * 1024, validation_alias="LOG_MAX_BYTES")
    LOG_BACKUP_COUNT: int = Field(default=5, validation_alias="LOG_BACKUP_COUNT")


def load_settings() -> Settings:
    try:
        return Settings()
    except ValidationError as e:
        print("Missing/invalid environment variables:", file=sys.stderr)
        for err in e.errors():
            loc = ".".join(str(x) for x in err.get("loc", []))
            msg = err.get("msg", "")
            print(f" - {loc}: {msg}", file=sys.stderr)
        sys.exit(1)
