import os
import tempfile

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    log_level: str = "INFO"
    log_levels: str = ""  # Per-logger overrides, e.g. "dataask.domain.imports=DEBUG"
    allowed_origins: str = "http://localhost:5173,http://localhost:3000"

    # Storage locations
    data_dir: str = os.path.join(os.getcwd(), "data")  # SQLite files created by imports
    upload_scratch_dir: str = os.path.join(tempfile.gettempdir(), "dataask-uploads")
    upload_max_file_size_mb: int = 50
    upload_ttl_seconds: int = 3600  # Unclaimed previews are swept after this

    # Import pipeline
    import_batch_size: int = 1000          # Rows per multi-row INSERT
    import_sample_rows: int = 1000         # Prefix used for type inference
    preview_rows: int = 10                 # Rows echoed back in sampleData
    import_max_malformed_ratio: float = 0.05
    import_job_retention_seconds: int = 300
    sqlite_max_variables: int = 32766      # SQLITE_MAX_VARIABLE_NUMBER (>= 3.32)

    # Read paths
    statistics_max_rows: int = 100000
    table_preview_default_limit: int = 100
    table_preview_max_limit: int = 1000
    query_row_limit: int = 1000

    model_config = ConfigDict(env_file=".env", extra="ignore")

    @property
    def allowed_origin_list(self) -> list[str]:
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]


settings = Settings()
