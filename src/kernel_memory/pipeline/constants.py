"""Step names and artifact naming conventions shared by the pipeline."""

EXTRACT_STEP = "extract"
PARTITION_STEP = "partition"
GEN_EMBEDDINGS_STEP = "gen_embeddings"
SAVE_RECORDS_STEP = "save_records"
DELETE_DOCUMENT_STEP = "delete"

DEFAULT_INGESTION_STEPS: tuple[str, ...] = (
    EXTRACT_STEP,
    PARTITION_STEP,
    GEN_EMBEDDINGS_STEP,
    SAVE_RECORDS_STEP,
)
DEFAULT_DELETE_STEPS: tuple[str, ...] = (DELETE_DOCUMENT_STEP,)

PIPELINE_STATUS_FILE = "__pipeline_status.json"

EXTRACT_JSON_SUFFIX = ".extract.json"
EXTRACT_TEXT_SUFFIX = ".extract.txt"
PARTITION_INFIX = ".partition."
EMBEDDING_SUFFIX = ".text_embedding"

# Identifiers used as directory and queue names
ID_PATTERN = r"^[A-Za-z0-9._-]+$"
MAX_ID_LENGTH = 256
