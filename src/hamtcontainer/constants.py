"""Constants used throughout hamtcontainer."""

# Reserved metadata entry holding the container identity
RESERVED_NAME_KEY = "__META_RESERVED_HAMT_KEY__"

# Identity used when the builder is given none
DEFAULT_IDENTITY = b"hamt"

# Trie shape
DEFAULT_BIT_WIDTH = 3
DEFAULT_BUCKET_SIZE = 64

# Block format
FORMAT_VERSION = 1
HASH_ALGORITHM = "sha256"
HASH_LENGTH = 64  # SHA-256 produces 64 hex characters
HASH_BITS = 256

# File storage
STORE_DIR = ".hamt"
GZIP_THRESHOLD = 1024 * 1024  # 1 MB

# Remote storage defaults
DEFAULT_IPFS_URL = "http://localhost:5001"
DEFAULT_REDIS_HOST = "localhost:6379"
DEFAULT_TIMEOUT_SECONDS = 30.0

# Exit codes
EXIT_USER_ERROR = 1
