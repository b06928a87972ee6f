"""
Configuration constants for the document archiver.
"""
import os

# --- File Type Definitions ---
IMAGE_EXTS = {'.png', '.jpg', '.jpeg', '.gif', '.bmp', '.tif', '.tiff', '.webp'}
WORD_EXTS = {'.docx'}
TEXT_EXTS = {'.txt', '.md', '.csv', '.json', '.xml', '.log'}
PDF_EXTS = {'.pdf'}

# Extension to Kind Mapping
# Used to dispatch extraction without complex if/else chains
EXT_TO_KIND = {}
for ext in IMAGE_EXTS: EXT_TO_KIND[ext] = 'image'
for ext in WORD_EXTS: EXT_TO_KIND[ext] = 'word'
for ext in TEXT_EXTS: EXT_TO_KIND[ext] = 'text'
for ext in PDF_EXTS: EXT_TO_KIND[ext] = 'pdf'

# OS clutter that never gets archived
IGNORED_NAMES = {'.ds_store', 'thumbs.db', 'desktop.ini'}

# Flat uploads have no root; they live under this synthetic prefix
LOCAL_UPLOAD_PREFIX = "/local/"

# --- Extraction ---
TEXT_CONTENT_LIMIT = 10000
TEXT_PREVIEW_LIMIT = 1000
MAX_BINARY_PREVIEW_BYTES = 5 * 1024 * 1024  # 5 MB
THUMBNAIL_SIZE = (512, 512)
OCR_LANGUAGES = os.getenv("ARCHIVER_OCR_LANGS", "ara+eng")
EMPTY_DOCUMENT_MARKER = "[Document is empty]"

# --- Hashing ---
HASH_CHUNK_SIZE = 64 * 1024  # 64 KB chunks for reading

# --- Classification ---
GEMINI_MODEL = os.getenv("ARCHIVER_GEMINI_MODEL", "gemini-1.5-flash")
CLASSIFIER_EXCERPT_CHARS = 1500
ARCHIVE_SUMMARY_LIMIT = 100
CHAT_CONTEXT_LIMIT = 50
CHAT_FILE_CONTENT_LIMIT = 10000
DEGRADED_DESCRIPTION = "Automatic classification unavailable; metadata pending review."

# --- Archive ---
AUDIT_LOG_CAP = 1000
ACTING_USER = os.getenv("ARCHIVER_USER", "Records Officer")
RECORD_ID_PATTERN = "REC-{year}-{number:04d}"
SYNC_RESET_DELAY = 3.0  # seconds spent in 'completed' before returning to 'idle'

# --- Storage Keys ---
# Stable across releases; existing archive databases are read by these names
RECORDS_KEY = 'arshif_records_v1'
POLICIES_KEY = 'arshif_policies_v1'
AUDIT_KEY = 'arshif_audit_logs_v1'
FOLDER_KEY = 'arshif_connected_folder'
LAST_SYNC_KEY = 'arshif_last_sync'

DEFAULT_DB_NAME = "archive.db"
