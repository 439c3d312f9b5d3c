"""
Fixed protocol constants.

Values here are shared with the on-chain contracts or with content that is
already published, so they are not configurable.
"""

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# Session keys
SESSION_KEY_DEFAULT_SPENDING_LIMIT = 10 * 10**18  # 10 ETH in wei
SESSION_KEY_DURATION_SECONDS = 7 * 24 * 60 * 60
SESSION_KEY_STORAGE_PREFIX = "amberink_session_key"

# Gas
ESTIMATED_GAS_UNITS = 200_000
STANDARD_TRANSFER_GAS_LIMIT = 21_000
GAS_ESTIMATE_BUFFER_PCT = 115
WITHDRAW_GAS_BUFFER_PCT = 120
WITHDRAW_SAFETY_DUST_WEI = 10_000  # covers L1 data fees on rollups

# Delegated calls
SIGNATURE_DEADLINE_SECONDS = 300
EIP712_DOMAIN_NAME = "SessionKeyManager"
EIP712_DOMAIN_VERSION = "1"

# Article encryption
ENCRYPTION_MESSAGE_PREFIX = "AmberInk Article Encryption Key: "
HKDF_SALT = b"AmberInk-HKDF-Salt-v1"
HKDF_INFO = b"AmberInk-Article-Encryption"
AES_KEY_BYTES = 32
AES_GCM_NONCE_BYTES = 12
AES_GCM_TAG_BYTES = 16
ENCRYPTION_SIG_CACHE_PREFIX = "amberink_encryption_sig_"

# Article folders
ARTICLE_INDEX_FILE = "index.md"
ARTICLE_COVER_IMAGE_FILE = "coverImage"
MANIFEST_CONTENT_TYPE = "application/x.irys-manifest+json"
PLACEHOLDER_CACHE_PREFIX = "amberink_placeholder_txid"
PLACEHOLDER_CONTENT = "empty text"
MANIFEST_SUMMARY_TAG_LIMIT = 200

# Contract string limits (UTF-8 bytes)
MAX_ORIGINAL_AUTHOR_BYTES = 64
MAX_TITLE_BYTES = 128
MAX_SUMMARY_BYTES = 512
MAX_ROYALTY_BPS = 10_000
