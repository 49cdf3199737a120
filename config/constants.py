"""Application constants."""

# Amounts are integer points; 1 currency unit = POINTS_PER_UNIT points by default
DEFAULT_POINTS_PER_UNIT = 100

# Default task pricing (in points): price, tier-1 commission, tier-2 commission
DEFAULT_TASK_PRICING = {
    "lead": {"name": "Customer lead", "price": 1000, "commission_1": 100, "commission_2": 50},
    "note": {"name": "Note post", "price": 800, "commission_1": 80, "commission_2": 40},
    "comment": {"name": "Comment", "price": 300, "commission_1": 30, "commission_2": 15},
}

# Referral chain depth paid on settlement
MAX_REFERRAL_DEPTH = 2

# Ceiling for a single ledger amount (in points)
MAX_LEDGER_AMOUNT = 100_000_000

# Automated review
AI_MAX_REASONS = 20
MAX_ATTEMPTS_EXCEEDED = "max attempts exceeded"
REVIEW_UNAVAILABLE = "automated review unavailable"

# Time zone the business day is defined in
BUSINESS_TIMEZONE = "Asia/Shanghai"

# Pagination
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

# Content hash: md5 hex digest
CONTENT_HASH_LENGTH = 32

# Ids bound per IN (...) query; SQLite limits bound variables per statement
SQL_IN_BATCH_SIZE = 500

# Largest batch accepted by batch review and payout endpoints
MAX_BATCH_SIZE = 1000

# Suffixes the note page appends to author nicknames
AUTHOR_NAME_SUFFIXES = ("关注", "作者", "等")

# Notifications returned per request
NOTIFICATION_PAGE_SIZE = 10
