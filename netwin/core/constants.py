"""Global constants for the netwin admin backend."""

# Firestore limits a single batch to 500 writes; stay well below it.
FIRESTORE_BATCH_LIMIT = 400

# Collection names
USERS_COLLECTION = "users"
TOURNAMENTS_COLLECTION = "tournaments"
REGISTRATIONS_COLLECTION = "tournament_registrations"
PRIZE_DISTRIBUTIONS_COLLECTION = "prize_distributions"
TRANSACTIONS_COLLECTION = "transactions"
PENDING_DEPOSITS_COLLECTION = "pending_deposits"
PENDING_WITHDRAWALS_COLLECTION = "pending_withdrawals"
# Older clients wrote withdrawals here.
LEGACY_WITHDRAWALS_COLLECTION = "wallet_withdrawals"

# Tournament lifecycle
TOURNAMENT_UPCOMING = "upcoming"
TOURNAMENT_LIVE = "live"
TOURNAMENT_COMPLETED = "completed"

# Match types
MATCH_SOLO = "solo"
MATCH_DUO = "duo"
MATCH_SQUAD = "squad"

# Funding request states
REQUEST_PENDING = "PENDING"
REQUEST_APPROVED = "APPROVED"
REQUEST_REJECTED = "REJECTED"

# Ledger entry types and states
TX_DEPOSIT = "deposit"
TX_WITHDRAWAL = "withdrawal"
TX_PRIZE_MONEY = "prize_money"
TX_CREDIT = "credit"
TX_STATUS_PENDING = "PENDING"
TX_STATUS_COMPLETED = "completed"
TX_STATUS_REJECTED = "rejected"

# Prize calculation defaults
DEFAULT_COMMISSION_PERCENTAGE = 10
DEFAULT_FIRST_PRIZE_PERCENTAGE = 40
DEFAULT_PER_KILL_REWARD_PERCENTAGE = 60

# Kill pool policies
KILL_POOL_PERCENTAGE = "percentage"
KILL_POOL_REMAINDER = "remainder"

# Per-kill divisor policies
PER_KILL_ELIMINATIONS = "eliminations"
PER_KILL_VERIFIED_KILLS = "verified_kills"

# Seconds after which an unfinished distribution claim may be taken over
DISTRIBUTION_CLAIM_TTL_SECONDS = 300

DEFAULT_REJECTION_REASON = "Rejected by admin"
DEFAULT_ACTOR = "admin"
