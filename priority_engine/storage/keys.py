"""Well-known storage keys."""

# Session tier
ALL_PRIORITY_RECORDS = "allCardPriorityInfo"
PRIORITY_CACHE_REFRESH = "cardPriorityCacheRefreshKey"
ALL_INCREMENTAL_ITEMS = "allIncrementalRem"
SEEN_INCREMENTAL_ITEMS = "seenRemInSession"
SEEN_CARDS = "seenCardInSession"
CURRENT_SCOPE_IDS = "currentScopeRemIds"
CURRENT_SUB_QUEUE_ID = "currentSubQueueId"
QUEUE_MODE = "queueSessionMode"
CURRENT_ITEM = "currentIncrementalRem"
REVIEW_START_TIME = "incrementalReviewStartTime"
INTERLEAVE_COUNTER = "queueItemCounter"

# Durable tier
COOLDOWN_END = "noIncRemTimerKey"
CARDS_PER_ITEM = "cardsPerRem"
SORTING_RANDOMNESS = "randomness"
CARD_RANDOMNESS = "cardRandomness"

INCREMENTAL_SHIELD_HISTORY = "incRemShieldHistory"
INCREMENTAL_DOC_SHIELD_HISTORY = "incRemDocShieldHistory"
CARD_SHIELD_HISTORY = "cardShieldHistory"
CARD_DOC_SHIELD_HISTORY = "cardDocShieldHistory"
