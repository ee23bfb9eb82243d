from .api import (
    AdminStatsResponse,
    ErrorResponse,
    EtymologyRequest,
    EtymologyResponse,
    WordSuggestion,
    normalize_word,
)
from .domain import (
    AncestryGraph,
    BudgetState,
    CostMode,
    EtymologyResult,
    ParsedEtymChain,
    ParsedEtymLink,
    TokenUsage,
)

__all__ = [
    "AdminStatsResponse",
    "ErrorResponse",
    "EtymologyRequest",
    "EtymologyResponse",
    "WordSuggestion",
    "normalize_word",
    "AncestryGraph",
    "BudgetState",
    "CostMode",
    "EtymologyResult",
    "ParsedEtymChain",
    "ParsedEtymLink",
    "TokenUsage",
]
