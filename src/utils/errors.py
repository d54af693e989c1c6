class FunnelDashboardError(Exception):
    """Base exception for the dashboard."""


class TokenExpiredError(FunnelDashboardError):
    """Access token has expired or is invalid."""


class RateLimitError(FunnelDashboardError):
    """API rate limit hit."""


class PermissionError_(FunnelDashboardError):
    """Insufficient permissions on the ad account."""


class InvalidAccountError(FunnelDashboardError):
    """Ad account ID is invalid or inaccessible."""


class InvalidRangeError(FunnelDashboardError, ValueError):
    """Date range is malformed (since after until, or missing bounds)."""


class AccountNotFoundError(FunnelDashboardError):
    """No connected ad account matches the given ID or share token."""


class GoalNotFoundError(FunnelDashboardError):
    """Goal does not exist."""


class GoalFrozenError(FunnelDashboardError):
    """Goal is already completed; its definition can no longer change."""


class CommentNotFoundError(FunnelDashboardError):
    """Monthly comment does not exist."""
