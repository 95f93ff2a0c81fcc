"""
Validators and Helper Utilities for the GalaSwap Arbitrage Bot

Provides:
- Composite token key validation and normalization
- Amount and slippage validation
- Sensitive-data redaction for error messages and logs
- Bounded error text for user-facing failures

Validation failures raise DataValidationError with a structured error code.
"""

import re
from typing import Optional

from utils.exceptions import DataValidationError
from config.constants import MAX_ERROR_MESSAGE_LENGTH, MAX_SLIPPAGE_TOLERANCE


# ============================================================================
# 1. TOKEN VALIDATION
# ============================================================================

# Collection$Category$Type$AdditionalKey, each 1-20 chars
TOKEN_KEY_PATTERN = re.compile(r'^[A-Za-z0-9_-]{1,20}(\$[A-Za-z0-9_-]{1,20}){3}$')


def normalize_token(token: str) -> str:
    """
    Normalize a composite token key to the '$'-separated form.

    'GALA|Unit|none|none' -> 'GALA$Unit$none$none'
    """
    return token.strip().replace('|', '$')


def validate_token_format(token: str) -> str:
    """
    Validate a composite token key and return its normalized form.

    Args:
        token: Token key using '$' or '|' separators

    Returns:
        Normalized token key

    Raises:
        DataValidationError: If the key does not have four valid components
    """
    if not isinstance(token, str) or not token.strip():
        raise DataValidationError(
            "Token must be a non-empty string",
            error_code='INVALID_TOKEN_FORMAT',
            details={'token_type': type(token).__name__}
        )

    normalized = normalize_token(token)
    if not TOKEN_KEY_PATTERN.match(normalized):
        raise DataValidationError(
            "Invalid token format",
            error_code='INVALID_TOKEN_FORMAT',
            details={
                'token': redact_sensitive(normalized)[:80],
                'expected_format': 'Collection$Category$Type$AdditionalKey',
            }
        )
    return normalized


# ============================================================================
# 2. AMOUNT & SLIPPAGE VALIDATION
# ============================================================================

def validate_amount(amount, field_name: str = 'amount') -> float:
    """
    Validate a trade amount. Accepts numbers or numeric strings.

    Raises:
        DataValidationError: If the amount is not a finite positive number
    """
    if isinstance(amount, bool):
        raise DataValidationError(
            f"{field_name} must be numeric",
            error_code='INVALID_AMOUNT'
        )
    try:
        value = float(amount)
    except (TypeError, ValueError):
        raise DataValidationError(
            f"{field_name} must be numeric",
            error_code='INVALID_AMOUNT',
            details={field_name: str(amount)[:40]}
        )

    if value != value or value in (float('inf'), float('-inf')):
        raise DataValidationError(
            f"{field_name} must be finite",
            error_code='INVALID_AMOUNT'
        )
    if value <= 0:
        raise DataValidationError(
            f"{field_name} must be greater than zero",
            error_code='INVALID_AMOUNT',
            details={field_name: value}
        )
    return value


def validate_slippage(slippage: float) -> float:
    """Slippage is a fraction: 0.01 == 1%"""
    if not isinstance(slippage, (int, float)) or isinstance(slippage, bool):
        raise DataValidationError(
            "Slippage tolerance must be numeric",
            error_code='INVALID_SLIPPAGE'
        )
    if slippage < 0 or slippage > MAX_SLIPPAGE_TOLERANCE:
        raise DataValidationError(
            f"Slippage tolerance must be between 0 and {MAX_SLIPPAGE_TOLERANCE}",
            error_code='INVALID_SLIPPAGE',
            details={'slippage': slippage}
        )
    return float(slippage)


# ============================================================================
# 3. REDACTION
# ============================================================================

_PRIVATE_KEY_RE = re.compile(r'\b(?:0x)?[0-9a-fA-F]{64}\b')
_ETH_ADDRESS_RE = re.compile(r'\b0x([0-9a-fA-F]{4})[0-9a-fA-F]{32}([0-9a-fA-F]{4})\b')
_WALLET_ID_RE = re.compile(r'\b(client|eth)\|([0-9a-zA-Z]{4})[0-9a-zA-Z]{4,}([0-9a-zA-Z]{4})\b')
_SECRET_ASSIGNMENT_RE = re.compile(
    r'(?i)\b(password|api[_-]?key|private[_-]?key|secret|token_secret)\b(\s*[:=]\s*)\S+'
)
_PATH_RE = re.compile(
    r'(?:(?<![\w.])/(?:home|Users|root|usr|var|opt|tmp|etc|srv|app)(?:/[^\s\'",:;)]+)+)'
    r'|(?:[A-Za-z]:\\[^\s\'",;)]+)'
)


def redact_sensitive(text: str) -> str:
    """
    Remove secrets from free text before it is logged or surfaced.

    - 64-hex private keys -> [REDACTED_KEY]
    - 0x addresses and client|/eth| wallet ids -> first/last 4 chars kept
    - password=..., api_key: ... -> value replaced
    - absolute filesystem paths -> [PATH]
    """
    if not text:
        return text
    text = _PRIVATE_KEY_RE.sub('[REDACTED_KEY]', text)
    text = _SECRET_ASSIGNMENT_RE.sub(r'\1\2[REDACTED]', text)
    text = _ETH_ADDRESS_RE.sub(r'0x\1...\2', text)
    text = _WALLET_ID_RE.sub(r'\1|\2...\3', text)
    text = _PATH_RE.sub('[PATH]', text)
    return text


def truncate_message(text: str, max_length: int = MAX_ERROR_MESSAGE_LENGTH) -> str:
    if len(text) <= max_length:
        return text
    return text[:max_length - 3] + '...'


def safe_error_message(error: BaseException, max_length: Optional[int] = None) -> str:
    """
    Build a redacted, single-line, bounded description of an exception.
    Used for every error string shown to operators.
    """
    raw = getattr(error, 'message', None) or str(error) or type(error).__name__
    single_line = ' '.join(str(raw).split())
    return truncate_message(
        redact_sensitive(single_line),
        max_length or MAX_ERROR_MESSAGE_LENGTH
    )


def mask_wallet(address: Optional[str]) -> str:
    """Short display form for wallet identifiers in logs"""
    if not address:
        return 'None'
    if len(address) <= 12:
        return address
    return f"{address[:8]}...{address[-4:]}"
