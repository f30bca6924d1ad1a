# paygate/x402/audit.py
"""
Audit logging for x402 payments.

Every guarded request leaves a trail of events that can be used for:
- Reconciling settled payments against the seller wallet
- Investigating disputed or failed payments
- Spotting facilitator outages

Log format: JSON lines (one event per line)
Log location: passed in by the caller (X402_AUDIT_LOG_PATH in settings)

Events logged:
- 402 returned (price, network, pay_to)
- Payment verified (valid flag, rejection reason)
- Payment settled (transaction hash, network)
- Payment failed (stage, error kind, reason)

Writing the audit log never affects the outcome of a request.
"""
import json
import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Union

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class AuditEventType(Enum):
    """Types of audit events that can be logged."""
    PAYMENT_REQUIRED_SENT = "payment_required_sent"
    PAYMENT_VERIFIED = "payment_verified"
    PAYMENT_SETTLED = "payment_settled"
    PAYMENT_FAILED = "payment_failed"


def generate_request_id() -> str:
    """Generate a unique request ID for tracking."""
    return str(uuid.uuid4())[:8]


def ensure_audit_log_directory(log_path: PathLike) -> bool:
    """
    Ensure the audit log directory exists.

    Returns:
        True if directory exists or was created, False on error
    """
    try:
        log_dir = Path(log_path).parent
        if not log_dir.exists():
            log_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created audit log directory: {log_dir}")
        return True
    except OSError as e:
        logger.error(f"Failed to create audit log directory: {e}")
        return False


def create_audit_event(
    event_type: AuditEventType,
    data: Dict[str, Any],
    client_ip: Optional[str] = None,
    request_id: Optional[str] = None
) -> Dict[str, Any]:
    """Create an audit event dictionary."""
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event_type": event_type.value,
        "request_id": request_id or generate_request_id(),
        "client_ip": client_ip,
        "data": data
    }


def log_audit_event(
    log_path: PathLike,
    event_type: AuditEventType,
    data: Dict[str, Any],
    client_ip: Optional[str] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    """
    Append an audit event to the log at log_path.

    Returns:
        The request_id used for this event, or None on error
    """
    event = create_audit_event(
        event_type=event_type,
        data=data,
        client_ip=client_ip,
        request_id=request_id
    )

    try:
        ensure_audit_log_directory(log_path)
        with open(log_path, "a") as f:
            f.write(json.dumps(event) + "\n")

        logger.debug(f"Audit event logged: {event_type.value} [{event['request_id']}]")
        return event["request_id"]

    except (OSError, TypeError, ValueError) as e:
        logger.error(f"Failed to write audit event: {e}")
        return None


# Convenience functions for specific event types

def log_payment_required_sent(
    log_path: PathLike,
    client_ip: Optional[str],
    amount: str,
    network: str,
    pay_to: str,
    description: str,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a 402 Payment Required challenge."""
    return log_audit_event(
        log_path,
        AuditEventType.PAYMENT_REQUIRED_SENT,
        data={
            "amount": amount,
            "network": network,
            "pay_to": pay_to,
            "description": description,
        },
        client_ip=client_ip,
        request_id=request_id
    )


def log_payment_verified(
    log_path: PathLike,
    client_ip: Optional[str],
    is_valid: bool,
    invalid_reason: Optional[str] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a payment verification result."""
    return log_audit_event(
        log_path,
        AuditEventType.PAYMENT_VERIFIED,
        data={
            "is_valid": is_valid,
            "invalid_reason": invalid_reason,
        },
        client_ip=client_ip,
        request_id=request_id
    )


def log_payment_settled(
    log_path: PathLike,
    client_ip: Optional[str],
    transaction_hash: str,
    network: str,
    amount: str,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a successful settlement."""
    return log_audit_event(
        log_path,
        AuditEventType.PAYMENT_SETTLED,
        data={
            "transaction_hash": transaction_hash,
            "network": network,
            "amount": amount,
        },
        client_ip=client_ip,
        request_id=request_id
    )


def log_payment_failed(
    log_path: PathLike,
    client_ip: Optional[str],
    stage: str,
    kind: str,
    reason: Optional[str],
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a payment that was refused or could not be completed."""
    return log_audit_event(
        log_path,
        AuditEventType.PAYMENT_FAILED,
        data={
            "stage": stage,
            "kind": kind,
            "reason": reason,
        },
        client_ip=client_ip,
        request_id=request_id
    )
