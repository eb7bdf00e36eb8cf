"""
Outcome Classifier - maps a raw remote call result to a ClassifiedOutcome.

Pure functions only. The same inputs always produce the same outcome.
"""

import json
from typing import Any, Optional, Sequence

from outcomes import ClassifiedOutcome, RemoteCallResult

# Messages seen on HTTP 400 when an upstream component races and hands back
# a truncated body. Retrying the identical request succeeds.
DEFAULT_TRANSIENT_SIGNATURES: Sequence[str] = ("invalid character",)


def parse_payload(result: RemoteCallResult) -> Any:
    """Decode the response body as JSON, falling back to text."""
    if not result.body:
        return None
    text = result.text()
    try:
        return json.loads(text)
    except ValueError:
        return text


def extract_message(result: RemoteCallResult) -> str:
    """
    Find the most useful error message in a result.

    Prefers the transport/client error message, then well-known error body
    shapes, then the raw body text.
    """
    if result.error_message:
        return result.error_message

    payload = parse_payload(result)
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
        if payload.get("message"):
            return str(payload["message"])
        # FHIR OperationOutcome
        diagnostics = [
            str(issue["diagnostics"])
            for issue in payload.get("issue", [])
            if isinstance(issue, dict) and issue.get("diagnostics")
        ]
        if diagnostics:
            return "; ".join(diagnostics)
    if isinstance(payload, str):
        return payload
    if payload is not None:
        return json.dumps(payload, sort_keys=True)
    return ""


def matches_transient_signature(message: str, signatures: Sequence[str]) -> bool:
    return any(signature in message for signature in signatures)


def classify(
    result: RemoteCallResult,
    prior_error: Optional[BaseException] = None,
    *,
    retry_on_network_error: bool = False,
    transient_signatures: Sequence[str] = DEFAULT_TRANSIENT_SIGNATURES,
) -> ClassifiedOutcome:
    """
    Classify a single call attempt.

    Args:
        result: The raw call result
        prior_error: An exception raised by the caller while making the call
        retry_on_network_error: Treat "no response at all" as transient.
            Only safe for idempotent calls such as onboarding.
        transient_signatures: Substrings that mark a 400 as transient

    Returns:
        The ClassifiedOutcome for this attempt
    """
    status = result.status_code
    context = {"status_code": status, "headers": dict(result.headers)}

    if status is None:
        if result.error_message or prior_error is not None:
            cause = result.error_message or str(prior_error)
            if retry_on_network_error:
                return ClassifiedOutcome.transient(cause, **context)
            return ClassifiedOutcome.permanent(cause, **context)
        return ClassifiedOutcome.permanent("no response received", **context)

    if status == 404:
        return ClassifiedOutcome.not_found(**context)

    if status >= 500:
        message = extract_message(result) or f"server error {status}"
        return ClassifiedOutcome.transient(message, **context)

    if 200 <= status < 300:
        return ClassifiedOutcome.success(parse_payload(result), **context)

    message = extract_message(result)

    if status == 400 and matches_transient_signature(message, transient_signatures):
        return ClassifiedOutcome.transient(message, **context)

    if status == 409:
        return ClassifiedOutcome.conflict(message or "conflict", **context)

    if 400 <= status < 500:
        return ClassifiedOutcome.permanent(message or f"client error {status}", **context)

    return ClassifiedOutcome.permanent(
        f"unexpected status {status}" + (f": {message}" if message else ""),
        **context,
    )
