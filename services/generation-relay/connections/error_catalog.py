from typing import Any, Dict, Mapping, NamedTuple, Optional

from core.exceptions import ProviderRejection


class ErrorHint(NamedTuple):
    message: str
    suggestion: str


# Tripo envelope codes (non-zero `code` field)
TRIPO_ERROR_MAP: Dict[int, ErrorHint] = {
    1002: ErrorHint(
        "Authentication failed. Your API key is missing, invalid, or you have no API credits.",
        "Check your API key and ensure you have sufficient API credits (not web credits).",
    ),
    2000: ErrorHint(
        "You have exceeded the generation rate limit.",
        "Please retry later with exponential backoff.",
    ),
    2001: ErrorHint("Task not found.", "Check if you passed the correct task id."),
    2002: ErrorHint("The task type is unsupported.", "Check if you passed the correct task type."),
    2003: ErrorHint(
        "The input file is empty.",
        "Check if you passed a file, or it may be rejected by the firewall.",
    ),
    2004: ErrorHint("The file type is unsupported.", "Check if the file you input is supported."),
    2008: ErrorHint("Input violates content policy.", "Modify your input and retry."),
    2010: ErrorHint(
        "You need more credits to start a new task.",
        "Review your usage at Billing and purchase more API credits.",
    ),
    2015: ErrorHint("The version has been deprecated.", "Try a higher model version."),
}

# Meshy reports failures through HTTP status codes
MESHY_ERROR_MAP: Dict[int, ErrorHint] = {
    400: ErrorHint(
        "The generation request was rejected as invalid.",
        "Check that the image is a supported JPEG, PNG or WebP file.",
    ),
    401: ErrorHint(
        "Authentication failed. Your Meshy API key is missing or invalid.",
        "Check the MESHY_API_KEY configured for this deployment.",
    ),
    402: ErrorHint(
        "You need more credits to start a new task.",
        "Top up your Meshy account balance.",
    ),
    403: ErrorHint(
        "This API key is not allowed to use the requested feature.",
        "Check your Meshy plan and API key permissions.",
    ),
    404: ErrorHint("Task not found.", "Check if you passed the correct task id."),
    429: ErrorHint(
        "You have exceeded the generation rate limit.",
        "Please retry later with exponential backoff.",
    ),
}


def _lookup(table: Mapping[int, ErrorHint], code: Any) -> Optional[ErrorHint]:
    try:
        return table.get(int(code))
    except (TypeError, ValueError):
        return None


def tripo_rejection(body: Dict[str, Any], trace_id: Optional[str]) -> ProviderRejection:
    """Builds the rejection for a Tripo envelope whose code is non-zero."""
    code = body.get("code")
    hint = _lookup(TRIPO_ERROR_MAP, code)
    return ProviderRejection(
        hint.message if hint else body.get("message") or "Tripo API error",
        code=str(code) if code is not None else None,
        suggestion=hint.suggestion if hint else body.get("suggestion"),
        trace_id=trace_id,
        provider="tripo",
    )


def meshy_rejection(status_code: int, body_message: Optional[str], trace_id: Optional[str]) -> ProviderRejection:
    hint = _lookup(MESHY_ERROR_MAP, status_code)
    return ProviderRejection(
        hint.message if hint else body_message or f"Meshy API error (HTTP {status_code})",
        code=str(status_code),
        suggestion=hint.suggestion if hint else None,
        trace_id=trace_id,
        provider="meshy",
    )
