from __future__ import annotations

import re


_BEARER_PATTERN = re.compile(r"(?i)\bbearer\s+[a-z0-9\-._~+/]+=*")
_API_KEY_PATTERN = re.compile(r"(?i)\b(x-api-key|api_key|apikey|generic_api_key)\b[\"']?\s*[:=]\s*[\"']?[^\s,\"'}]+")
_TOKENISH_PATTERN = re.compile(r"(?i)\b(access|refresh|id)_token\b[^,\n]*")
_ANTHROPIC_KEY_PATTERN = re.compile(r"\bsk-ant-[A-Za-z0-9\-_]+")


def redact_sensitive_text(value: str | None) -> str:
    if not value:
        return ""
    out = _BEARER_PATTERN.sub("Bearer [REDACTED]", value)
    out = _API_KEY_PATTERN.sub(lambda match: f"{match.group(1)}=[REDACTED]", out)
    out = _TOKENISH_PATTERN.sub("[REDACTED_TOKEN_FIELD]", out)
    out = _ANTHROPIC_KEY_PATTERN.sub("[REDACTED_KEY]", out)
    return out
