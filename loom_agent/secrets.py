"""Secret redaction for content shown to the model.

Patterns with a capturing group redact only the group (the key name stays
visible); patterns without one redact the whole match.
"""

import re
from typing import List, Pattern, Tuple

REDACTED = "[REDACTED]"

_PASSWORD_VALUE = r"""["']?([^\s"']{8,})["']?"""

SECRET_PATTERNS: List[Tuple[str, Pattern]] = [
    # API keys and tokens
    ("api_key", re.compile(r"(?i)api[_-]?keys?\s*[:=]\s*[\"']?([a-zA-Z0-9]{20,})[\"']?")),
    ("secret_key", re.compile(r"(?i)secret[_-]?keys?\s*[:=]\s*[\"']?([a-zA-Z0-9]{20,})[\"']?")),
    ("access_token", re.compile(r"(?i)access[_-]?tokens?\s*[:=]\s*[\"']?([a-zA-Z0-9]{20,})[\"']?")),
    ("token", re.compile(r"(?i)\btoken[_-]?\s*=\s*[\"']?([a-zA-Z0-9]{20,})[\"']?")),
    ("bearer", re.compile(r"Bearer\s+([a-zA-Z0-9\-_.]{20,})")),
    ("jwt", re.compile(r"eyJ[a-zA-Z0-9\-_]{20,}\.eyJ[a-zA-Z0-9\-_]{20,}\.[a-zA-Z0-9\-_]{20,}")),
    # Passwords
    ("password", re.compile(r"(?i)passwords?\s*[:=]\s*" + _PASSWORD_VALUE)),
    ("pass", re.compile(r"(?i)\bpass\s*[:=]\s*" + _PASSWORD_VALUE)),
    ("passwd", re.compile(r"(?i)\bpasswd\s*[:=]\s*" + _PASSWORD_VALUE)),
    # Connection strings: only the password part
    ("mongodb_uri", re.compile(r"mongodb(?:\+srv)?://[^:@\s/]+:([^@\s]+)@")),
    ("postgres_uri", re.compile(r"postgres(?:ql)?://[^:@\s/]+:([^@\s]+)@")),
    ("mysql_uri", re.compile(r"mysql://[^:@\s/]+:([^@\s]+)@")),
    ("redis_uri", re.compile(r"redis://[^:@\s/]*:([^@\s]+)@")),
    ("url_credentials", re.compile(r"(?:https?|ftp)://[^:@\s/]+:([^@\s]+)@")),
    # Cloud providers
    ("aws_access_key", re.compile(r"AKIA[0-9A-Z]{16}")),
    ("aws_secret_key", re.compile(r"(?i)aws[_-]?secret[_-]?access[_-]?key\s*[:=]\s*[\"']?([a-zA-Z0-9/+=]{40})[\"']?")),
    ("google_api_key", re.compile(r"AIza[0-9A-Za-z\-_]{35}")),
    ("azure_key", re.compile(r"(?i)azure[_-]?key\s*[:=]\s*[\"']?([a-zA-Z0-9]{40,})[\"']?")),
    # Hosted services
    ("github_token", re.compile(r"ghp_[a-zA-Z0-9]{36}")),
    ("gitlab_token", re.compile(r"glpat-[a-zA-Z0-9\-_]{20}")),
    ("slack_token", re.compile(r"xox[baprs]-[0-9a-zA-Z\-]{10,}")),
    ("stripe_key", re.compile(r"[rs]k_live_[0-9a-zA-Z]{24}")),
    ("sendgrid_key", re.compile(r"SG\.[a-zA-Z0-9\-_]{22}\.[a-zA-Z0-9\-_]{43}")),
    ("client_secret", re.compile(r"(?i)client[_-]?secret\s*[:=]\s*[\"']?([a-zA-Z0-9]{20,})[\"']?")),
    ("app_secret", re.compile(r"(?i)app[_-]?secret\s*[:=]\s*[\"']?([a-zA-Z0-9]{20,})[\"']?")),
    ("private_key", re.compile(r"-----BEGIN [A-Z ]*PRIVATE KEY-----")),
]


def _redact_match(m: "re.Match") -> str:
    if m.re.groups and m.group(1) is not None:
        start = m.start(1) - m.start()
        end = m.end(1) - m.start()
        whole = m.group(0)
        return whole[:start] + REDACTED + whole[end:]
    return REDACTED


def redact_secrets(content: str) -> str:
    result = content or ""
    for _, pattern in SECRET_PATTERNS:
        result = pattern.sub(_redact_match, result)
    return result


def find_secrets(content: str) -> List[str]:
    """Names of the patterns that match content."""
    return [name for name, pattern in SECRET_PATTERNS if pattern.search(content or "")]
