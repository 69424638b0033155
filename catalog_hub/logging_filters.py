# --- Global log sanitizers: credential redaction + HTML body trimming ---------
import logging, re

_HTML_SIG_RE = re.compile(r'(?is)<!DOCTYPE html|<html[^>]*>')
_TITLE_RE    = re.compile(r'(?is)<title[^>]*>(.*?)</title>')
_TAG_RE      = re.compile(r'(?is)<[^>]+>')
_SCRIPT_RE   = re.compile(r'(?is)<(script|style)[^>]*>.*?</\1>')

# WooCommerce REST keys look like ck_<40 hex> / cs_<40 hex>
_WC_TOKEN_RE = re.compile(r'\b(c[ks]_)[A-Za-z0-9]{8,}')
_WC_PARAM_RE = re.compile(r'(?i)(consumer_(?:key|secret)=)[^&\s"\']+')
_BASIC_RE    = re.compile(r'(?i)(authorization:\s*basic\s+)[A-Za-z0-9+/=]+')

REDACTED = "***"


def _strip_tags(s: str) -> str:
    s = _SCRIPT_RE.sub('', s)
    s = _TAG_RE.sub(' ', s)
    return re.sub(r'\s+', ' ', s).strip()


def _summarize_html(s: str, limit: int = 200) -> str:
    title = None
    m = _TITLE_RE.search(s)
    if m:
        title = _strip_tags(m.group(1))
    preview = title or _strip_tags(s)[:limit]
    return f"{preview} [HTML {len(s)} chars trimmed]"


def redact_secrets(s: str) -> str:
    s = _WC_TOKEN_RE.sub(lambda m: m.group(1) + REDACTED, s)
    s = _WC_PARAM_RE.sub(lambda m: m.group(1) + REDACTED, s)
    return _BASIC_RE.sub(lambda m: m.group(1) + REDACTED, s)


def trim_body(s: str | None, limit: int = 300) -> str:
    """Short, log-safe snippet of a remote response body."""
    if not s:
        return ""
    if _HTML_SIG_RE.search(s):
        return _summarize_html(s, limit=limit)
    s = redact_secrets(s)
    return s if len(s) <= limit else s[:limit] + "…"


class _HtmlTrimFilter(logging.Filter):
    """If a log message contains a large HTML blob, replace it with a short summary."""
    def filter(self, record: logging.LogRecord) -> bool:
        try:
            msg = record.getMessage()
        except (TypeError, ValueError):
            return True
        if isinstance(msg, str) and len(msg) > 200 and _HTML_SIG_RE.search(msg):
            record.msg = _summarize_html(msg)
            record.args = ()
        return True


class _SecretRedactFilter(logging.Filter):
    """Mask WooCommerce consumer keys/secrets and Basic auth headers."""
    def filter(self, record: logging.LogRecord) -> bool:
        try:
            msg = record.getMessage()
        except (TypeError, ValueError):
            return True
        clean = redact_secrets(msg)
        if clean != msg:
            record.msg = clean
            record.args = ()
        return True


def install() -> None:
    """
    Attach the filters once on the root + uvicorn family of loggers, and on the
    root handlers so records propagated from module loggers are covered too.
    """
    targets: list = [logging.getLogger(n) for n in ("", "uvicorn", "uvicorn.error")]
    targets.extend(logging.getLogger().handlers)
    for t in targets:
        if not any(isinstance(f, _SecretRedactFilter) for f in t.filters):
            t.addFilter(_SecretRedactFilter())
            t.addFilter(_HtmlTrimFilter())
# --------------------------------------------------------------------------------
