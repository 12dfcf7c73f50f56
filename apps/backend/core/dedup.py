"""
Deduplication keys and content fingerprints for postings.

Both functions are pure: the same posting always yields the same key and
the same fingerprint, independent of fetch time or row identity.
"""
import hashlib
import json
import re
import unicodedata
from typing import Any, Dict, Iterable, Optional
from urllib.parse import urlparse, parse_qsl, urlencode

from app.models import NormalizedPosting, SourceKind, SourceType

# Query parameters that only carry tracking noise
TRACKING_PARAMS = {
    'utm_source', 'utm_medium', 'utm_campaign', 'utm_term', 'utm_content',
    'gh_src', 'lever-source', 'lever-origin', 'source', 'ref', 'src',
}

_NON_ALNUM = re.compile(r'[^a-z0-9]+')


def normalize_text(value: Optional[str]) -> str:
    """Lowercase, strip accents and punctuation, collapse whitespace."""
    if not value:
        return ""
    value = unicodedata.normalize('NFKD', value)
    value = value.encode('ascii', 'ignore').decode('ascii').lower()
    value = value.replace('&', ' and ')
    return _NON_ALNUM.sub(' ', value).strip()


def normalize_url(url: Optional[str]) -> str:
    """Canonical form of an apply URL: lowercase host, no fragment, no tracking params, no trailing slash."""
    if not url:
        return ""
    parsed = urlparse(url.strip())
    host = (parsed.netloc or "").lower()
    if host.startswith('www.'):
        host = host[4:]
    path = parsed.path.rstrip('/')
    query = [
        (k, v) for k, v in parse_qsl(parsed.query, keep_blank_values=False)
        if k.lower() not in TRACKING_PARAMS
    ]
    query.sort()
    canonical = f"{host}{path}"
    if query:
        canonical += "?" + urlencode(query)
    return canonical


def _sha(value: str, length: int = 32) -> str:
    return hashlib.sha256(value.encode('utf-8')).hexdigest()[:length]


def compute_dedup_key(
    source_id: str,
    source_type: SourceType,
    external_id: Optional[str] = None,
    apply_url: Optional[str] = None,
    title: Optional[str] = None,
    company: Optional[str] = None,
    location: Optional[str] = None,
) -> str:
    """
    Stable composite key for a posting.

    ATS/API sources key on the source plus its native posting id, then on the
    source plus the normalized apply URL. Search/scrape results carry no
    trustworthy id, so they key on normalized title, company and location.
    """
    if source_type.kind in (SourceKind.ATS, SourceKind.API):
        if external_id:
            return f"{source_id}:{str(external_id).strip()}"
        if apply_url:
            return f"{source_id}:url:{_sha(normalize_url(apply_url))}"

    canonical = "|".join([
        normalize_text(title),
        normalize_text(company),
        normalize_text(location),
    ])
    return f"hash:{_sha(canonical)}"


def dedup_key_for(source_id: str, source_type: SourceType, posting: NormalizedPosting) -> str:
    return compute_dedup_key(
        source_id,
        source_type,
        external_id=posting.external_id,
        apply_url=posting.apply_url,
        title=posting.title,
        company=posting.company,
        location=posting.location,
    )


# Fields whose change means the stored posting must be rewritten
MUTABLE_FIELDS = (
    'title', 'location', 'description', 'requirements',
    'salary_min', 'salary_max', 'salary_currency', 'work_type',
)


def _canonical_value(value: Any) -> Any:
    if isinstance(value, str):
        return " ".join(value.split())
    if isinstance(value, (list, tuple)):
        return [_canonical_value(v) for v in value]
    return value


def content_fingerprint(posting: NormalizedPosting, fields: Iterable[str] = MUTABLE_FIELDS) -> str:
    """Hash of the mutable fields; whitespace-only edits do not change it."""
    payload: Dict[str, Any] = {name: _canonical_value(getattr(posting, name, None)) for name in fields}
    return _sha(json.dumps(payload, sort_keys=True, default=str), length=64)
