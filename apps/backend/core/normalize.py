"""
Rule-based normalization applied to every posting at ingestion time.

- HTML descriptions reduced to plain text
- Role type and work arrangement tagged from title/description/location
- Tech stack keywords extracted
- Dates parsed leniently (ISO strings, epoch milliseconds)
"""

import html
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from bs4 import BeautifulSoup
from dateutil import parser as date_parser

MAX_DESCRIPTION_CHARS = 5000
MAX_REQUIREMENTS = 10
MAX_TECH_STACK = 15

ROLE_TYPE_PATTERNS = [
    ('internship', re.compile(r'\b(intern|internship|co-op|coop)\b')),
    ('new_grad', re.compile(r'\b(new\s*grad|entry[\s-]?level|junior|associate|graduate\s*program|university\s*grad)\b')),
    ('part_time', re.compile(r'\b(part[\s-]?time)\b')),
    ('contract', re.compile(r'\b(contract|contractor|freelance|temporary)\b')),
    ('full_time', re.compile(r'\b(full[\s-]?time)\b')),
]

REMOTE_RE = re.compile(r'\b(remote|work\s*from\s*home|wfh|distributed|anywhere)\b')
HYBRID_RE = re.compile(r'\b(hybrid|flexible\s*location|partial\s*remote)\b')
ONSITE_RE = re.compile(r'\b(on[\s-]?site|in[\s-]?office|office[\s-]?based)\b')

# (pattern, canonical label)
TECH_PATTERNS: List[Tuple[str, str]] = [
    (r'javascript', 'javascript'), (r'typescript', 'typescript'), (r'python', 'python'),
    (r'java', 'java'), (r'golang', 'go'), (r'rust', 'rust'),
    (r'c\+\+', 'c++'), (r'c#', 'c#'), (r'ruby', 'ruby'), (r'php', 'php'),
    (r'swift', 'swift'), (r'kotlin', 'kotlin'), (r'scala', 'scala'),
    (r'sql', 'sql'), (r'nosql', 'nosql'),
    (r'react', 'react'), (r'vue', 'vue'), (r'angular', 'angular'), (r'svelte', 'svelte'),
    (r'next\.?js', 'nextjs'), (r'nuxt', 'nuxt'), (r'node\.?js', 'nodejs'), (r'express', 'express'),
    (r'django', 'django'), (r'flask', 'flask'), (r'fastapi', 'fastapi'), (r'spring', 'spring'),
    (r'rails', 'rails'), (r'laravel', 'laravel'),
    (r'aws', 'aws'), (r'gcp', 'gcp'), (r'azure', 'azure'), (r'docker', 'docker'),
    (r'kubernetes', 'kubernetes'), (r'k8s', 'kubernetes'), (r'terraform', 'terraform'),
    (r'jenkins', 'jenkins'),
    (r'postgres(?:ql)?', 'postgresql'), (r'mysql', 'mysql'), (r'mongodb', 'mongodb'),
    (r'redis', 'redis'), (r'elasticsearch', 'elasticsearch'), (r'dynamodb', 'dynamodb'),
    (r'supabase', 'supabase'),
    (r'graphql', 'graphql'), (r'grpc', 'grpc'), (r'kafka', 'kafka'), (r'rabbitmq', 'rabbitmq'),
    (r'machine\s*learning', 'machinelearning'), (r'deep\s*learning', 'deeplearning'),
    (r'nlp', 'nlp'), (r'computer\s*vision', 'computervision'),
    (r'tensorflow', 'tensorflow'), (r'pytorch', 'pytorch'), (r'scikit(?:-learn)?', 'scikit'),
    (r'pandas', 'pandas'), (r'numpy', 'numpy'),
    (r'figma', 'figma'), (r'css', 'css'), (r'tailwind', 'tailwind'), (r'sass', 'sass'), (r'html', 'html'),
]

_TECH_REGEXES = [
    (re.compile(rf'(?<![a-z0-9]){pattern}(?![a-z0-9+#])'), label)
    for pattern, label in TECH_PATTERNS
]


def sanitize_html(raw: Optional[str]) -> str:
    """Strip tags, scripts and styles; return whitespace-normalized text."""
    if not raw:
        return ""
    # Greenhouse returns entity-escaped markup
    if '&lt;' in raw and '<' not in raw:
        raw = html.unescape(raw)
    soup = BeautifulSoup(raw, 'lxml')
    for tag in soup(['script', 'style', 'noscript']):
        tag.decompose()
    text = soup.get_text(separator=' ')
    return re.sub(r'\s+', ' ', text).strip()


def html_to_lines(raw: Optional[str]) -> List[str]:
    """Split an HTML fragment (usually a <ul>) into non-empty text lines."""
    if not raw:
        return []
    soup = BeautifulSoup(raw, 'lxml')
    items = [li.get_text(' ', strip=True) for li in soup.find_all('li')]
    if not items:
        items = [line.strip() for line in soup.get_text('\n').split('\n')]
    return [re.sub(r'\s+', ' ', item) for item in items if item and item.strip()]


def classify_role_type(title: Optional[str], description: Optional[str]) -> str:
    text = f"{title or ''} {description or ''}".lower()
    for role_type, pattern in ROLE_TYPE_PATTERNS:
        if pattern.search(text):
            return role_type
    return 'unknown'


def classify_work_type(location: Optional[str], title: Optional[str], description: Optional[str]) -> Dict[str, Any]:
    """Returns {'work_type': remote|hybrid|onsite, 'is_remote': bool}."""
    text = f"{location or ''} {title or ''} {description or ''}".lower()
    is_remote = bool(REMOTE_RE.search(text))
    is_hybrid = bool(HYBRID_RE.search(text))

    if is_remote and not is_hybrid:
        return {'work_type': 'remote', 'is_remote': True}
    if is_hybrid:
        return {'work_type': 'hybrid', 'is_remote': False}
    if ONSITE_RE.search(text):
        return {'work_type': 'onsite', 'is_remote': False}
    # Sources that say nothing are usually office-first with some flexibility
    return {'work_type': 'hybrid', 'is_remote': False}


def extract_tech_stack(description: Optional[str], limit: int = MAX_TECH_STACK) -> List[str]:
    if not description:
        return []
    text = description.lower()
    found: List[str] = []
    for regex, label in _TECH_REGEXES:
        if label in found:
            continue
        if regex.search(text):
            found.append(label)
            if len(found) >= limit:
                break
    return found


def truncate(text: Optional[str], limit: int) -> Optional[str]:
    if text is None:
        return None
    return text[:limit]


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse ISO strings or epoch milliseconds into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        # Lever reports epoch milliseconds
        seconds = value / 1000.0 if value > 10_000_000_000 else float(value)
        dt = datetime.fromtimestamp(seconds, tz=timezone.utc)
    else:
        try:
            dt = date_parser.isoparse(str(value))
        except (ValueError, OverflowError):
            try:
                dt = date_parser.parse(str(value))
            except (ValueError, OverflowError):
                return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None
