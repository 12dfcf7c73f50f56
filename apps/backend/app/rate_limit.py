"""
IP-based rate limiting for the user-triggered endpoints.
"""
import os
from slowapi import Limiter
from slowapi.util import get_remote_address

# Scraping hits a paid upstream, so it gets the tighter budget
RATE_LIMIT_SCRAPE = os.getenv("RATE_LIMIT_SCRAPE", "30/minute" if os.getenv("PIPELINE_ENV") == "dev" else "10/minute")
RATE_LIMIT_FETCH = os.getenv("RATE_LIMIT_FETCH", "60/minute" if os.getenv("PIPELINE_ENV") == "dev" else "20/minute")

limiter = Limiter(key_func=get_remote_address)
