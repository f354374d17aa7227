"""
Centralized test credentials and identities.

Credentials are loaded from environment variables when available, with clearly
non-production placeholders as fallbacks.
"""

from __future__ import annotations

import os

# API keys and tokens: load from env; fallback is obviously a placeholder
TEST_LLM_API_KEY = os.environ.get("TEST_LLM_API_KEY") or "k"
TEST_INTERNAL_JOB_TOKEN = os.environ.get("TEST_INTERNAL_JOB_TOKEN") or "test-internal-token"

# Identities used across cost and rate-limit tests
TEST_IDENTITY = "user-123"
TEST_OTHER_IDENTITY = "user-456"
