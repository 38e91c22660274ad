"""Caller authentication for the HTTP host.

Transitions are keyed by caller identity, so the identity must not be
client-controlled. When an API-key mapping is configured the caller is
whoever the presented key maps to; otherwise the claimed X-Caller-Id is
accepted as-is (development mode, unauthenticated).

Env vars:
  - LEDGER_API_KEYS_JSON: JSON dict mapping api_key -> caller_id
  - LEDGER_API_KEYS_FILE: path to a JSON file with the same mapping
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

ENV_API_KEYS_JSON = "LEDGER_API_KEYS_JSON"
ENV_API_KEYS_FILE = "LEDGER_API_KEYS_FILE"


@dataclass(frozen=True)
class AuthContext:
    """Resolved caller identity context."""

    caller_id: Optional[str]
    authenticated: bool
    error: Optional[str] = None


@dataclass(frozen=True)
class ApiKeyAuth:
    """API key authentication config."""

    api_key_to_caller: Dict[str, str]
    configured: bool = False
    config_error: Optional[str] = None

    @classmethod
    def load_from_env(cls) -> "ApiKeyAuth":
        """Load API key mapping from env/file.

        If configuration is present but malformed, config_error is set so
        every request fails closed.
        """
        mapping: Dict[str, str] = {}
        config_error: Optional[str] = None

        raw_json = os.getenv(ENV_API_KEYS_JSON)
        file_path = os.getenv(ENV_API_KEYS_FILE)
        configured = bool(raw_json or file_path)

        try:
            if raw_json:
                data = json.loads(raw_json)
            elif file_path:
                with open(file_path, "r", encoding="utf-8") as f:
                    data = json.load(f)
            else:
                data = {}
            if not isinstance(data, dict):
                raise ValueError("API key mapping must be a JSON object")
            mapping = {str(k): str(v) for k, v in data.items()}
        except (OSError, ValueError):
            config_error = "API_KEY_CONFIG_INVALID"
            mapping = {}

        return cls(api_key_to_caller=mapping, configured=configured, config_error=config_error)

    def enabled(self) -> bool:
        return self.configured

    def resolve_identity(
        self,
        api_key: Optional[str],
        claimed_caller_id: Optional[str] = None,
    ) -> Tuple[Optional[str], Optional[str]]:
        """Resolve caller identity.

        Returns (caller_id, error). If error is not None, the request should
        be rejected.
        """
        if self.config_error:
            return None, self.config_error

        if not self.enabled():
            return claimed_caller_id, None

        if not api_key:
            return None, "API_KEY_REQUIRED"

        caller_id = self.api_key_to_caller.get(api_key)
        if not caller_id:
            return None, "API_KEY_INVALID"

        if claimed_caller_id and claimed_caller_id != caller_id:
            return None, "CALLER_ID_MISMATCH"

        return caller_id, None

    def resolve_context(self, api_key: Optional[str], claimed_caller_id: Optional[str] = None) -> AuthContext:
        caller_id, err = self.resolve_identity(api_key=api_key, claimed_caller_id=claimed_caller_id)
        if err:
            return AuthContext(caller_id=None, authenticated=False, error=err)
        return AuthContext(caller_id=caller_id, authenticated=bool(self.enabled() and caller_id))
