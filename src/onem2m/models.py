"""
oneM2M request/response data structures
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from errors import ParseError

# Resource type codes used in the Content-Type header (ty=...)
TY_AE = 2
TY_CONTAINER = 3
TY_CONTENT_INSTANCE = 4

class RegistrationOutcome(Enum):
    """Result of an idempotent resource registration"""
    CREATED = "created"
    ALREADY_EXISTS = "already_exists"
    FORBIDDEN = "forbidden"  # Degraded success: the CSE refused but is reachable
    FAILED = "failed"

    @property
    def ok(self) -> bool:
        return self in (RegistrationOutcome.CREATED, RegistrationOutcome.ALREADY_EXISTS)

    @property
    def usable(self) -> bool:
        return self is not RegistrationOutcome.FAILED

@dataclass
class StateRead:
    """Result of reading the latest content instance"""
    ok: bool
    state: bool = False
    error: Optional[str] = None

def coerce_content_state(value: Any) -> bool:
    """
    Map a content instance ``con`` value to an on/off state.

    Native booleans pass through; only the strings "true" and "True" are on.
    Every other string, number or missing value is off.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value in ("true", "True")
    return False

@dataclass
class ContentInstance:
    """The part of a ``<ns>:cin`` resource this client cares about"""
    con: Any
    cnf: Optional[str] = None

    @property
    def state(self) -> bool:
        return coerce_content_state(self.con)

    @classmethod
    def from_response(cls, body: Any, namespace: str = "m2m") -> "ContentInstance":
        """Parse ``{"<ns>:cin": {"con": ...}}``. Raises ParseError on missing fields."""
        if not isinstance(body, dict):
            raise ParseError("Response body is not a JSON object")

        key = f"{namespace}:cin"
        resource = body.get(key)
        if not isinstance(resource, dict):
            raise ParseError(f"Missing '{key}' object in response")
        if "con" not in resource:
            raise ParseError(f"Missing 'con' field in '{key}'")

        return cls(con=resource["con"], cnf=resource.get("cnf"))

    def to_payload(self, namespace: str = "m2m") -> Dict[str, Any]:
        return {f"{namespace}:cin": {"con": self.con, "cnf": self.cnf or "text/plain:0"}}
