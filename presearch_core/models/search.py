"""
Validated search request handed to the core by the protocol layer.
"""

from __future__ import annotations

import ipaddress
import json
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, field_validator, model_validator

from ..core.errors import ValidationError

# The upstream API requires either an IP or a location on every search
DEFAULT_IP = "8.8.8.8"

TimeFilter = Literal["any", "day", "week", "month", "year"]

_SAFE_VALUES = {
    "off": "0",
    "0": "0",
    "false": "0",
    "moderate": "1",
    "strict": "1",
    "on": "1",
    "1": "1",
    "true": "1",
}


class GeoLocation(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    long: float = Field(..., ge=-180, le=180)


class SearchRequest(BaseModel):
    query: str = Field(..., min_length=1, max_length=2048)
    page: int = Field(1, ge=1)
    count: int = Field(10, ge=1, le=100)
    lang: Optional[str] = Field(None, description="BCP-47 language tag")
    country: Optional[str] = Field(None, description="ISO 3166-1 alpha-2 code")
    safe: str = Field("moderate", validate_default=True, description="off | moderate | strict (or 0/1)")
    time: Optional[TimeFilter] = None
    ip: Optional[str] = None
    location: Optional[GeoLocation] = None

    # Processing options (not sent upstream)
    content_categories: List[str] = Field(default_factory=list)
    exclude_domains: List[str] = Field(default_factory=list)
    min_quality_score: Optional[float] = Field(None, ge=0, le=100)
    use_cache: bool = True

    @field_validator("query")
    @classmethod
    def _strip_query(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("query must not be blank")
        return v

    @field_validator("country")
    @classmethod
    def _upper_country(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip().upper()
        if len(v) != 2 or not v.isalpha():
            raise ValueError("country must be an ISO 3166-1 alpha-2 code")
        return v

    @field_validator("safe", mode="before")
    @classmethod
    def _normalise_safe(cls, v: Union[str, int, bool]) -> str:
        key = str(v).strip().lower()
        if key not in _SAFE_VALUES:
            raise ValueError("safe must be off, moderate, strict, 0 or 1")
        return _SAFE_VALUES[key]

    @field_validator("ip")
    @classmethod
    def _check_ip(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        ipaddress.ip_address(v)
        return v

    @model_validator(mode="after")
    def _ip_xor_location(self) -> "SearchRequest":
        if self.ip and self.location is not None:
            raise ValueError("ip and location are mutually exclusive")
        return self

    @classmethod
    def parse(cls, data: Dict[str, Any]) -> "SearchRequest":
        """Validate ``data`` and raise the core's ``ValidationError`` on failure."""
        try:
            return cls.model_validate(data)
        except PydanticValidationError as exc:
            raise ValidationError(
                "Invalid search request",
                details={"errors": exc.errors(include_url=False)},
            ) from exc

    def to_upstream_params(self) -> Dict[str, str]:
        params: Dict[str, str] = {
            "q": self.query,
            "page": str(self.page),
            "count": str(self.count),
            "safe": self.safe,
        }
        if self.time:
            params["time"] = self.time
        if self.lang:
            params["lang"] = self.lang
        if self.country:
            params["country"] = self.country
        if self.location is not None:
            params["location"] = json.dumps({"lat": self.location.lat, "long": self.location.long})
        else:
            params["ip"] = self.ip or DEFAULT_IP
        return params

    def processing_params(self) -> Dict[str, Any]:
        return {
            "count": self.count,
            "content_categories": list(self.content_categories),
            "exclude_domains": list(self.exclude_domains),
            "min_quality_score": self.min_quality_score,
        }
