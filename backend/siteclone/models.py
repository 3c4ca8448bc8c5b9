"""
Data models for the website cloning API
"""

from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator


class IdentityRecord(BaseModel):
    """Identity of the organization that takes over the cloned site"""
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Organization name (required)")
    address: Optional[str] = Field(None, description="Postal address")
    phone: Optional[str] = Field(None, description="Phone number")
    email: Optional[str] = Field(None, description="Contact email")
    description: Optional[str] = Field(None, description="Short description")
    logo: Optional[str] = Field(
        None,
        description="Local file path (relative to the upload root) or absolute URL of the logo"
    )

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("identity name is required")
        return value.strip()


class PreviousIdentity(BaseModel):
    """Caller-supplied identity of the source site; overrides detection per field"""
    model_config = ConfigDict(frozen=True)

    name: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None


class CloneRequest(BaseModel):
    """One clone invocation, immutable once validated"""
    model_config = ConfigDict(frozen=True)

    source_url: str
    identity: IdentityRecord
    output_dir: Optional[Path] = None
    previous_identity: Optional[PreviousIdentity] = None

    @field_validator("source_url")
    @classmethod
    def _absolute_http_url(cls, value: str) -> str:
        value = (value or "").strip()
        parsed = urlparse(value)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"Invalid URL format: {value!r}")
        return value


class IdentityModel(BaseModel):
    """Identity payload as accepted over HTTP (validated later by the cloner)"""
    name: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    description: Optional[str] = None
    logo: Optional[str] = None


class CloneRequestModel(BaseModel):
    """Request model for website cloning"""
    url: str = Field(..., description="URL of website to clone")
    identity: IdentityModel = Field(..., description="Identity to substitute into the clone")
    previous_identity: Optional[PreviousIdentity] = Field(
        None,
        description="Known identity of the source site, when detection should be bypassed"
    )


class CloneResponseModel(BaseModel):
    """Response model for an accepted background clone"""
    request_id: str = Field(..., description="Unique ID for this cloning request")
    status: str = Field(..., description="Status of the cloning request")
    url: str = Field(..., description="Original URL that was cloned")


class CloneResultModel(BaseModel):
    """Model for the result of a cloning operation"""
    request_id: str = Field(..., description="Unique ID for this cloning request")
    status: str = Field(..., description="Status of the cloning process")
    url: str = Field(..., description="Original URL that was cloned")
    output_directory: Optional[str] = Field(None, description="Directory holding the cloned bundle")
    site_url: Optional[str] = Field(None, description="Where the bundle is served")
    is_fallback: Optional[bool] = Field(None, description="True when a placeholder page was synthesized")
    report_summary: Optional[Dict[str, Any]] = Field(None, description="Asset statistics for the clone")
    error: Optional[str] = Field(None, description="Error message if cloning failed")


class CloneSiteResponseModel(BaseModel):
    """Response model for the synchronous clone endpoint"""
    success: bool = True
    output_directory: str
    folder_name: str
    site_url: str
    is_fallback: bool
    report_summary: Dict[str, Any]


class SiteInfoModel(BaseModel):
    folder_name: str
    site_url: str
    has_index: bool
    created_at: float


class SiteListModel(BaseModel):
    success: bool = True
    sites: List[SiteInfoModel]
