"""Domain models (Pydantic v2).

What lives here:
- The poll outcome and its error kinds.
- Console payloads (component summaries, crypto objects, MSP crypto fields)
  limited to the fields the provisioning flows send or read.

Note:
- These models describe *what* is exchanged, not *how* it is sent. Field
  aliases map to the console's JSON keys.
"""

from __future__ import annotations

from datetime import timedelta
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field
from pydantic.config import ConfigDict

from core.errors import PollError


class PollErrorKind(str, Enum):
    """Why a poll cycle ended without success."""

    CONFIGURATION = "configuration"
    TIMEOUT = "timeout"
    TRANSPORT = "transport"
    UNEXPECTED_STATUS = "unexpected_status"
    DEADLINE_EXCEEDED = "deadline_exceeded"
    CANCELLED = "cancelled"


class PollOutcome(BaseModel):
    """Result of one `await_availability` call.

    Created at the end of a poll cycle and owned by the caller; never persisted.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    succeeded: bool = Field(..., description="True when a success status was observed.")
    elapsed: timedelta = Field(
        default=timedelta(0),
        description="Time between the first request and the end of the poll.",
    )
    attempts: int = Field(default=0, ge=0, description="Number of requests issued.")
    last_error: PollError | None = Field(
        default=None,
        description="Error that ended the poll (None on success).",
    )

    @property
    def kind(self) -> PollErrorKind | None:
        if self.last_error is None:
            return None
        return PollErrorKind(self.last_error.kind)


class ComponentSummary(BaseModel):
    """One entry of the console's component list."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str = Field(..., description="Component id (e.g. 'org1ca').")
    display_name: str | None = Field(default=None)
    type: str | None = Field(default=None, description="fabric-ca, fabric-peer, msp, ...")
    location: str | None = Field(default=None)
    api_url: str | None = Field(default=None)
    tags: list[str] = Field(default_factory=list)


class CaCreated(BaseModel):
    """Fields of a create-CA response the flows depend on."""

    id: str
    dep_component_id: str | None = None
    api_url: str
    tls_cert: str = Field(..., description="Base64 encoded PEM of the CA TLS certificate.")

    @classmethod
    def from_response(cls, body: dict[str, Any]) -> "CaCreated":
        msp = body.get("msp") or {}
        component = msp.get("component") or {}
        return cls(
            id=body.get("id", ""),
            dep_component_id=body.get("dep_component_id"),
            api_url=body.get("api_url", ""),
            tls_cert=component.get("tls_cert", ""),
        )


class CryptoEnrollmentComponent(BaseModel):
    admincerts: list[str] = Field(default_factory=list)


class CryptoObjectEnrollmentCa(BaseModel):
    host: str
    port: float
    name: str
    tls_cert: str
    enroll_id: str
    enroll_secret: str


class CryptoObjectEnrollmentTlsca(BaseModel):
    host: str
    port: float
    name: str
    tls_cert: str
    enroll_id: str
    enroll_secret: str
    csr_hosts: list[str] | None = None


class CryptoObjectEnrollment(BaseModel):
    component: CryptoEnrollmentComponent
    ca: CryptoObjectEnrollmentCa
    tlsca: CryptoObjectEnrollmentTlsca


class CryptoObject(BaseModel):
    """Enrollment payload the console needs to create a peer or orderer."""

    enrollment: CryptoObjectEnrollment


class MspCaField(BaseModel):
    name: str
    root_certs: list[str] = Field(default_factory=list)


class MspComponentField(BaseModel):
    tls_cert: str
    ecert: str | None = None
    admin_certs: list[str] | None = None


class MspCryptoField(BaseModel):
    """MSP data attached to imported CAs, peers and orderers."""

    ca: MspCaField
    tlsca: MspCaField
    component: MspComponentField


def dump_payload(model: BaseModel) -> dict[str, Any]:
    """Serialize a request model the way the console expects (no nulls)."""

    return model.model_dump(mode="json", exclude_none=True)
