import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class SessionTokens:
    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None

    @classmethod
    def from_oauth(cls, data: dict) -> "SessionTokens":
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_in=data.get("expires_in"),
        )

    def __repr__(self):
        # Token values never end up in logs or tracebacks
        return f"SessionTokens(expires_in={self.expires_in})"


@dataclass
class SessionMetadata:
    """Non-sensitive description of a login, safe to expose to page code."""

    vin: Optional[str]
    user_id: Optional[str]
    region: str
    remember_me: bool = False
    issued_at: int = field(default_factory=now_ms)
    expires_at: int = 0
    email: Optional[str] = None

    def is_expired(self, at: Optional[int] = None) -> bool:
        if not self.expires_at:
            return True
        return self.expires_at <= (at if at is not None else now_ms())

    def to_dict(self) -> dict:
        return {
            "vin": self.vin,
            "user_id": self.user_id,
            "region": self.region,
            "remember_me": self.remember_me,
            "issued_at": self.issued_at,
            "expires_at": self.expires_at,
            "email": self.email,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SessionMetadata":
        return cls(
            vin=data.get("vin"),
            user_id=data.get("user_id"),
            region=data.get("region") or "vn",
            remember_me=bool(data.get("remember_me", False)),
            issued_at=int(data.get("issued_at") or 0),
            expires_at=int(data["expires_at"]),
            email=data.get("email"),
        )


@dataclass
class VehicleRecord:
    vin_code: str
    user_id: Optional[str] = None
    marketing_name: Optional[str] = None
    variant: Optional[str] = None
    color: Optional[str] = None
    interior_color: Optional[str] = None
    year: Optional[int] = None
    vehicle_name: Optional[str] = None
    user_vehicle_type: Optional[str] = None
    vehicle_image: Optional[str] = None
    profile_image: Optional[str] = None
    warranty_expiration_date: Optional[str] = None
    warranty_mileage: Optional[int] = None
    alias_version: Optional[str] = None

    @classmethod
    def from_api(cls, data: dict) -> "VehicleRecord":
        return cls(
            vin_code=data["vinCode"],
            user_id=data.get("userId"),
            marketing_name=data.get("marketingName"),
            variant=data.get("vehicleVariant"),
            color=data.get("exteriorColor") or data.get("color"),
            interior_color=data.get("interiorColor"),
            year=data.get("yearOfProduct"),
            vehicle_name=data.get("customizedVehicleName") or data.get("vehicleName"),
            user_vehicle_type=data.get("userVehicleType"),
            vehicle_image=data.get("vehicleImage"),
            profile_image=data.get("profileImage"),
            warranty_expiration_date=data.get("warrantyExpirationDate"),
            warranty_mileage=data.get("warrantyMileage"),
            alias_version=data.get("vehicleAliasVersion"),
        )

    def base_state(self) -> Dict[str, Any]:
        """Reference fields shown in the header for this vehicle."""
        return {
            "vin": self.vin_code,
            "marketing_name": self.marketing_name,
            "vehicle_variant": self.variant,
            "color": self.color,
            "interior_color": self.interior_color,
            "year_of_product": self.year,
            "customized_vehicle_name": self.vehicle_name,
            "user_vehicle_type": self.user_vehicle_type,
            "vehicle_image": self.vehicle_image,
            "vinfast_profile_image": self.profile_image,
            "warranty_expiration_date": self.warranty_expiration_date,
            "warranty_mileage": self.warranty_mileage,
        }

    def __repr__(self):
        return f"VehicleRecord(vin={self.vin_code}, model={self.marketing_name})"


@dataclass
class FullTelemetry:
    raw: List[dict]
    aliases: List[dict]
    candidates: List[dict] = field(default_factory=list)
    fetched_at: int = field(default_factory=now_ms)


@dataclass
class ChargingCacheEntry:
    sessions: List[dict]
    total_records: int
    fetched_at: int

    def is_fresh(self, ttl_ms: int, at: Optional[int] = None) -> bool:
        return (at if at is not None else now_ms()) - self.fetched_at < ttl_ms

    def to_dict(self) -> dict:
        return {
            "sessions": self.sessions,
            "total_records": self.total_records,
            "fetched_at": self.fetched_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ChargingCacheEntry":
        return cls(
            sessions=list(data["sessions"]),
            total_records=int(data.get("total_records") or 0),
            fetched_at=int(data["fetched_at"]),
        )
