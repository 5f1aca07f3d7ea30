"""
Location Trust Service - cross-validates a GPS fix against the network

Checks, in order:
1. Network-derived location (best effort; absent on failure)
2. GPS vs network distance, timezone consistency, VPN/proxy/Tor/hosting markers
3. Travel speed since the actor's last known fix
4. Client-reported location-spoofing extensions
5. GPS accuracy

Each finding lowers a confidence that starts at 1.0.
"""
import hashlib
import json
import logging
import math
import re
from typing import Any, Dict, Iterable, Optional

from attendance_trust.config import settings
from attendance_trust.db.trust_store import TrustStore, get_trust_store
from attendance_trust.models.domain import GpsFix, LocationFlags, LocationTrustResult, NetworkFix
from attendance_trust.services.geo_containment_service import haversine_meters
from attendance_trust.services.network_location_service import (
    NetworkLocationService, network_location_service
)

logger = logging.getLogger(__name__)

# Confidence penalties
PENALTIES = {
    "discrepancy_warn": 0.2,
    "discrepancy_spoof": 0.4,
    "timezone_mismatch": 0.1,
    "vpn": 0.3,
    "proxy": 0.2,
    "tor": 0.4,
    "hosting": 0.2,
    "impossible_speed": 0.5,
    "spoofing_extension": 0.3,
    "accuracy_poor": 0.1,
    "accuracy_fair": 0.05,
}

IMPOSSIBLE_SPEED_WINDOW_SEC = 3600

# ISP-name heuristics for networks the provider did not flag
VPN_ISP_PATTERNS = [re.compile(p, re.IGNORECASE) for p in (r"vpn",)]
PROXY_ISP_PATTERNS = [re.compile(p, re.IGNORECASE) for p in (r"proxy",)]
HOSTING_ISP_PATTERNS = [
    re.compile(p, re.IGNORECASE) for p in (
        r"hosting",
        r"data\s*cent(er|re)",
        r"digital\s*ocean",
        r"amazon",
        r"\baws\b",
        r"google\s*cloud",
        r"microsoft\s*azure",
        r"linode",
        r"hetzner",
        r"\bovh\b",
    )
]

SPOOFING_EXTENSIONS = {"location-spoofer"}


def compute_device_fingerprint(attributes: Dict[str, Any]) -> str:
    """
    Stable identifier for a capture device derived from its reported
    screen, browser, timezone and rendering attributes.
    """
    canonical = json.dumps(attributes, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()[:32]


def _matches(patterns, text: str) -> bool:
    return bool(text) and any(p.search(text) for p in patterns)


def network_markers(fix: NetworkFix) -> Dict[str, bool]:
    """Provider threat flags merged with ISP-name heuristics."""
    return {
        "vpn": fix.is_vpn or _matches(VPN_ISP_PATTERNS, fix.isp),
        "proxy": fix.is_proxy or _matches(PROXY_ISP_PATTERNS, fix.isp),
        "tor": fix.is_tor,
        "hosting": fix.is_hosting or _matches(HOSTING_ISP_PATTERNS, fix.isp),
    }


class LocationTrustService:
    """Produces a LocationTrustResult for one GPS fix"""

    def __init__(
        self,
        resolver: Optional[NetworkLocationService] = None,
        store: Optional[TrustStore] = None
    ):
        self.resolver = resolver or network_location_service
        self._store = store

    @property
    def store(self) -> TrustStore:
        return self._store or get_trust_store()

    def verify(
        self,
        gps_fix: GpsFix,
        ip_address: Optional[str] = None,
        device_timezone: Optional[str] = None,
        previous_fix: Optional[GpsFix] = None,
        detected_extensions: Optional[Iterable[str]] = None,
        device_fingerprint: Optional[str] = None
    ) -> LocationTrustResult:
        """
        Verify a GPS fix.

        Args:
            gps_fix: position reported by the device
            ip_address: caller's network address, used for the network fix
            device_timezone: IANA timezone reported by the device
            previous_fix: the actor's last known fix, for travel-speed checks
            detected_extensions: client-side extension markers
            device_fingerprint: carried through to the result for audit

        Returns:
            LocationTrustResult
        """
        if not (math.isfinite(gps_fix.lat) and math.isfinite(gps_fix.lng)):
            logger.warning("Location check received a non-finite GPS fix")
            return LocationTrustResult(
                gps_fix=gps_fix,
                confidence=0.0,
                is_valid=False,
                device_fingerprint=device_fingerprint
            )

        flags: Dict[str, bool] = LocationFlags().model_dump()
        confidence = 1.0
        discrepancy: Optional[float] = None
        speed_kmh: Optional[float] = None

        network_fix = self._resolve(ip_address)
        if network_fix is not None:
            markers = network_markers(network_fix)
            flags.update(markers)

            discrepancy = haversine_meters(gps_fix.lat, gps_fix.lng, network_fix.lat, network_fix.lng)
            if discrepancy > settings.LOCATION_DISCREPANCY_SPOOF_M:
                flags["location_spoofed"] = True
                confidence -= PENALTIES["discrepancy_spoof"]
            elif discrepancy > settings.LOCATION_DISCREPANCY_WARN_M:
                confidence -= PENALTIES["discrepancy_warn"]

            if device_timezone and network_fix.timezone and device_timezone != network_fix.timezone:
                flags["timezone_mismatch"] = True
                confidence -= PENALTIES["timezone_mismatch"]

            for marker in ("vpn", "proxy", "tor", "hosting"):
                if markers[marker]:
                    confidence -= PENALTIES[marker]

        if previous_fix is not None:
            speed_kmh, impossible = self._travel_speed(previous_fix, gps_fix)
            if impossible:
                flags["impossible_speed"] = True
                confidence -= PENALTIES["impossible_speed"]

        if detected_extensions and SPOOFING_EXTENSIONS.intersection(detected_extensions):
            confidence -= PENALTIES["spoofing_extension"]

        if gps_fix.accuracy_meters > 100:
            confidence -= PENALTIES["accuracy_poor"]
        elif gps_fix.accuracy_meters > 50:
            confidence -= PENALTIES["accuracy_fair"]

        confidence = min(max(confidence, 0.0), 1.0)
        is_valid = (
            confidence >= settings.LOCATION_VALID_THRESHOLD
            and not flags["vpn"]
            and not flags["location_spoofed"]
        )

        return LocationTrustResult(
            gps_fix=gps_fix,
            network_fix=network_fix,
            distance_discrepancy_meters=discrepancy,
            speed_kmh=speed_kmh,
            flags=LocationFlags(**flags),
            confidence=confidence,
            is_valid=is_valid,
            device_fingerprint=device_fingerprint
        )

    def verify_for_actor(
        self,
        actor_id: str,
        gps_fix: GpsFix,
        ip_address: Optional[str] = None,
        device_timezone: Optional[str] = None,
        detected_extensions: Optional[Iterable[str]] = None,
        device_fingerprint: Optional[str] = None
    ) -> LocationTrustResult:
        """verify() against the actor's last known fix, then remember this fix."""
        store = self.store
        previous_fix = store.get_last_fix(actor_id)
        result = self.verify(
            gps_fix,
            ip_address=ip_address,
            device_timezone=device_timezone,
            previous_fix=previous_fix,
            detected_extensions=detected_extensions,
            device_fingerprint=device_fingerprint
        )
        if math.isfinite(gps_fix.lat) and math.isfinite(gps_fix.lng):
            store.put_last_fix(actor_id, gps_fix)
        return result

    def _resolve(self, ip_address: Optional[str]) -> Optional[NetworkFix]:
        if not ip_address:
            return None
        try:
            return self.resolver.resolve(ip_address)
        except Exception as e:
            logger.warning(f"Network location unavailable for {ip_address}: {e}")
            return None

    @staticmethod
    def _travel_speed(previous: GpsFix, current: GpsFix):
        """(speed_kmh, impossible) between two fixes."""
        distance = haversine_meters(previous.lat, previous.lng, current.lat, current.lng)
        elapsed = (current.timestamp - previous.timestamp).total_seconds()

        if elapsed <= 0:
            # Two places at the same instant
            return None, distance > 0

        speed_kmh = distance / elapsed * 3.6
        impossible = speed_kmh > settings.MAX_TRAVEL_SPEED_KMH and elapsed < IMPOSSIBLE_SPEED_WINDOW_SEC
        return speed_kmh, impossible


# Singleton instance
location_trust_service = LocationTrustService()
