"""
Network Location Service - IP geolocation used as an independent cross-check
of the device GPS fix
"""
import ipaddress
import logging
import math
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx
import redis

from attendance_trust.config import settings
from attendance_trust.models.domain import NetworkFix

logger = logging.getLogger(__name__)


def _threat_types(data: Dict[str, Any]) -> List[str]:
    threats = data.get("threat_types") or []
    if isinstance(threats, str):
        threats = [threats]
    return [str(t).lower() for t in threats]


def _coordinates(lat: Any, lng: Any) -> Optional[Tuple[float, float]]:
    """Finite in-range coordinates, or None when the provider gave none."""
    if lat is None or lng is None or lat == "" or lng == "":
        return None
    lat, lng = float(lat), float(lng)
    if not (math.isfinite(lat) and math.isfinite(lng)):
        return None
    if abs(lat) > 90 or abs(lng) > 180:
        return None
    return lat, lng


def _normalize_ipapi_co(data: Dict[str, Any]) -> Optional[NetworkFix]:
    if data.get("error"):
        return None
    coordinates = _coordinates(data.get("latitude"), data.get("longitude"))
    if coordinates is None:
        return None
    threats = _threat_types(data)
    return NetworkFix(
        ip=str(data.get("ip") or ""),
        lat=coordinates[0],
        lng=coordinates[1],
        city=str(data.get("city") or ""),
        region=str(data.get("region") or ""),
        country=str(data.get("country_name") or ""),
        isp=str(data.get("org") or ""),
        timezone=str(data.get("timezone") or ""),
        is_vpn="vpn" in threats,
        is_proxy="proxy" in threats,
        is_tor="tor" in threats,
        is_hosting="hosting" in threats,
        provider="ipapi.co"
    )


def _normalize_ip_api_com(data: Dict[str, Any]) -> Optional[NetworkFix]:
    if data.get("status") == "fail":
        return None
    coordinates = _coordinates(data.get("lat"), data.get("lon"))
    if coordinates is None:
        return None
    # ip-api.com folds VPNs into its "proxy" flag and has no Tor signal
    proxy = bool(data.get("proxy"))
    return NetworkFix(
        ip=str(data.get("query") or ""),
        lat=coordinates[0],
        lng=coordinates[1],
        city=str(data.get("city") or ""),
        region=str(data.get("regionName") or ""),
        country=str(data.get("country") or ""),
        isp=str(data.get("isp") or ""),
        timezone=str(data.get("timezone") or ""),
        is_vpn=proxy,
        is_proxy=proxy,
        is_tor=False,
        is_hosting=bool(data.get("hosting")),
        provider="ip-api.com"
    )


def _normalize_ipinfo_io(data: Dict[str, Any]) -> Optional[NetworkFix]:
    loc = str(data.get("loc") or "")
    if "," not in loc:
        return None
    coordinates = _coordinates(*loc.split(",", 1))
    if coordinates is None:
        return None
    lat, lng = coordinates
    return NetworkFix(
        ip=str(data.get("ip") or ""),
        lat=lat,
        lng=lng,
        city=str(data.get("city") or ""),
        region=str(data.get("region") or ""),
        country=str(data.get("country") or ""),
        isp=str(data.get("org") or ""),
        timezone=str(data.get("timezone") or ""),
        provider="ipinfo.io"
    )


PROVIDERS: Dict[str, Dict[str, Any]] = {
    "ipapi.co": {
        "url": "https://ipapi.co/{ip}/json/",
        "normalize": _normalize_ipapi_co,
    },
    "ip-api.com": {
        "url": "http://ip-api.com/json/{ip}?fields=status,message,country,regionName,city,lat,lon,timezone,isp,proxy,hosting,query",
        "normalize": _normalize_ip_api_com,
    },
    "ipinfo.io": {
        "url": "https://ipinfo.io/{ip}/json",
        "normalize": _normalize_ipinfo_io,
    },
}


class NetworkLocationService:
    """
    Resolves an IP address to a network location fix.

    Features:
    - Several free providers tried in sequence, schemas normalized
    - Redis caching with configurable TTL
    - Per-provider timeout plus a total time budget
    - Private, loopback and malformed addresses are never looked up

    Failures of any kind yield None ("no network fix"); nothing is retried.
    """

    def __init__(
        self,
        providers: Optional[List[str]] = None,
        transport: Optional[httpx.BaseTransport] = None,
        use_cache: bool = True,
        clock: Callable[[], float] = time.monotonic
    ):
        self.providers = list(providers) if providers is not None else list(settings.GEOIP_PROVIDERS)
        self._transport = transport
        self._use_cache = use_cache
        self._clock = clock
        self._redis_client: Optional[redis.Redis] = None

    def _get_redis(self) -> Optional[redis.Redis]:
        """Get Redis client for caching"""
        if not self._use_cache:
            return None
        if self._redis_client is None:
            try:
                self._redis_client = redis.from_url(
                    settings.REDIS_URL,
                    decode_responses=True
                )
                self._redis_client.ping()
            except Exception as e:
                logger.warning(f"Redis unavailable for geolocation caching: {e}")
                self._use_cache = False
                self._redis_client = None
        return self._redis_client

    @staticmethod
    def _get_cache_key(ip: str) -> str:
        return f"trust:geoip:{ip}"

    def _get_cached_fix(self, ip: str) -> Optional[NetworkFix]:
        try:
            r = self._get_redis()
            if r:
                cached = r.get(self._get_cache_key(ip))
                if cached:
                    return NetworkFix.model_validate_json(cached)
        except Exception as e:
            logger.warning(f"Geolocation cache read error: {e}")
        return None

    def _set_cached_fix(self, ip: str, fix: NetworkFix) -> None:
        try:
            r = self._get_redis()
            if r:
                r.setex(self._get_cache_key(ip), settings.GEOIP_CACHE_TTL_SEC, fix.model_dump_json())
        except Exception as e:
            logger.warning(f"Geolocation cache write error: {e}")

    @staticmethod
    def is_public_address(ip: Optional[str]) -> bool:
        if not ip:
            return False
        try:
            address = ipaddress.ip_address(ip.strip())
        except ValueError:
            return False
        return address.is_global

    def _query_provider(self, client: httpx.Client, name: str, ip: str) -> Optional[NetworkFix]:
        provider = PROVIDERS.get(name)
        if provider is None:
            logger.warning(f"Unknown geolocation provider: {name}")
            return None

        response = client.get(provider["url"].format(ip=ip), headers={"Accept": "application/json"})
        response.raise_for_status()
        return provider["normalize"](response.json())

    def resolve(self, ip: Optional[str]) -> Optional[NetworkFix]:
        """
        Resolve an IP address to a network fix.

        Args:
            ip: caller's public IP address

        Returns:
            NetworkFix, or None when no provider could answer in time
        """
        if not self.is_public_address(ip):
            if ip:
                logger.debug(f"Skipping geolocation for non-public address: {ip}")
            return None

        ip = ip.strip()
        cached = self._get_cached_fix(ip)
        if cached:
            logger.debug(f"Geolocation cache hit for: {ip}")
            return cached

        deadline = self._clock() + settings.GEOIP_TOTAL_BUDGET_SEC
        with httpx.Client(timeout=settings.GEOIP_TIMEOUT_SEC, transport=self._transport) as client:
            for name in self.providers:
                if self._clock() >= deadline:
                    logger.warning(f"Geolocation budget exhausted for {ip}")
                    break
                try:
                    fix = self._query_provider(client, name, ip)
                except httpx.TimeoutException:
                    logger.warning(f"Geolocation provider {name} timed out for {ip}")
                    continue
                except httpx.HTTPError as e:
                    logger.warning(f"Geolocation provider {name} failed for {ip}: {e}")
                    continue
                except (ValueError, TypeError) as e:
                    logger.warning(f"Geolocation provider {name} returned unusable data: {e}")
                    continue

                if fix is not None:
                    self._set_cached_fix(ip, fix)
                    logger.info(f"Resolved {ip} via {name} -> ({fix.lat}, {fix.lng})")
                    return fix

        logger.warning(f"All geolocation providers failed for {ip}")
        return None


# Singleton instance
network_location_service = NetworkLocationService()
