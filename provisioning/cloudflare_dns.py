"""
Cloudflare DNS provider.
Thin client for the Cloudflare v4 API covering the record operations the
provisioning flow needs: query by (type, name), create, update and delete.
"""

import json
import logging
from typing import Dict, List, Optional

import requests

from .dns_records import DNSRecord
from .errors import ProviderError

logger = logging.getLogger(__name__)


class CloudflareDNSProvider:
    """Cloudflare DNS provider for managing records in a single zone."""

    def __init__(
        self,
        api_token: Optional[str] = None,
        zone_id: Optional[str] = None,
        api_email: Optional[str] = None,
        api_key: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
    ):
        """
        Initialize Cloudflare DNS provider.

        Args:
            api_token: Cloudflare API token
            zone_id: Optional zone ID (auto-detected if not provided)
            api_email: Account email for legacy global API key auth
            api_key: Legacy global API key, used when no token is given
            session: Optional requests session to reuse
            timeout: Per-request timeout in seconds
        """
        if not api_token and not (api_email and api_key):
            raise ValueError("Either an API token or an email and API key is required")

        self.base_url = "https://api.cloudflare.com/client/v4"
        self.headers = {"Content-Type": "application/json"}
        if api_token:
            self.headers["Authorization"] = f"Bearer {api_token}"
        else:
            self.headers["X-Auth-Email"] = api_email
            self.headers["X-Auth-Key"] = api_key
        self._uses_token = bool(api_token)

        self.zone_id = zone_id
        self.zone_domain: Optional[str] = None  # Cache the domain for the zone
        self.session = session or requests.Session()
        self.timeout = timeout

    def _make_request(
        self,
        method: str,
        endpoint: str,
        data: Optional[Dict] = None,
        params: Optional[Dict] = None,
    ) -> Dict:
        """
        Make a request to the Cloudflare API.

        Raises:
            ProviderError: On transport errors, unparsable responses or
                responses that report success=false
        """
        url = f"{self.base_url}/{endpoint}"
        if method.upper() not in ("GET", "POST", "PUT", "PATCH", "DELETE"):
            raise ValueError(f"Unsupported HTTP method: {method}")

        try:
            response = self.session.request(
                method.upper(),
                url,
                headers=self.headers,
                json=data,
                params=params,
                timeout=self.timeout,
            )
            result = response.json()
        except requests.exceptions.RequestException as e:
            logger.error(f"Request Error: {str(e)}")
            if data:
                logger.debug(f"Request data: {json.dumps(data)}")
            raise ProviderError(f"Cloudflare request failed: {e}") from e
        except ValueError as e:
            logger.error("JSON Decode Error: Could not parse response")
            raise ProviderError("Could not parse Cloudflare response") from e

        if not result.get("success", False):
            errors = result.get("errors", [])
            error_msg = "\n".join(
                [f"Code: {e.get('code')}, Message: {e.get('message')}" for e in errors]
            )
            logger.error(f"API Error: {error_msg}")
            if data:
                logger.debug(f"Request data: {json.dumps(data)}")
            raise ProviderError(
                f"Cloudflare API error ({response.status_code}): {error_msg or 'unknown'}"
            )

        return result

    def validate_credentials(self) -> bool:
        """Validate Cloudflare credentials."""
        endpoint = "user/tokens/verify" if self._uses_token else "user"
        try:
            self._make_request("GET", endpoint)
            logger.info("Cloudflare credential validation successful")
            return True
        except ProviderError as e:
            logger.error(f"Cloudflare credential validation failed: {e}")
            return False

    def _get_zone_info(self, domain: str) -> Optional[tuple[str, str]]:
        """Get the zone ID and zone name for a domain with pagination support."""
        zone_name_len = 0
        zone_id = None
        zone_name_found = None

        page = 1
        total_pages = 1

        while page <= total_pages:
            result = self._make_request("GET", "zones", params={"page": page})

            zones = result.get("result", [])
            if not zones and page == 1:
                logger.error("No zones found for any domain")
                return None

            result_info = result.get("result_info", {})
            if result_info:
                total_pages = result_info.get("total_pages", total_pages)

            for zone in zones:
                zone_name = zone.get("name", "")
                # Exact match - return immediately
                if domain == zone_name:
                    return (zone.get("id"), zone_name)
                # Subdomain match - keep track of longest match
                if domain.endswith(f".{zone_name}") and len(zone_name) > zone_name_len:
                    zone_name_len = len(zone_name)
                    zone_id = zone.get("id")
                    zone_name_found = zone_name

            page += 1

        if zone_id and zone_name_found:
            return (zone_id, zone_name_found)

        logger.error(f"Zone ID not found in response for domain: {domain}")
        return None

    def get_zone_id(self, domain: str) -> str:
        """
        Get zone ID for domain, auto-detect if not provided.

        Raises:
            ProviderError: If no zone covers the domain
        """
        if self.zone_id and self.zone_domain is None:
            # Explicitly configured zone covers every name we manage
            return self.zone_id
        if self.zone_id and (
            domain == self.zone_domain or domain.endswith(f".{self.zone_domain}")
        ):
            return self.zone_id

        zone_info = self._get_zone_info(domain)
        if not zone_info:
            raise ProviderError(f"Zone not found for domain: {domain}")
        self.zone_id, self.zone_domain = zone_info
        logger.info(
            f"Found zone ID {self.zone_id} for domain {domain} (zone: {self.zone_domain})"
        )
        return self.zone_id

    def list_records(self, record_type: str, name: str) -> List[DNSRecord]:
        """Fetch every record of the given type and name."""
        zone_id = self.get_zone_id(name)
        result = self._make_request(
            "GET",
            f"zones/{zone_id}/dns_records",
            params={"type": record_type, "name": name, "per_page": 100},
        )
        records = [DNSRecord.from_api(r) for r in result.get("result", [])]
        logger.debug(f"Found {len(records)} {record_type} record(s) for {name}")
        return records

    def create_record(
        self, record_type: str, name: str, content: str, ttl: int = 60
    ) -> DNSRecord:
        zone_id = self.get_zone_id(name)
        record_data = {"type": record_type, "name": name, "content": content, "ttl": ttl}
        result = self._make_request("POST", f"zones/{zone_id}/dns_records", record_data)
        record = DNSRecord.from_api(result.get("result", {}))
        logger.info(f"Created {record_type} record {record.record_id} for {name}")
        return record

    def update_record(self, record: DNSRecord, content: str, ttl: int = 60) -> DNSRecord:
        zone_id = self.get_zone_id(record.name)
        record_data = {
            "type": record.record_type,
            "name": record.name,
            "content": content,
            "ttl": ttl,
        }
        result = self._make_request(
            "PUT", f"zones/{zone_id}/dns_records/{record.record_id}", record_data
        )
        logger.info(f"Updated {record.record_type} record {record.record_id} for {record.name}")
        return DNSRecord.from_api(result.get("result", {}))

    def delete_record(self, record: DNSRecord) -> None:
        zone_id = self.get_zone_id(record.name)
        self._make_request("DELETE", f"zones/{zone_id}/dns_records/{record.record_id}")
        logger.info(f"Deleted {record.record_type} record {record.record_id} for {record.name}")

