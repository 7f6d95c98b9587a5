"""Proxy to the Vietnamese administrative-boundary API (provinces/districts/wards)."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import requests

from common.errors import UpstreamError
from common.services.logging import log_event


class LocationClient:
    def __init__(self, base_url: str, *, timeout: float = 10.0, session: Optional[requests.Session] = None) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._http = session or requests

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self._base_url}/{path.lstrip('/')}"
        try:
            response = self._http.get(url, params=params, timeout=self._timeout)
            response.raise_for_status()
            return response.json()
        except (requests.RequestException, ValueError) as exc:
            log_event("error", "locations.upstream_failed", url=url, error=str(exc))
            raise UpstreamError("Không thể tải dữ liệu địa giới hành chính") from exc

    @staticmethod
    def _brief(rows) -> List[Dict[str, Any]]:
        return [{"code": r.get("code"), "name": r.get("name")} for r in rows or []]

    def provinces(self) -> List[Dict[str, Any]]:
        return self._brief(self._get("p/"))

    def districts(self, province_code: int) -> List[Dict[str, Any]]:
        data = self._get(f"p/{int(province_code)}", params={"depth": 2})
        return self._brief(data.get("districts") if isinstance(data, dict) else [])

    def wards(self, district_code: int) -> List[Dict[str, Any]]:
        data = self._get(f"d/{int(district_code)}", params={"depth": 2})
        return self._brief(data.get("wards") if isinstance(data, dict) else [])
