from __future__ import annotations

from typing import Any, Dict, List, NoReturn, Optional

import httpx
import typer

from cli.config import CLIConfig


class ApiClient:
    """Minimal HTTP client for the informant service."""

    def __init__(self, config: CLIConfig) -> None:
        self._config = config
        self._client = httpx.Client(base_url=config.base_url, timeout=config.timeout)

    def close(self) -> None:
        self._client.close()

    def pv_intervals(self, start: str, end: str) -> List[Dict[str, Any]]:
        return self._request("GET", "/pv", params={"from": start, "to": end})

    def excess(self) -> Dict[str, Any]:
        return self._request("GET", "/excess")

    def workers(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/workers")

    def worker_intervals(self, address: Optional[str], start: str, end: str) -> List[Dict[str, Any]]:
        path = f"/worker/{address}" if address else "/interval"
        return self._request("GET", path, params={"from": start, "to": end})

    def register(self, address: str) -> Dict[str, Any]:
        return self._request("POST", f"/worker/{address}")

    def report(self, address: Optional[str], working: bool) -> Dict[str, Any]:
        path = f"/worker/{address}/report" if address else "/report"
        return self._request("POST", path, json={"status": working})

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = self._client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        except httpx.TransportError as exc:
            typer.secho(f"Could not reach {self._config.base_url}: {exc}", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1) from exc
        return response.json()

    @staticmethod
    def _handle_http_error(exc: httpx.HTTPStatusError) -> NoReturn:
        response = exc.response
        try:
            detail = response.json().get("detail")
        except ValueError:
            detail = response.text
        typer.secho(
            f"Request failed ({response.status_code}): {detail}",
            fg=typer.colors.RED,
            err=True,
        )
        raise typer.Exit(code=1) from exc
