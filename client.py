import requests
from typing import Optional


class FitPlanClient:
    """Simple REST client for the FitPlan API.

    ``session`` may be any object with a requests-style ``request`` method,
    such as ``fastapi.testclient.TestClient``.
    """

    def __init__(self, base_url: str = "http://localhost:8000", session=None) -> None:
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()

    def _request(self, method: str, path: str, **kwargs):
        resp = self.session.request(method, f"{self.base_url}{path}", **kwargs)
        if resp.status_code >= 400:
            try:
                detail = resp.json().get("detail", resp.text)
            except ValueError:
                detail = resp.text
            raise requests.HTTPError(f"{resp.status_code}: {detail}", response=resp)
        return resp

    @staticmethod
    def _dated(date: Optional[str]) -> dict:
        return {"date": date} if date else {}

    def health(self) -> dict:
        return self._request("GET", "/health").json()

    def status(self, date: Optional[str] = None) -> dict:
        return self._request("GET", "/status", params=self._dated(date)).json()

    def stats(self, date: Optional[str] = None) -> dict:
        return self._request("GET", "/stats", params=self._dated(date)).json()

    def log_rest(self, date: Optional[str] = None) -> dict:
        return self._request("POST", "/rest", params=self._dated(date)).json()

    def start_workout(self, date: Optional[str] = None) -> dict:
        return self._request("POST", "/wizard", params=self._dated(date)).json()

    def wizard(self) -> dict:
        return self._request("GET", "/wizard").json()

    def enter_weight(self, weight: float) -> dict:
        return self._request("PUT", "/wizard/weight", params={"weight": weight}).json()

    def next_set(self) -> dict:
        return self._request("POST", "/wizard/next").json()

    def previous_set(self) -> dict:
        return self._request("POST", "/wizard/back").json()

    def finish_workout(self, date: Optional[str] = None) -> dict:
        return self._request("POST", "/wizard/finish", params=self._dated(date)).json()

    def log_workout(self, weights: list[float], date: Optional[str] = None) -> dict:
        """Run the whole wizard with one weight per set, in plan order."""
        self.start_workout(date)
        for index, weight in enumerate(weights):
            self.enter_weight(weight)
            if index < len(weights) - 1:
                self.next_set()
        return self.finish_workout(date)

    def autofill(self, day: int, exercise: str, before: Optional[str] = None) -> dict[int, float]:
        params = {"day": day, "exercise": exercise}
        if before:
            params["before"] = before
        data = self._request("GET", "/autofill", params=params).json()
        return {int(k): v for k, v in data.items()}

    def recent_sessions(self, limit: Optional[int] = None) -> list:
        params = {"limit": limit} if limit else {}
        return self._request("GET", "/sessions/recent", params=params).json()

    def save_bodyweight(self, value: float, date: Optional[str] = None) -> dict:
        params = {"value": value, **self._dated(date)}
        return self._request("POST", "/metrics/bodyweight", params=params).json()

    def save_calories(self, value: float, date: Optional[str] = None) -> dict:
        params = {"value": value, **self._dated(date)}
        return self._request("POST", "/metrics/calories", params=params).json()

    def metrics(self, start: str, end: str) -> list:
        return self._request("GET", "/metrics", params={"start": start, "end": end}).json()

    def export_backup(self) -> dict:
        return self._request("GET", "/backup").json()

    def restore_backup(self, snapshot: dict, date: Optional[str] = None) -> dict:
        return self._request(
            "POST", "/backup", params=self._dated(date), json=snapshot
        ).json()

    def export_csv(self, kind: str) -> str:
        return self._request("GET", f"/export/{kind}").text

    def template(self) -> str:
        return self._request("GET", "/import/template").text

    def import_template(self, text: str) -> dict:
        return self._request(
            "POST",
            "/import/template",
            data=text.encode("utf-8"),
            headers={"Content-Type": "text/csv"},
        ).json()

    def rebuild_cycle(self, date: Optional[str] = None) -> dict:
        return self._request("POST", "/cycle/rebuild", params=self._dated(date)).json()
