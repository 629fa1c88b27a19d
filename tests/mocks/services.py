import json
import typing as t

import httpx


class RecordingSleep:
    """
    Awaitable sleep replacement recording every requested delay.
    """

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)

    @property
    def total(self) -> float:
        return sum(self.delays)


class FakeTextAnalyticsAPI:
    """
    Emulate the subset of text analytics endpoints used in tests.

    Synchronous endpoints answer every document unless its id is listed in
    ``drop_ids`` (silently missing) or ``error_ids`` (reported as an error).
    With ``deferred=True`` the service answers ``202`` with a ``Location``
    header and reports ``running`` for ``pending_polls`` status checks. Analyze
    jobs containing a text listed in ``malformed_texts`` answer with a
    ``tasks`` value of the wrong shape.
    """

    def __init__(
        self,
        *,
        deferred: bool = False,
        pending_polls: int = 0,
        final_status: str = "succeeded",
        drop_ids: t.Collection[str] = (),
        error_ids: t.Collection[str] = (),
        failing_tasks: t.Collection[str] = (),
        malformed_texts: t.Collection[str] = (),
    ) -> None:
        self.deferred = deferred
        self.pending_polls = pending_polls
        self.final_status = final_status
        self.drop_ids = set(drop_ids)
        self.error_ids = set(error_ids)
        self.failing_tasks = set(failing_tasks)
        self.malformed_texts = set(malformed_texts)
        self.submissions: list[dict[str, t.Any]] = []
        self.status_checks: list[httpx.Request] = []
        self._jobs: dict[str, dict[str, t.Any]] = {}

    def _documents(self, *, body: dict[str, t.Any]) -> list[dict[str, t.Any]]:
        if "analysisInput" in body:
            return body["analysisInput"]["documents"]
        return body["documents"]

    def _batch_results(self, *, documents: list[dict[str, t.Any]]) -> dict[str, t.Any]:
        results: list[dict[str, t.Any]] = []
        errors: list[dict[str, t.Any]] = []
        for document in documents:
            if document["id"] in self.drop_ids:
                continue
            if document["id"] in self.error_ids:
                errors.append(
                    {
                        "id": document["id"],
                        "error": {"code": "InvalidArgument", "message": "Invalid document"},
                    }
                )
                continue
            results.append(
                {
                    "id": document["id"],
                    "sentiment": "positive" if "good" in document["text"] else "neutral",
                    "length": len(document["text"]),
                    "warnings": [],
                }
            )
        # answer in reverse order, correlation must not rely on it
        return {"documents": list(reversed(results)), "errors": errors}

    def _analyze_results(self, *, body: dict[str, t.Any]) -> dict[str, t.Any]:
        documents = self._documents(body=body)
        tasks: dict[str, t.Any] = {}
        for kind in body["tasks"]:
            if kind in self.failing_tasks:
                tasks[kind] = [{"state": "failed", "lastUpdateDateTime": "2021-01-01T00:00:00Z"}]
            else:
                tasks[kind] = [
                    {"state": "succeeded", "results": self._batch_results(documents=documents)}
                ]
        return {"status": self.final_status, "tasks": tasks}

    def _handle_submit(self, *, request: httpx.Request) -> httpx.Response:
        body = json.loads(s=request.content.decode(encoding="utf-8"))
        self.submissions.append(body)
        if not self.deferred:
            return httpx.Response(
                status_code=200,
                json=self._batch_results(documents=self._documents(body=body)),
            )
        job_id = f"job-{len(self.submissions)}"
        self._jobs[job_id] = {"body": body, "checks": 0}
        return httpx.Response(
            status_code=202,
            headers={"Location": f"https://test.api.example.com/jobs/{job_id}?showStats=false"},
        )

    def _handle_status(self, *, request: httpx.Request, job_id: str) -> httpx.Response:
        self.status_checks.append(request)
        job = self._jobs[job_id]
        job["checks"] += 1
        if job["checks"] <= self.pending_polls:
            return httpx.Response(status_code=200, json={"status": "running"})
        body = job["body"]
        if self.final_status == "failed":
            return httpx.Response(
                status_code=200,
                json={"status": "failed", "errors": [{"message": "Job failed"}]},
            )
        if "tasks" in body:
            texts = {document["text"] for document in self._documents(body=body)}
            if texts & self.malformed_texts:
                return httpx.Response(
                    status_code=200, json={"status": self.final_status, "tasks": ["oops"]}
                )
            return httpx.Response(status_code=200, json=self._analyze_results(body=body))
        payload = self._batch_results(documents=self._documents(body=body))
        return httpx.Response(status_code=200, json={"status": self.final_status, **payload})

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return self._handle_submit(request=request)
        if request.method == "GET" and request.url.path.startswith("/jobs/"):
            return self._handle_status(request=request, job_id=request.url.path.rsplit("/", 1)[-1])
        return httpx.Response(status_code=404, json={"error": {"message": "Not found"}})

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(handler=self.handler)


def make_sequence_transport(
    *responses: httpx.Response | Exception,
) -> tuple[httpx.MockTransport, list[httpx.Request]]:
    """
    Build a transport replaying ``responses`` in order.

    Exceptions in the sequence are raised instead of answered.

    Returns
    -------
    tuple[httpx.MockTransport, list[httpx.Request]]
        Transport and the list collecting received requests.
    """
    queue = list(responses)
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if not queue:
            raise AssertionError(f"Unexpected request: {request.method} {request.url}")
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    return httpx.MockTransport(handler=handler), seen
