"""
Shared fixtures: in-process fakes for the job API, the chat API and the
media backend, served through httpx.MockTransport.
"""

import json
import re
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from storyreel.core.config import Config, LLMConfig, ServicesConfig, set_config, reset_config


# =============================================================================
# Job API
# =============================================================================


def completed(output: Any) -> Dict[str, Any]:
    return {"status": "COMPLETED", "output": output}


def failed(error: str = "CUDA out of memory") -> Dict[str, Any]:
    return {"status": "FAILED", "error": error}


class FakeJobAPI:
    """
    Fake submit/poll service.

    ``plan(endpoint, payload, job_id)`` returns the list of status bodies the
    job reports, one per poll; the last one repeats. Returning None from
    ``reject(endpoint, payload)`` accepts a submission, returning a status
    code rejects it.
    """

    _RUN = re.compile(r"^/v2/(?P<endpoint>[^/]+)/run$")
    _STATUS = re.compile(r"^/v2/(?P<endpoint>[^/]+)/status/(?P<job_id>[^/]+)$")

    def __init__(
        self,
        plan: Optional[Callable[[str, Dict[str, Any], str], List[Dict[str, Any]]]] = None,
        reject: Optional[Callable[[str, Dict[str, Any]], Optional[int]]] = None,
    ):
        self.plan = plan or self.default_plan
        self.reject = reject or (lambda endpoint, payload: None)
        self.submissions: List[Dict[str, Any]] = []
        self.polls: List[str] = []
        self._statuses: Dict[str, List[Dict[str, Any]]] = {}
        self._counter = 0

    @staticmethod
    def default_plan(endpoint: str, payload: Dict[str, Any], job_id: str) -> List[Dict[str, Any]]:
        return [{"status": "IN_QUEUE"}, {"status": "IN_PROGRESS"}, completed({"result": f"https://cdn.test/{job_id}.mp4"})]

    def payloads(self, endpoint: str) -> List[Dict[str, Any]]:
        return [s["payload"] for s in self.submissions if s["endpoint"] == endpoint]

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path

        match = self._RUN.match(path)
        if request.method == "POST" and match:
            endpoint = match.group("endpoint")
            payload = json.loads(request.content)["input"]
            code = self.reject(endpoint, payload)
            if code is not None:
                return httpx.Response(code, text="endpoint unavailable")

            self._counter += 1
            job_id = f"job-{self._counter}"
            self.submissions.append({"endpoint": endpoint, "payload": payload, "job_id": job_id})
            self._statuses[job_id] = list(self.plan(endpoint, payload, job_id))
            return httpx.Response(200, json={"id": job_id, "status": "IN_QUEUE"})

        match = self._STATUS.match(path)
        if request.method == "GET" and match:
            job_id = match.group("job_id")
            self.polls.append(job_id)
            queue = self._statuses.get(job_id)
            if not queue:
                return httpx.Response(404, text="job not found")
            body = queue.pop(0) if len(queue) > 1 else queue[0]
            if isinstance(body, httpx.Response):
                return body
            return httpx.Response(200, json=dict(body, id=job_id))

        return httpx.Response(404)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


# =============================================================================
# Chat API
# =============================================================================


class FakeChatAPI:
    """Fake chat completions. ``respond(messages, payload)`` returns the content text."""

    def __init__(self, respond: Callable[[List[Dict[str, str]], Dict[str, Any]], str]):
        self.respond = respond
        self.requests: List[Dict[str, Any]] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        self.requests.append(payload)
        content = self.respond(payload["messages"], payload)
        if isinstance(content, httpx.Response):
            return content
        return httpx.Response(200, json={"choices": [{"message": {"role": "assistant", "content": content}}]})

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


def scene_payload(count: int, duration: int = 8) -> str:
    """An LLM scenes response with matching transitions."""
    scenes = []
    for n in range(1, count + 1):
        scenes.append({
            "sceneNumber": n,
            "title": f"Ride {n}",
            "duration": duration,
            "visualDescription": f"Cyclist on switchback {n}",
            "detailedPrompt": f"A cyclist climbs switchback {n} at sunrise",
            "transitionIn": "bike accelerates forward",
            "transitionOut": "bike accelerates forward",
            "cameraWork": "tracking shot",
            "lighting": "golden hour",
            "colorGrading": "warm amber",
            "audioScript": f"Line {n}…",
        })
    return json.dumps({"scenes": scenes})


def pipeline_chat(scene_count: int = 5) -> FakeChatAPI:
    """Chat fake answering scene planning with JSON and emotion prompts with a vector."""

    def respond(messages, payload):
        if payload.get("response_format"):
            return scene_payload(scene_count)
        return "[0.6, 0, 0, 0, 0, 0.1, 0.2, 0.4]"

    return FakeChatAPI(respond)


# =============================================================================
# Media Backend
# =============================================================================


class FakeMediaAPI:
    """Fake muxing and upload service."""

    def __init__(self, healthy: bool = True):
        self.healthy = healthy
        self.merges: List[List[str]] = []
        self.audio_merges: List[Dict[str, str]] = []
        self.uploads: List[str] = []

    async def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/health":
            return httpx.Response(200, json={"ok": self.healthy})
        if path == "/api/merge":
            urls = json.loads(request.content)["urls"]
            self.merges.append(urls)
            return httpx.Response(200, json={"output_url": "https://media.test/merged.mp4"})
        if path == "/api/video-audio":
            body = json.loads(request.content)
            self.audio_merges.append(body)
            return httpx.Response(200, json={"output_url": "https://media.test/final.mp4"})
        if path == "/api/upload-audio":
            await request.aread()
            self.uploads.append(request.headers.get("content-type", ""))
            n = len(self.uploads)
            return httpx.Response(200, json={
                "success": True,
                "url": f"https://storage.test/upload-{n}",
                "filename": f"upload-{n}",
            })
        return httpx.Response(404)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


# =============================================================================
# Configuration
# =============================================================================


def make_config(**storyboard) -> Config:
    """Config with zero poll intervals and no transition enhancement."""
    config = Config(
        services=ServicesConfig(
            api_key="rpa_test",
            endpoints={name: {"poll_interval": 0} for name in ("image", "composition", "video", "i2v", "tts")},
        ),
        llm=LLMConfig(api_key="sk-test", enhance_transitions=False),
    )
    for key, value in storyboard.items():
        setattr(config.storyboard, key, value)
    return config


@pytest.fixture
def config():
    config = make_config()
    set_config(config)
    yield config
    reset_config()
