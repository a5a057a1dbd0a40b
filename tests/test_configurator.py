"""Tests for the management client and post-bootstrap configuration"""

import json

import httpx
import pytest

from mirrorkit.api.client import APIError, Client, ConflictError, NotFoundError, UnauthorizedError
from mirrorkit.orchestrator.configurator import PostBootstrapConfigurator, RepositorySeed
from mirrorkit.orchestrator.errors import PostBootstrapWarning


class FakeBitbucket:
    """Minimal in-memory Bitbucket REST surface"""

    def __init__(self):
        self.projects = {}
        self.repos = {}
        self.requests = []
        self.fail_with = None

    def handler(self, request):
        self.requests.append(request)
        if self.fail_with is not None:
            return httpx.Response(self.fail_with, text="Internal Server Error")

        path = request.url.path
        if path == "/status":
            return httpx.Response(200, json={"state": "RUNNING"})
        if request.method == "POST" and path == "/rest/api/1.0/projects":
            body = json.loads(request.content)
            if body["key"] in self.projects:
                return httpx.Response(409, json={"errors": [{"message": "Project key already in use"}]})
            self.projects[body["key"]] = body
            return httpx.Response(201, json=body)
        if request.method == "POST" and path.endswith("/repos"):
            key = path.split("/")[-2]
            if key not in self.projects:
                return httpx.Response(404, json={"errors": [{"message": "Project does not exist"}]})
            body = json.loads(request.content)
            if (key, body["name"]) in self.repos:
                return httpx.Response(409, json={"errors": [{"message": "Repository already exists"}]})
            self.repos[(key, body["name"])] = body
            return httpx.Response(201, json=body)
        if request.method == "GET" and path.startswith("/rest/api/1.0/projects/"):
            parts = path.split("/")[5:]
            if len(parts) == 1 and parts[0] in self.projects:
                return httpx.Response(200, json=self.projects[parts[0]])
            if len(parts) == 3 and (parts[0], parts[2]) in self.repos:
                return httpx.Response(200, json={"slug": parts[2]})
        return httpx.Response(404)

    def client(self, **kwargs):
        return Client("https://bitbucket.local", "admin", "admin123", transport=httpx.MockTransport(self.handler), **kwargs)


@pytest.fixture
def server():
    return FakeBitbucket()


class TestClient:
    """Status code mapping"""

    def test_basic_auth_and_json(self, server):
        """Requests carry basic auth and decode JSON"""
        client = server.client()

        created = client.projects.create("DEMO", "Demo Project")

        assert created["key"] == "DEMO"
        assert server.requests[0].headers["authorization"].startswith("Basic ")

    def test_status_state(self, server):
        assert server.client().status.state() == "RUNNING"

    def test_not_found(self, server):
        with pytest.raises(NotFoundError):
            server.client().projects.get("NOPE")

    def test_conflict(self, server):
        client = server.client()
        client.projects.create("DEMO", "Demo Project")

        with pytest.raises(ConflictError) as exc:
            client.projects.create("DEMO", "Demo Project")

        assert exc.value.status_code == 409

    def test_unauthorized(self):
        client = Client("https://bitbucket.local", transport=httpx.MockTransport(lambda request: httpx.Response(401)))

        with pytest.raises(UnauthorizedError):
            client.projects.get("DEMO")

    def test_server_error(self, server):
        server.fail_with = 500

        with pytest.raises(APIError) as exc:
            server.client().projects.get("DEMO")

        assert exc.value.status_code == 500


class TestConfigurator:
    """Create-or-noop semantics"""

    def test_creates_project_then_repository(self, server):
        """Fresh server gets the project and repo-1"""
        result = PostBootstrapConfigurator(server.client()).run()

        assert result.ok
        assert result.created == ["project DEMO", "repository DEMO/repo-1"]
        assert server.repos[("DEMO", "repo-1")] == {"name": "repo-1", "scmId": "git", "forkable": True}

    def test_running_twice_is_idempotent(self, server):
        """The second run succeeds and creates nothing new"""
        configurator = PostBootstrapConfigurator(server.client())

        first = configurator.run()
        second = configurator.run()

        assert first.ok and second.ok
        assert second.created == []
        assert second.existing == ["project DEMO", "repository DEMO/repo-1"]
        assert list(server.projects) == ["DEMO"]
        assert list(server.repos) == [("DEMO", "repo-1")]

    def test_server_errors_become_warnings(self, server):
        """Failures never raise"""
        server.fail_with = 500

        result = PostBootstrapConfigurator(server.client()).run()

        assert not result.ok
        assert len(result.warnings) == 2
        assert all(isinstance(warning, PostBootstrapWarning) for warning in result.warnings)

    def test_transport_errors_become_warnings(self):
        """An unreachable proxy is a warning too"""

        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = Client("https://bitbucket.local", transport=httpx.MockTransport(refuse))

        result = PostBootstrapConfigurator(client).run()

        assert result.created == []
        assert len(result.warnings) == 2

    def test_custom_repositories(self, server):
        """Additional repositories are created in order"""
        configurator = PostBootstrapConfigurator(
            server.client(),
            project_key="OPS",
            repositories=[RepositorySeed("infra"), RepositorySeed("docs", forkable=False)],
        )

        result = configurator.run()

        assert result.created == ["project OPS", "repository OPS/infra", "repository OPS/docs"]
        assert server.repos[("OPS", "docs")]["forkable"] is False


class TestMissing:
    """Checking which resources still need to be created"""

    def test_fresh_server(self, server):
        assert PostBootstrapConfigurator(server.client()).missing() == ["project DEMO", "repository DEMO/repo-1"]

    def test_after_configuration(self, server):
        configurator = PostBootstrapConfigurator(server.client())
        configurator.run()

        assert configurator.missing() == []

    def test_repository_only(self, server):
        """A project without its repository reports just the repository"""
        server.client().projects.create("DEMO", "Demo Project")

        assert PostBootstrapConfigurator(server.client()).missing() == ["repository DEMO/repo-1"]

    def test_other_errors_propagate(self, server):
        server.fail_with = 500

        with pytest.raises(APIError):
            PostBootstrapConfigurator(server.client()).missing()
