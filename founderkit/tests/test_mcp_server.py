"""MCP tools call straight into the shared services."""
from __future__ import annotations

import json
import tomllib
from importlib.metadata import version
from pathlib import Path

import pytest

from founderkit import mcp_server

PYPROJECT = Path(__file__).resolve().parents[2] / "pyproject.toml"


@pytest.fixture()
def tools(ctx):
    mcp_server.set_context(ctx)
    yield mcp_server
    mcp_server.set_context(None)


class TestTools:
    def test_dashboard(self, tools, venture):
        assert tools.get_dashboard(venture["id"])["current_phase"] == 1

    def test_errors_are_returned_not_raised(self, tools):
        result = tools.get_dashboard("missing")
        assert result["error"]["code"] == "NOT_FOUND"

    def test_evaluate_locked(self, tools, venture):
        assert tools.evaluate_gate(venture["id"], 3)["error"]["code"] == "PHASE_LOCKED"

    def test_update_venture_requires_fields(self, tools, venture):
        assert tools.update_venture(venture["id"])["error"]["code"] == "VALIDATION_ERROR"

    def test_gate_and_evaluate(self, tools, venture):
        vid = venture["id"]
        tools.update_venture(vid, problem_statement="Freelancers lose hours on receipts.")
        tools.create_artifact(vid, 1, "CUSTOMER_LIST", ["A", "B", "C"])
        tools.update_gate_criterion(vid, 1, "customer_conversations", True)
        result = tools.evaluate_gate(vid, 1)
        assert result["passed"] is True
        assert result["status"] == "COMPLETE"

    @pytest.mark.asyncio
    async def test_chat(self, tools, venture):
        result = await tools.chat(venture["id"], 1, "Where do I start?")
        assert result["remaining_today"] == 29
        assert tools.get_rate_limit(venture["id"])["messages_used"] == 1

    def test_overview_resource(self, tools):
        overview = json.loads(tools.founderkit_overview())
        assert set(overview["phases"]) == {"1", "2", "3", "4", "5"}
        assert overview["quota"]["artifact_cost"] == 3


class TestOnboardingTools:
    def test_create_user_and_venture(self, tools):
        user = tools.create_user("mcp@founder.io", experience_level=1, business_type="hybrid")
        assert user["business_type"] == "HYBRID"
        venture = tools.create_venture(user["id"], "Tool-built")
        assert tools.get_venture(venture["id"])["name"] == "Tool-built"
        assert [v["id"] for v in tools.list_ventures(user["id"])] == [venture["id"]]

    def test_create_user_rejects_bad_email(self, tools):
        assert tools.create_user("not-an-email")["error"]["code"] == "VALIDATION_ERROR"

    def test_update_profile(self, tools, user):
        assert tools.update_profile(user["id"], weekly_hours=15)["weekly_hours"] == 15
        assert tools.update_profile(user["id"])["error"]["code"] == "VALIDATION_ERROR"

    def test_get_missing_venture(self, tools):
        assert tools.get_venture("missing")["error"]["code"] == "NOT_FOUND"

    def test_formation_fields(self, tools, venture):
        updated = tools.update_venture(venture["id"], ein_obtained=True, bank_account_opened=False)
        assert updated["ein_obtained"] is True
        assert updated["bank_account_opened"] is False

    def test_bad_estimated_costs(self, tools, venture):
        result = tools.update_venture(venture["id"], estimated_costs=[250, 20])
        assert result["error"]["code"] == "VALIDATION_ERROR"

    def test_artifact_versions(self, tools, venture):
        artifact = tools.create_artifact(venture["id"], 2, "OFFER_STATEMENT", {"headline": "v1"})
        tools.update_artifact(venture["id"], artifact["id"], {"headline": "v2"})
        versions = tools.list_artifact_versions(venture["id"], artifact["id"])
        assert [(v["version"], v["content"]["headline"]) for v in versions] == [(1, "v1")]
        assert tools.list_artifact_versions(venture["id"], "missing")["error"]["code"] == "NOT_FOUND"


class TestToolOnlyWalkthrough:
    def test_reaches_complete_business_plan(self, tools):
        user = tools.create_user("walk@founder.io")
        vid = tools.create_venture(user["id"], "Walkthrough")["id"]

        tools.update_venture(vid, problem_statement="Freelancers lose hours every week on receipts.")
        tools.create_artifact(vid, 1, "CUSTOMER_LIST", {"competitors": ["Wave", "Xero", "FreshBooks"]})
        tools.update_gate_criterion(vid, 1, "customer_conversations", True)
        assert tools.evaluate_gate(vid, 1)["status"] == "COMPLETE"

        tools.update_venture(
            vid,
            solution_statement="Automatic categorization.",
            target_customer="Solo freelancers",
            offer_description="Monthly subscription",
            revenue_model="SaaS",
            distribution_channel="Communities",
            advantage="Human review included",
        )
        result = tools.evaluate_gate(vid, 2)
        assert "business_plan_complete" in [m["key"] for m in result["missing"]]

        costs = tools.update_venture(vid, estimated_costs={"startup": 500, "monthly": 50})
        assert costs["estimated_costs"] == {"startup": 500, "monthly": 50}
        result = tools.evaluate_gate(vid, 2)
        assert "business_plan_complete" not in [m["key"] for m in result["missing"]]


class TestMcpDependency:
    def test_requirement_excludes_next_major(self):
        deps = tomllib.loads(PYPROJECT.read_text())["project"]["dependencies"]
        mcp_req = next(d for d in deps if d.split(">")[0].split("<")[0].strip() == "mcp")
        assert "<2" in mcp_req

    def test_installed_release_has_fastmcp(self):
        assert int(version("mcp").split(".")[0]) == 1
        assert mcp_server.mcp.name == "founderkit"
