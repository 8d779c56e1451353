"""Tests for issue key parsing and container naming."""

import re

from plan_orchestrator.core.naming import (
    extract_issue_key,
    get_warm_container_name,
    is_issue_key,
    one_shot_container_name,
    parse_task_keys,
    safe_docker_name_part,
    sanitize_container_name,
    worker_names,
)


class TestExtractIssueKey:
    def test_bare_key_is_uppercased(self):
        assert extract_issue_key("crm-55") == "CRM-55"

    def test_key_embedded_in_text(self):
        assert extract_issue_key("please plan CRM-55 today") == "CRM-55"

    def test_tracker_url(self):
        assert extract_issue_key("https://tracker.example.com/CRM-123") == "CRM-123"

    def test_url_with_query_and_nested_path(self):
        assert extract_issue_key("https://tracker.example.com/browse/abc-7?focus=1") == "ABC-7"

    def test_no_match_returns_none(self):
        assert extract_issue_key("not a key") is None
        assert extract_issue_key("") is None

    def test_idempotent(self):
        """Extracting from an extracted key returns the same key."""
        for raw in ["crm-1", "https://t.example/Foo-42", "x ABC-9 y"]:
            key = extract_issue_key(raw)
            assert extract_issue_key(key) == key


class TestIsIssueKey:
    def test_canonical_key(self):
        assert is_issue_key("CRM-55")

    def test_rejects_lowercase_and_shell_metacharacters(self):
        assert not is_issue_key("crm-55")
        assert not is_issue_key("CRM-55; rm -rf /")
        assert not is_issue_key("$(id)-1")
        assert not is_issue_key("")


class TestParseTaskKeys:
    def test_comma_separated(self):
        assert parse_task_keys("CRM-1, crm-2 ,ABC-3") == ["CRM-1", "CRM-2", "ABC-3"]

    def test_deduplicates_keeping_order(self):
        assert parse_task_keys("CRM-2,CRM-1,crm-2") == ["CRM-2", "CRM-1"]

    def test_drops_invalid_entries(self):
        assert parse_task_keys("CRM-1,nonsense,,") == ["CRM-1"]

    def test_nothing_valid(self):
        assert parse_task_keys("foo,bar") == []


class TestContainerNames:
    def test_sanitize_container_name(self):
        assert sanitize_container_name("CRM-55") == "plan-crm_55"

    def test_safe_name_part_collapses_and_trims(self):
        assert safe_docker_name_part("Feature/X Y!") == "feature-x-y"

    def test_safe_name_part_fallback(self):
        assert safe_docker_name_part("///") == "x"
        assert safe_docker_name_part(None) == "x"

    def test_safe_name_part_truncates_without_trailing_hyphen(self):
        part = safe_docker_name_part("a" * 47 + "-bbbb")
        assert len(part) <= 48
        assert not part.endswith("-")

    def test_safe_name_part_charset(self):
        part = safe_docker_name_part("Users/Me/Some_Branch.Name")
        assert all(c.isdigit() or ("a" <= c <= "z") or c == "-" for c in part)


class TestWarmContainerName:
    def test_single_mode(self):
        assert get_warm_container_name("warm", "single", branch="feature/x") == "warm"

    def test_branch_mode_default(self):
        assert get_warm_container_name("warm", branch="users/me/Feature") == "warm-users-me-feature"

    def test_branch_mode_without_branch_uses_trunk(self):
        assert get_warm_container_name("warm", "branch") == "warm-trunk"

    def test_issue_mode(self):
        assert get_warm_container_name("warm", "issue", branch="b", issue_key="CRM-5") == "warm-crm-5"

    def test_issue_mode_without_key_falls_back_to_branch(self):
        assert get_warm_container_name("warm", "issue", branch="dev") == "warm-dev"

    def test_unknown_mode_is_branch(self):
        assert get_warm_container_name("warm", "bogus", branch="dev") == "warm-dev"


def test_worker_names():
    assert worker_names(3, "devduck-worker") == [
        "devduck-worker-1",
        "devduck-worker-2",
        "devduck-worker-3",
    ]


def test_one_shot_container_name():
    assert re.fullmatch(r"devduck-cmd-\d+", one_shot_container_name("cmd"))
    assert re.fullmatch(r"devduck-install-\d+", one_shot_container_name("install"))
