"""Unit tests for task tagging."""

import asyncio

from conftest import TEAM_ID, FakeLLM
from teamflow.models import Task, TECHNICAL_TAGS
from teamflow.tagging import tag_by_keywords, filter_tags, generate_task_tags, tag_task, retag_team


class TestKeywordFallback:

    def test_no_keywords_defaults_to_backend(self):
        assert tag_by_keywords("Write the changelog", "") == ["Backend"]

    def test_whole_words_only(self):
        # "build" is a DevOps keyword, "builder" is not
        assert tag_by_keywords("Page builder", None) == ["Frontend"]

    def test_at_most_three_in_category_order(self):
        tags = tag_by_keywords("Login page", "Store the session token in the database and add a unit test")
        assert tags == ["Frontend", "Database", "Authentication"]

    def test_every_tag_is_in_taxonomy(self):
        for title in ("Deploy docker image", "GraphQL webhook", "Encrypt passwords", "Wireframe the theme"):
            assert set(tag_by_keywords(title)) <= set(TECHNICAL_TAGS)


class TestFilterTags:

    def test_keeps_taxonomy_labels_in_order(self):
        assert filter_tags(["Database", "Blockchain", "API", "Database"]) == ["Database", "API"]

    def test_truncates_to_three(self):
        assert filter_tags(["Frontend", "Backend", "Database", "Testing"]) == ["Frontend", "Backend", "Database"]

    def test_empty_after_filtering_is_default(self):
        assert filter_tags(["Quantum"]) == ["Backend"]
        assert filter_tags([]) == ["Backend"]

    def test_non_list_is_none(self):
        assert filter_tags({"tags": ["Frontend"]}) is None
        assert filter_tags(None) is None


class TestGenerateTaskTags:

    def test_model_tags_are_filtered(self):
        llm = FakeLLM(tag_text='```json\n["Frontend", "Web3", "UI/UX"]\n```')
        assert asyncio.run(generate_task_tags(llm, "Landing page", "")) == ["Frontend", "UI/UX"]
        assert "AVAILABLE TAGS" in llm.prompts[0]

    def test_unparseable_response_uses_keywords(self):
        llm = FakeLLM(tag_text="I think this is a frontend task.")
        assert asyncio.run(generate_task_tags(llm, "Create sign in form", "")) == ["Frontend", "Authentication"]

    def test_model_failure_uses_keywords(self):
        llm = FakeLLM(tag_error=True)
        assert asyncio.run(generate_task_tags(llm, "Add database migration", "")) == ["Database"]


class TestRetag:

    def _add(self, store, title, position=0):
        return store.insert_task(Task(team_id=TEAM_ID, title=title, position=position))

    def test_tag_task_updates_row(self, store):
        task = self._add(store, "Checkout page")
        row = asyncio.run(tag_task(store, FakeLLM(tag_text='["Frontend"]'), task["id"], "Checkout page"))
        assert row["tags"] == ["Frontend"]
        assert store.get_task(task["id"])["tags"] == ["Frontend"]

    def test_retag_team_tallies_failures(self, store):
        tasks = [self._add(store, f"Task {i}", i) for i in range(3)]
        store.fail_ids.add(tasks[1]["id"])
        result = asyncio.run(retag_team(store, FakeLLM(tag_text='["API"]'), TEAM_ID))

        assert (result.processed, result.successful, result.errors) == (3, 2, 1)
        assert [t["id"] for t in result.updated_tasks] == [tasks[0]["id"], tasks[2]["id"]]
        body = result.to_dict()
        assert body["success"] is True
        assert body["updated_tasks"][0]["tags"] == ["API"]

    def test_retag_empty_team(self, store):
        result = asyncio.run(retag_team(store, FakeLLM(), TEAM_ID))
        assert result.to_dict() == {
            "success": True, "processed": 0, "successful": 0, "errors": 0, "updated_tasks": [],
        }
