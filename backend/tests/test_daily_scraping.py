import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from reelwatch.errors import ActorTimeoutError, ConfigurationError
from reelwatch.models import RunStatus
from reelwatch.services.daily_scraping import DailyScraper, run_daily

from helpers import FakeActor, make_settings, reel_item


def _seed(store, competitors=("alice", "bob", "carol"), hashtags=()):
    user = store.add_user(username="owner")
    project = store.add_project(user.id, "Main")
    for name in competitors:
        store.add_competitor(project.id, name)
    for tag in hashtags:
        store.add_hashtag(project.id, tag)
    return project


def _runs_of(store, source_type):
    return [r for r in store.runs.values() if r.source_type == source_type]


def _scrape(settings, store, actor):
    return asyncio.run(DailyScraper(settings, store, actor).run())


class TestHappyPath:
    def test_reels_are_stored_and_tree_is_recorded(self, settings, store):
        project = _seed(store, competitors=("alice",), hashtags=("#food",))
        actor = FakeActor({
            "alice": [reel_item("https://i/reel/1"), reel_item("https://i/reel/2")],
            "food": [reel_item("https://i/reel/2"), reel_item("https://i/reel/3")],
        })

        summary = _scrape(settings, store, actor)

        assert summary.status == RunStatus.completed
        assert summary.counts.found == 4
        assert summary.counts.added == 3
        assert summary.counts.errors == 0
        assert sorted(store.reels) == ["https://i/reel/1", "https://i/reel/2", "https://i/reel/3"]
        assert [identifier for identifier, _ in actor.calls] == ["alice", "food"]
        assert all(limit == settings.actor_results_limit for _, limit in actor.calls)

        (overall,) = _runs_of(store, "overall_run")
        (project_run,) = _runs_of(store, "project_processing")
        sources = _runs_of(store, "competitor") + _runs_of(store, "hashtag")
        assert overall.run_id == summary.run_id
        assert project_run.parent_run_id == overall.run_id
        assert project_run.project_id == project.id
        assert {s.parent_run_id for s in sources} == {project_run.run_id}
        assert all(r.ended_at is not None for r in store.runs.values())
        assert overall.reels_added_count == 3

    def test_rerun_adds_nothing(self, settings, store):
        _seed(store, competitors=("alice",))
        actor = FakeActor({"alice": [reel_item("https://i/reel/1")]})

        _scrape(settings, store, actor)
        second = _scrape(settings, store, actor)

        assert second.status == RunStatus.completed
        assert second.counts.found == 1
        assert second.counts.added == 0
        assert len(store.reels) == 1

    def test_filters_come_from_settings(self, store):
        _seed(store, competitors=("alice",))
        actor = FakeActor({"alice": [
            reel_item("https://i/reel/popular", views=500),
            reel_item("https://i/reel/quiet", views=5),
            reel_item("https://i/reel/stale", views=500, age_days=40),
        ]})

        summary = _scrape(make_settings(MIN_VIEWS=50, MAX_AGE_DAYS=7), store, actor)

        assert summary.counts.found == 1
        assert list(store.reels) == ["https://i/reel/popular"]

    def test_no_users_completes_empty(self, settings, store):
        summary = _scrape(settings, store, FakeActor())

        assert summary.status == RunStatus.completed
        assert summary.counts.found == summary.counts.added == summary.counts.errors == 0
        assert len(store.runs) == 1

    def test_inactive_entities_are_skipped(self, settings, store):
        user = store.add_user()
        active = store.add_project(user.id, "Active")
        store.add_project(user.id, "Paused", is_active=False)
        store.add_competitor(active.id, "alice")
        store.add_competitor(active.id, "gone", is_active=False)
        idle = store.add_user(is_active=False)
        store.add_competitor(store.add_project(idle.id, "Idle").id, "ghost")
        actor = FakeActor()

        summary = _scrape(settings, store, actor)

        assert actor.calls == [("alice", settings.actor_results_limit)]
        assert summary.projects == 1


class TestFailureIsolation:
    def test_one_failing_source_does_not_stop_the_others(self, settings, store, actor_error):
        _seed(store)
        actor = FakeActor({
            "alice": [reel_item("https://i/reel/a")],
            "bob": actor_error,
            "carol": [reel_item("https://i/reel/c")],
        })

        summary = _scrape(settings, store, actor)

        assert [identifier for identifier, _ in actor.calls] == ["alice", "bob", "carol"]
        assert sorted(store.reels) == ["https://i/reel/a", "https://i/reel/c"]
        statuses = sorted(r.status for r in _runs_of(store, "competitor"))
        assert statuses == ["completed", "completed", "failed"]
        (failed,) = [r for r in _runs_of(store, "competitor") if r.status == "failed"]
        assert failed.errors_count == 1
        assert "actor-is-not-rented" in failed.error_details["message"]
        assert failed.error_details["status"] == "FAILED"
        assert failed.error_details["runId"] == "run-42"
        assert failed.error_details["actor"] == "apify~instagram-reel-scraper"
        assert failed.error_details["body"] == "You must rent a paid Actor"

        (project_run,) = _runs_of(store, "project_processing")
        assert project_run.status == "completed_with_errors"
        assert project_run.errors_count == 1
        assert summary.status == RunStatus.completed_with_errors
        assert summary.failed_sources == 1
        assert summary.counts.added == 2

    def test_parent_counts_are_sums_of_children(self, settings, store):
        user = store.add_user()
        for name in ("P1", "P2"):
            project = store.add_project(user.id, name)
            store.add_competitor(project.id, f"{name}-a")
            store.add_hashtag(project.id, f"{name}-tag")
        actor = FakeActor({
            "P1-a": [reel_item("https://i/1"), reel_item("https://i/2")],
            "P1-tag": [reel_item("https://i/3")],
            "P2-a": ActorTimeoutError("too slow"),
            "P2-tag": [reel_item("https://i/4"), reel_item("https://i/1")],
        })

        summary = _scrape(settings, store, actor)

        for project_run in _runs_of(store, "project_processing"):
            children = asyncio.run(store.list_child_runs(project_run.run_id))
            assert len(children) == 2
            assert project_run.reels_found_count == sum(c.reels_found_count for c in children)
            assert project_run.reels_added_count == sum(c.reels_added_count for c in children)
            assert project_run.errors_count == sum(c.errors_count for c in children)
        (overall,) = _runs_of(store, "overall_run")
        projects = _runs_of(store, "project_processing")
        assert overall.reels_added_count == sum(p.reels_added_count for p in projects) == 4
        assert overall.errors_count == 1
        assert summary.counts.found == 5

    def test_malformed_item_does_not_fail_the_source(self, settings, store):
        _seed(store, competitors=("alice",))
        actor = FakeActor({"alice": [
            reel_item("https://i/good"),
            reel_item("https://i/odd", musicInfo={"audio_id": 123456789}),
            reel_item("https://i/far", timestamp=10**20),
            reel_item("https://i/broken", type=["Video"]),
        ]})

        summary = _scrape(settings, store, actor)

        (source,) = _runs_of(store, "competitor")
        assert source.status == "completed"
        assert summary.status == RunStatus.completed
        assert sorted(store.reels) == ["https://i/good", "https://i/odd"]

    def test_unexpected_source_error_is_contained(self, settings, store):
        _seed(store, competitors=("alice", "bob"))
        actor = FakeActor({"alice": ValueError("boom"), "bob": [reel_item("https://i/b")]})

        summary = _scrape(settings, store, actor)

        assert summary.status == RunStatus.completed_with_errors
        assert list(store.reels) == ["https://i/b"]

    def test_failed_source_listing_fails_only_that_project(self, settings, store):
        user = store.add_user()
        broken = store.add_project(user.id, "Broken")
        healthy = store.add_project(user.id, "Healthy")
        store.add_competitor(healthy.id, "alice")
        original = store.list_active_competitors

        async def list_competitors(project_id):
            if project_id == broken.id:
                raise ConnectionError("lost connection")
            return await original(project_id)

        store.list_active_competitors = list_competitors

        summary = _scrape(settings, store, FakeActor({"alice": [reel_item("https://i/a")]}))

        by_project = {r.project_id: r for r in _runs_of(store, "project_processing")}
        assert by_project[broken.id].status == "failed"
        assert by_project[broken.id].errors_count == 1
        assert by_project[healthy.id].status == "completed"
        assert summary.status == RunStatus.completed_with_errors
        assert summary.counts.errors == 1
        assert list(store.reels) == ["https://i/a"]

    def test_failed_user_listing_fails_overall_run(self, settings, store):
        async def broken_users():
            raise ConnectionError("db unreachable")

        store.list_active_users = broken_users

        summary = _scrape(settings, store, FakeActor())

        (overall,) = store.runs.values()
        assert summary.status == RunStatus.failed
        assert overall.status == "failed"
        assert overall.ended_at is not None
        assert overall.errors_count == 1
        assert overall.error_details["message"] == "db unreachable"

    def test_item_level_persist_errors_mark_source_with_errors(self, settings, store):
        _seed(store, competitors=("alice",))
        original = store.insert_one

        async def flaky_insert(values):
            if values["reel_url"].endswith("bad"):
                raise RuntimeError("constraint")
            return await original(values)

        store.insert_one = flaky_insert
        actor = FakeActor({"alice": [reel_item("https://i/ok"), reel_item("https://i/bad")]})

        summary = _scrape(settings, store, actor)

        (source,) = _runs_of(store, "competitor")
        assert source.status == "completed_with_errors"
        assert (source.reels_found_count, source.reels_added_count, source.errors_count) == (2, 1, 1)
        assert summary.status == RunStatus.completed_with_errors


class TestModes:
    def test_concurrent_sources_give_the_same_totals(self, store):
        _seed(store, competitors=("a", "b", "c", "d"), hashtags=("t1", "t2"))
        responses = {name: [reel_item(f"https://i/{name}/{n}") for n in range(3)] for name in ("a", "b", "c", "d", "t1", "t2")}
        responses["c"] = ActorTimeoutError("slow")

        summary = _scrape(make_settings(SOURCE_CONCURRENCY=3), store, FakeActor(responses))

        assert summary.counts.found == 15
        assert summary.counts.added == 15
        assert summary.counts.errors == 1
        (project_run,) = _runs_of(store, "project_processing")
        assert project_run.reels_added_count == 15
        assert len(store.reels) == 15

    @pytest.mark.parametrize("strategy", ["check_then_insert", "bulk"])
    def test_both_persist_strategies(self, store, strategy):
        _seed(store, competitors=("alice",))
        actor = FakeActor({"alice": [reel_item("https://i/1"), reel_item("https://i/1"), reel_item("https://i/2")]})

        summary = _scrape(make_settings(PERSIST_STRATEGY=strategy), store, actor)

        assert summary.counts.added == 2

    def test_dry_run_reads_but_writes_nothing(self, store):
        _seed(store, competitors=("alice",), hashtags=("#food",))
        actor = FakeActor({"alice": [reel_item("https://i/1")]})

        summary = _scrape(make_settings(DRY_RUN=True), store, actor)

        assert summary.dry_run
        assert summary.status == RunStatus.completed
        assert actor.calls == []
        assert store.reels == {}
        assert store.runs == {}
        assert summary.sources == 2

    def test_dry_run_needs_no_actor(self, store):
        _seed(store)
        summary = asyncio.run(DailyScraper(make_settings(DRY_RUN=True, APIFY_TOKEN=None), store).run())
        assert summary.status == RunStatus.completed

    def test_actor_required_outside_dry_run(self, settings, store):
        with pytest.raises(ConfigurationError):
            DailyScraper(settings, store)


class TestRunDaily:
    def test_alerts_when_run_has_errors(self, settings, store, actor_error):
        _seed(store, competitors=("alice",))
        with patch("reelwatch.services.daily_scraping.notify_run_result", new_callable=AsyncMock) as notify:
            summary = asyncio.run(run_daily(settings, store, FakeActor({"alice": actor_error})))

        notify.assert_awaited_once()
        sent = notify.await_args.args[1]
        assert sent["status"] == "completed_with_errors"
        assert sent["run_id"] == summary.run_id

    def test_no_alert_for_clean_run(self, settings, store):
        _seed(store, competitors=("alice",))
        with patch("reelwatch.services.daily_scraping.notify_run_result", new_callable=AsyncMock) as notify:
            asyncio.run(run_daily(settings, store, FakeActor()))

        notify.assert_not_awaited()


class TestConfiguration:
    def test_missing_token_is_a_configuration_error(self):
        with pytest.raises(ConfigurationError):
            make_settings(APIFY_TOKEN=None).validate_for_run()

    def test_dry_run_does_not_need_token(self):
        make_settings(APIFY_TOKEN=None, DRY_RUN=True).validate_for_run()

    def test_unknown_persist_strategy(self):
        with pytest.raises(ConfigurationError):
            make_settings(PERSIST_STRATEGY="upsert").validate_for_run()

    def test_source_concurrency_must_be_positive(self):
        with pytest.raises(ConfigurationError):
            make_settings(SOURCE_CONCURRENCY=0).validate_for_run()

    def test_zero_thresholds_disable_filters(self):
        settings = make_settings(MIN_VIEWS=0, MAX_AGE_DAYS=0)
        assert settings.view_floor is None
        assert settings.age_ceiling_days is None
