import unittest

from sync_fakes import (
    CONNECTION_ID,
    PROJECT_ID,
    REPO_URL,
    FakeAdapter,
    FakeConnectionStore,
    FakeIssueStore,
    build_service,
    gh_alert,
    gh_issue,
    make_connection,
)


def _options(**kwargs):
    from app.services.sync_service import SyncOptions

    return SyncOptions(**kwargs)


class SyncEndToEndTests(unittest.TestCase):
    def test_initial_import_then_resync_updates_every_match(self):
        store = FakeIssueStore()
        adapter = FakeAdapter(issue_pages=[[gh_issue(101, "Crash on save"), gh_issue(102, "Typo")]])
        svc = build_service(adapter, issue_store=store)

        first = svc.sync_repository_issues(CONNECTION_ID, "user-1", _options())
        self.assertEqual((first.created, first.updated, first.skipped, first.failed), (2, 0, 0, 0))

        adapter.issue_pages = [[gh_issue(101, "Crash when saving"), gh_issue(102, "Typo")]]
        second = svc.sync_repository_issues(CONNECTION_ID, "user-1", _options())
        self.assertEqual((second.created, second.updated, second.skipped), (0, 2, 0))

        titles = sorted(i.title for i in store.issues.values())
        self.assertEqual(titles, ["Crash when saving", "Typo"])
        self.assertTrue(adapter.closed)

    def test_completed_run_records_last_sync_time(self):
        connections = FakeConnectionStore(make_connection())
        svc = build_service(FakeAdapter(issue_pages=[[gh_issue(101, "a")]]), connection_store=connections)

        svc.sync_repository_issues(CONNECTION_ID, "u", _options())

        self.assertEqual([c[0] for c in connections.synced], [CONNECTION_ID])

    def test_created_issue_carries_sync_metadata(self):
        store = FakeIssueStore()
        svc = build_service(FakeAdapter(issue_pages=[[gh_issue(7, "Broken link")]]), issue_store=store)

        svc.sync_repository_issues(CONNECTION_ID, "user-9", _options())

        issue = store.created[0]
        self.assertEqual(issue.project_id, PROJECT_ID)
        self.assertEqual(issue.status, "Backlog")
        self.assertEqual(issue.type, "Task")
        self.assertIsNone(issue.priority)
        self.assertEqual(issue.reporter_id, "user-9")
        self.assertEqual(issue.custom_fields["externalId"], f"github:{REPO_URL}:7")
        meta = issue.custom_fields["externalSync"]
        self.assertEqual(meta["providerType"], "GitHub")
        self.assertEqual(meta["repositoryUrl"], REPO_URL)
        self.assertEqual(meta["issueNumber"], 7)
        self.assertFalse(meta["securityAdvisory"])
        self.assertIn("syncedAt", meta)


class ProcessIssueTests(unittest.TestCase):
    def test_process_issue_twice_creates_then_updates(self):
        from app.services.normalizer import normalize
        from app.services.sync_types import SyncOutcome

        store = FakeIssueStore()
        svc = build_service(FakeAdapter(), issue_store=store)
        issue = normalize(gh_issue(5, "Flaky test"))

        self.assertEqual(svc.process_issue(make_connection(), issue, "u"), SyncOutcome.CREATED)
        self.assertEqual(svc.process_issue(make_connection(), issue, "u"), SyncOutcome.UPDATED)
        self.assertEqual(len(store.issues), 1)

    def test_update_keeps_original_synced_at_and_unrelated_fields(self):
        from app.services.normalizer import normalize

        store = FakeIssueStore()
        existing = store.add(
            title="Old title",
            custom_fields={
                "externalId": f"github:{REPO_URL}:5",
                "externalSync": {"repositoryUrl": REPO_URL, "syncedAt": "2024-01-01T00:00:00+00:00"},
                "team": "core",
            },
        )
        svc = build_service(FakeAdapter(), issue_store=store)

        svc.process_issue(make_connection(), normalize(gh_issue(5, "New title")), "u")

        self.assertEqual(existing.title, "New title")
        self.assertEqual(existing.custom_fields["team"], "core")
        meta = existing.custom_fields["externalSync"]
        self.assertEqual(meta["syncedAt"], "2024-01-01T00:00:00+00:00")
        self.assertIn("lastSyncedAt", meta)

    def test_title_match_adopts_issue_without_external_id(self):
        from app.services.normalizer import normalize
        from app.services.sync_types import SyncOutcome

        store = FakeIssueStore()
        legacy = store.add(
            title="  crash ON save ",
            custom_fields={"externalSync": {"repositoryUrl": REPO_URL.upper()}},
        )
        svc = build_service(FakeAdapter(), issue_store=store)

        outcome = svc.process_issue(make_connection(), normalize(gh_issue(101, "Crash on save")), "u")

        self.assertEqual(outcome, SyncOutcome.UPDATED)
        self.assertEqual(legacy.custom_fields["externalId"], f"github:{REPO_URL}:101")

    def test_same_title_issues_stay_separate_across_runs(self):
        store = FakeIssueStore()
        adapter = FakeAdapter(issue_pages=[[gh_issue(102, "Typo"), gh_issue(105, "Typo")]])
        svc = build_service(adapter, issue_store=store)

        first = svc.sync_repository_issues(CONNECTION_ID, "u", _options())
        second = svc.sync_repository_issues(CONNECTION_ID, "u", _options())

        self.assertEqual((first.created, first.updated), (2, 0))
        self.assertEqual((second.created, second.updated), (0, 2))
        self.assertEqual(
            sorted(i.custom_fields["externalId"] for i in store.issues.values()),
            [f"github:{REPO_URL}:102", f"github:{REPO_URL}:105"],
        )

    def test_matched_issue_that_vanished_raises_not_found(self):
        from app.services.errors import IssueNotFoundError
        from app.services.normalizer import normalize

        store = FakeIssueStore()
        store.add(id="ghost", title="x", custom_fields={"externalId": f"github:{REPO_URL}:5"})
        svc = build_service(FakeAdapter(), issue_store=store)
        # Matcher sees the issue but it is gone by the time the update reads it
        store.find_issue_by_id = lambda issue_id: None

        with self.assertRaises(IssueNotFoundError):
            svc.process_issue(make_connection(), normalize(gh_issue(5, "x")), "u")


class PartialFailureTests(unittest.TestCase):
    def test_write_failure_on_one_issue_does_not_stop_the_rest(self):
        store = FakeIssueStore()
        store.fail_titles.add("Issue 3")
        adapter = FakeAdapter(issue_pages=[[gh_issue(n, f"Issue {n}") for n in range(1, 6)]])
        svc = build_service(adapter, issue_store=store)

        results = svc.sync_repository_issues(CONNECTION_ID, "u", _options())

        self.assertEqual(results.created, 4)
        self.assertEqual(results.failed, 1)
        self.assertEqual(results.errors[0].issue_id, "3")
        self.assertIn("database is locked", results.errors[0].error)
        self.assertEqual([i.title for i in store.created][-2:], ["Issue 4", "Issue 5"])

    def test_malformed_payload_counts_as_failed(self):
        from app.services.providers.payloads import GitHubIssuePayload

        adapter = FakeAdapter(issue_pages=[[GitHubIssuePayload(data={"id": 9}), gh_issue(10, "Fine")]])
        results = build_service(adapter).sync_repository_issues(CONNECTION_ID, "u", _options())

        self.assertEqual(results.failed, 1)
        self.assertEqual(results.created, 1)
        self.assertEqual(results.errors[0].issue_id, "9")

    def test_error_summaries_are_bounded_but_counts_exact(self):
        store = FakeIssueStore()
        store.fail_titles.update(f"Issue {n}" for n in range(1, 8))
        adapter = FakeAdapter(issue_pages=[[gh_issue(n, f"Issue {n}") for n in range(1, 8)]])
        svc = build_service(adapter, issue_store=store, max_error_summaries=3)

        results = svc.sync_repository_issues(CONNECTION_ID, "u", _options())

        self.assertEqual(results.failed, 7)
        self.assertEqual(len(results.errors), 3)


class SkipTests(unittest.TestCase):
    def test_pull_requests_and_closed_issues_are_skipped(self):
        adapter = FakeAdapter(
            issue_pages=[[
                gh_issue(1, "Real issue"),
                gh_issue(2, "A PR", pull_request={"url": "x"}),
                gh_issue(3, "Closed one", state="closed"),
            ]]
        )
        store = FakeIssueStore()
        results = build_service(adapter, issue_store=store).sync_repository_issues(CONNECTION_ID, "u", _options())

        self.assertEqual((results.created, results.skipped), (1, 2))
        self.assertEqual([i.title for i in store.created], ["Real issue"])

    def test_include_closed_imports_closed_issues_as_done(self):
        adapter = FakeAdapter(issue_pages=[[gh_issue(3, "Closed one", state="closed")]])
        store = FakeIssueStore()
        svc = build_service(adapter, issue_store=store)

        results = svc.sync_repository_issues(CONNECTION_ID, "u", _options(include_closed=True))

        self.assertEqual(results.created, 1)
        self.assertEqual(store.created[0].status, "Done")
        self.assertEqual(adapter.issue_calls, [(1, True)])


class PagingTests(unittest.TestCase):
    def test_pages_until_has_next_is_false(self):
        adapter = FakeAdapter(issue_pages=[[gh_issue(1, "a")], [gh_issue(2, "b")], [gh_issue(3, "c")]])
        results = build_service(adapter).sync_repository_issues(CONNECTION_ID, "u", _options())

        self.assertEqual([c[0] for c in adapter.issue_calls], [1, 2, 3])
        self.assertEqual(results.created, 3)

    def test_empty_first_page_stops_immediately(self):
        adapter = FakeAdapter(issue_pages=[])
        results = build_service(adapter).sync_repository_issues(CONNECTION_ID, "u", _options())

        self.assertEqual(adapter.issue_calls, [(1, False)])
        self.assertEqual(results.total, 0)

    def test_cancelling_mid_run_stops_fetching_and_keeps_results(self):
        from app.services.cancellation import CancellationToken

        token = CancellationToken()
        store = FakeIssueStore()
        pages = [[gh_issue(2 * p + 1, f"Issue {2 * p + 1}"), gh_issue(2 * p + 2, f"Issue {2 * p + 2}")] for p in range(5)]
        adapter = FakeAdapter(issue_pages=pages)

        def cancel_after_fourth(_issue):
            if len(store.created) == 4:
                token.cancel("Operation cancelled by user")

        connections = FakeConnectionStore(make_connection())
        store.on_create = cancel_after_fourth
        results = build_service(adapter, issue_store=store, connection_store=connections).sync_repository_issues(
            CONNECTION_ID, "u", _options(cancel_token=token)
        )

        self.assertEqual([c[0] for c in adapter.issue_calls], [1, 2])
        self.assertEqual(results.created, 4)
        self.assertEqual(connections.synced, [])

    def test_page_error_after_first_page_is_recorded_and_phase_stops(self):
        from app.models import ProviderType
        from app.services.errors import ProviderApiError

        adapter = FakeAdapter(
            issue_pages=[[gh_issue(101, "a")], [gh_issue(102, "b")], [gh_issue(103, "c")]],
            advisory_pages=[[gh_alert(1, "Bad dependency")]],
        )
        adapter.failures[("issues", 2)] = [ProviderApiError("boom", 502, ProviderType.GITHUB)]

        results = build_service(adapter).sync_repository_issues(CONNECTION_ID, "u", _options())

        self.assertEqual(results.created, 2)  # issue 1 + the advisory
        self.assertEqual(results.failed, 0)
        self.assertEqual(len(results.errors), 1)
        self.assertIn("page 2", results.errors[0].error)
        self.assertEqual(adapter.advisory_calls, [1])

    def test_page_error_before_any_page_is_fatal(self):
        from app.models import ProviderType
        from app.services.errors import ProviderApiError

        adapter = FakeAdapter(issue_pages=[[gh_issue(1, "a")]])
        adapter.failures[("issues", 1)] = [ProviderApiError("boom", 500, ProviderType.GITHUB)]

        with self.assertRaises(ProviderApiError):
            build_service(adapter).sync_repository_issues(CONNECTION_ID, "u", _options())


class RateLimitTests(unittest.TestCase):
    def test_rate_limited_page_is_retried(self):
        from app.models import ProviderType
        from app.services.errors import RateLimitError

        adapter = FakeAdapter(issue_pages=[[gh_issue(1, "a")]])
        adapter.failures[("issues", 1)] = [RateLimitError("slow down", ProviderType.GITHUB, retry_after=0)]

        results = build_service(adapter).sync_repository_issues(CONNECTION_ID, "u", _options())

        self.assertEqual(results.created, 1)
        self.assertEqual(len(adapter.issue_calls), 2)

    def test_exhausted_rate_limit_retries_are_fatal(self):
        from app.models import ProviderType
        from app.services.errors import RateLimitError

        adapter = FakeAdapter(issue_pages=[[gh_issue(1, "a")]])
        adapter.failures[("issues", 1)] = [RateLimitError("slow down", ProviderType.GITHUB) for _ in range(5)]

        with self.assertRaises(RateLimitError):
            build_service(adapter).sync_repository_issues(CONNECTION_ID, "u", _options())
        self.assertEqual(len(adapter.issue_calls), 3)


class FatalErrorTests(unittest.TestCase):
    def test_unknown_connection(self):
        from app.services.errors import RepositoryConnectionNotFoundError

        svc = build_service(FakeAdapter(), connection_store=FakeConnectionStore())
        with self.assertRaises(RepositoryConnectionNotFoundError):
            svc.sync_repository_issues("missing", "u", _options())

    def test_undecryptable_token_is_fatal_and_touches_nothing(self):
        from app.credentials import CredentialDecryptionError

        adapter = FakeAdapter(issue_pages=[[gh_issue(1, "a")]])
        store = FakeIssueStore()
        connections = FakeConnectionStore(make_connection(access_token="garbage"))
        svc = build_service(adapter, issue_store=store, connection_store=connections)

        with self.assertRaises(CredentialDecryptionError):
            svc.sync_repository_issues(CONNECTION_ID, "u", _options())
        self.assertEqual(adapter.issue_calls, [])
        self.assertEqual(store.created, [])

    def test_failed_access_validation_aborts_before_any_issue(self):
        from app.models import ProviderType
        from app.services.errors import AccessValidationError, ProviderAuthError

        adapter = FakeAdapter(
            issue_pages=[[gh_issue(1, "a")]],
            validate_error=ProviderAuthError("Bad credentials", 401, ProviderType.GITHUB),
        )
        with self.assertRaises(AccessValidationError):
            build_service(adapter).sync_repository_issues(CONNECTION_ID, "u", _options())
        self.assertEqual(adapter.issue_calls, [])

    def test_throttled_access_validation_surfaces_the_rate_limit(self):
        from app.models import ProviderType
        from app.services.errors import RateLimitError

        adapter = FakeAdapter(validate_error=RateLimitError("slow down", ProviderType.GITHUB, retry_after=0))
        with self.assertRaises(RateLimitError):
            build_service(adapter).sync_repository_issues(CONNECTION_ID, "u", _options())
        self.assertEqual(adapter.issue_calls, [])


class AdvisoryTests(unittest.TestCase):
    def test_advisories_become_bugs_with_priority_and_separate_counts(self):
        from app.services.sync_types import SyncType

        store = FakeIssueStore()
        adapter = FakeAdapter(
            issue_pages=[[gh_issue(1001, "Regular")]],
            advisory_pages=[[gh_alert(1, "RCE in parser", severity="critical"), gh_alert(2, "ReDoS", severity="low")]],
        )
        results = build_service(adapter, issue_store=store).sync_repository_issues(
            CONNECTION_ID, "u", _options(sync_type=SyncType.FULL)
        )

        self.assertEqual(results.created, 3)
        self.assertEqual(results.security_advisories.created, 2)
        advisories = [i for i in store.created if i.type == "Bug"]
        self.assertEqual([i.title for i in advisories], ["Security: RCE in parser", "Security: ReDoS"])
        self.assertEqual([i.priority for i in advisories], ["Critical", None])
        self.assertTrue(advisories[0].custom_fields["externalSync"]["securityAdvisory"])

    def test_sync_type_selects_phases(self):
        from app.services.sync_types import SyncType

        adapter = FakeAdapter(issue_pages=[[gh_issue(1, "a")]], advisory_pages=[[gh_alert(1, "x")]])
        build_service(adapter).sync_repository_issues(CONNECTION_ID, "u", _options(sync_type=SyncType.SECURITY_ONLY))
        self.assertEqual(adapter.issue_calls, [])
        self.assertEqual(adapter.advisory_calls, [1])

        adapter = FakeAdapter(issue_pages=[[gh_issue(1, "a")]], advisory_pages=[[gh_alert(1, "x")]])
        build_service(adapter).sync_repository_issues(CONNECTION_ID, "u", _options(sync_type=SyncType.ISSUES_ONLY))
        self.assertEqual(adapter.advisory_calls, [])

    def test_adapter_without_advisories_skips_the_phase(self):
        adapter = FakeAdapter(issue_pages=[[gh_issue(1, "a")]], supports_advisories=False)
        results = build_service(adapter).sync_repository_issues(CONNECTION_ID, "u", _options())

        self.assertEqual(adapter.advisory_calls, [])
        self.assertEqual(results.security_advisories.total, 0)


class ProgressTests(unittest.TestCase):
    def test_progress_is_published_per_page_and_every_interval(self):
        from app.services.progress import ProgressPublisher
        from app.services.sync_types import SyncStage, SyncType

        publisher = ProgressPublisher()
        seen = []
        publisher.subscribe(seen.append)
        adapter = FakeAdapter(issue_pages=[[gh_issue(n, f"Issue {n}") for n in range(1, 6)]])

        build_service(adapter, publisher=publisher, progress_interval=2).sync_repository_issues(
            CONNECTION_ID, "u", _options(sync_type=SyncType.ISSUES_ONLY)
        )

        stages = [p.stage for p in seen]
        self.assertEqual(stages[:2], [SyncStage.FETCHING, SyncStage.MATCHING])
        self.assertEqual(stages.count(SyncStage.CREATING), 2)  # after records 2 and 4
        self.assertEqual(seen[-1].processed, 4)


if __name__ == "__main__":
    unittest.main()
