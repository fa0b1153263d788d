import unittest


class GitHubNormalizerTests(unittest.TestCase):
    def test_issue(self):
        from app.services.normalizer import normalize
        from app.services.providers.payloads import GitHubIssuePayload
        from app.services.sync_types import Assignee, IssueState, Label

        issue = normalize(
            GitHubIssuePayload(
                data={
                    "id": 1001,
                    "number": 12,
                    "title": "Crash",
                    "body": None,
                    "state": "closed",
                    "labels": [{"name": "bug", "color": "ff0000"}],
                    "assignees": [{"login": "octocat", "name": "", "email": None}],
                    "created_at": "2024-01-01T00:00:00Z",
                    "html_url": "https://github.com/o/r/issues/12",
                }
            )
        )

        self.assertEqual(issue.id, "1001")
        self.assertEqual(issue.number, 12)
        self.assertEqual(issue.state, IssueState.CLOSED)
        self.assertIsNone(issue.body)
        self.assertEqual(issue.labels, (Label("bug", "ff0000"),))
        self.assertEqual(issue.assignees, (Assignee("octocat"),))
        self.assertFalse(issue.security_advisory)
        self.assertIsNone(issue.priority_hint)

    def test_dependabot_alert(self):
        from app.models import IssuePriority
        from app.services.normalizer import normalize
        from app.services.providers.payloads import GitHubAlertPayload
        from app.services.sync_types import IssueState

        issue = normalize(
            GitHubAlertPayload(
                data={
                    "number": 3,
                    "state": "open",
                    "html_url": "https://github.com/o/r/security/dependabot/3",
                    "security_advisory": {"summary": "Prototype pollution", "severity": "critical"},
                }
            )
        )

        self.assertEqual(issue.title, "Security: Prototype pollution")
        self.assertEqual(issue.state, IssueState.OPEN)
        self.assertTrue(issue.security_advisory)
        self.assertEqual(issue.priority_hint, IssuePriority.CRITICAL)
        self.assertEqual([label.name for label in issue.labels], ["security", "critical"])

    def test_pull_requests_are_flagged_for_skipping(self):
        from app.services.normalizer import skip_reason
        from app.services.providers.payloads import GitHubIssuePayload, GitLabIssuePayload

        self.assertEqual(skip_reason(GitHubIssuePayload(data={"id": 1, "pull_request": {}})), "pull request")
        self.assertIsNone(skip_reason(GitHubIssuePayload(data={"id": 1})))
        self.assertIsNone(skip_reason(GitLabIssuePayload(data={"id": 1})))


class GitLabNormalizerTests(unittest.TestCase):
    def test_issue_state_vocabulary(self):
        from app.services.normalizer import normalize
        from app.services.providers.payloads import GitLabIssuePayload
        from app.services.sync_types import IssueState

        base = {"id": 555, "iid": 8, "title": "t", "labels": ["backend"], "assignees": [{"username": "dev"}]}
        opened = normalize(GitLabIssuePayload(data=dict(base, state="opened")))
        closed = normalize(GitLabIssuePayload(data=dict(base, state="closed")))

        self.assertEqual(opened.state, IssueState.OPEN)
        self.assertEqual(closed.state, IssueState.CLOSED)
        self.assertEqual(opened.number, 8)
        self.assertEqual(opened.labels[0].name, "backend")
        self.assertEqual(opened.assignees[0].login, "dev")

    def test_vulnerability_finding(self):
        from app.models import IssuePriority
        from app.services.normalizer import normalize
        from app.services.providers.payloads import GitLabFindingPayload
        from app.services.sync_types import IssueState

        issue = normalize(
            GitLabFindingPayload(
                data={"id": 91, "name": "SQL injection", "severity": "high", "state": "detected"},
                repository_url="https://gitlab.example.com/g/p",
            )
        )

        self.assertEqual(issue.title, "Security: SQL injection")
        self.assertEqual(issue.state, IssueState.OPEN)
        self.assertEqual(issue.priority_hint, IssuePriority.HIGH)
        self.assertEqual(issue.html_url, "https://gitlab.example.com/g/p/-/security/vulnerabilities/91")

    def test_medium_severity_has_no_priority_hint(self):
        from app.services.normalizer import normalize
        from app.services.providers.payloads import GitLabFindingPayload

        issue = normalize(
            GitLabFindingPayload(data={"id": 1, "name": "x", "severity": "medium"}, repository_url="https://g/p")
        )
        self.assertIsNone(issue.priority_hint)


class BitbucketNormalizerTests(unittest.TestCase):
    def test_issue(self):
        from app.services.normalizer import normalize
        from app.services.providers.payloads import BitbucketIssuePayload
        from app.services.sync_types import IssueState

        data = {
            "id": 4,
            "title": "Slow page",
            "state": "new",
            "content": {"raw": ""},
            "assignee": {"account_id": "557058:abc", "display_name": "Dana"},
            "links": {"html": {"href": "https://bitbucket.org/ws/repo/issues/4"}},
        }
        issue = normalize(BitbucketIssuePayload(data=data))

        self.assertEqual(issue.state, IssueState.OPEN)
        self.assertIsNone(issue.body)
        self.assertEqual(issue.assignees[0].login, "557058:abc")
        self.assertEqual(issue.assignees[0].name, "Dana")
        self.assertEqual(issue.html_url, "https://bitbucket.org/ws/repo/issues/4")

        for state in ("resolved", "closed", "wontfix"):
            with self.subTest(state=state):
                self.assertEqual(normalize(BitbucketIssuePayload(data=dict(data, state=state))).state, IssueState.CLOSED)


class MalformedPayloadTests(unittest.TestCase):
    def test_missing_fields_raise(self):
        from app.services.errors import MalformedPayloadError
        from app.services.normalizer import normalize
        from app.services.providers.payloads import GitHubAlertPayload, GitLabIssuePayload

        with self.assertRaises(MalformedPayloadError):
            normalize(GitLabIssuePayload(data={"id": 1, "title": "x"}))
        with self.assertRaises(MalformedPayloadError):
            normalize(GitHubAlertPayload(data={"number": 1, "state": "open", "security_advisory": {}}))

    def test_unknown_payload_type(self):
        from app.services.normalizer import normalize

        with self.assertRaises(TypeError):
            normalize({"id": 1})


if __name__ == "__main__":
    unittest.main()
