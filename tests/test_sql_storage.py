import unittest
from datetime import datetime

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool


class _DbTestCase(unittest.TestCase):
    def setUp(self):
        from app.models import Base

        self.engine = create_engine(
            "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
        )
        Base.metadata.create_all(bind=self.engine)
        self.db = sessionmaker(bind=self.engine, autoflush=False)()

    def tearDown(self):
        self.db.close()
        self.engine.dispose()


class SqlIssueStoreTests(_DbTestCase):
    def test_create_find_and_update(self):
        from app.services.storage import SqlIssueStore

        store = SqlIssueStore(self.db)
        issue = store.create_issue(
            {
                "project_id": "p1",
                "title": "Crash",
                "status": "Backlog",
                "type": "Task",
                "custom_fields": {"externalId": "github:https://github.com/o/r:1"},
                "ignored": "not a column",
            }
        )

        self.assertIsNotNone(issue.id)
        self.assertEqual([i.id for i in store.find_issues_by_project("p1")], [issue.id])
        self.assertEqual(store.find_issues_by_project("p2"), [])

        fields = dict(issue.custom_fields)
        fields["externalSync"] = {"lastSyncedAt": "now"}
        store.update_issue(issue.id, {"title": "Crash on start", "custom_fields": fields})

        self.db.expire_all()
        reloaded = store.find_issue_by_id(issue.id)
        self.assertEqual(reloaded.title, "Crash on start")
        self.assertEqual(reloaded.custom_fields["externalSync"], {"lastSyncedAt": "now"})
        self.assertEqual(reloaded.custom_fields["externalId"], "github:https://github.com/o/r:1")

    def test_update_missing_issue(self):
        from app.services.errors import IssueNotFoundError
        from app.services.storage import SqlIssueStore

        with self.assertRaises(IssueNotFoundError):
            SqlIssueStore(self.db).update_issue("missing", {"title": "x"})


class ConnectionStoreTests(_DbTestCase):
    def setUp(self):
        super().setUp()
        from app.models import RepositoryConnection

        self.connection = RepositoryConnection(
            project_id="p1",
            service_type="GitHub",
            repository_url="https://github.com/Octo/Widgets",
            access_token="encrypted",
        )
        self.db.add(self.connection)
        self.db.commit()

    def test_find_by_repository_ignores_case_and_whitespace(self):
        from app.models import ProviderType
        from app.services.storage import ConnectionStore

        store = ConnectionStore(self.db)

        found = store.find_by_repository("p1", " https://github.com/octo/widgets ", ProviderType.GITHUB)
        self.assertEqual(found.id, self.connection.id)
        self.assertIsNone(store.find_by_repository("p1", "https://github.com/octo/widgets", ProviderType.GITLAB))
        self.assertIsNone(store.find_by_repository("p2", "https://github.com/octo/widgets", ProviderType.GITHUB))

    def test_mark_synced(self):
        from app.services.storage import ConnectionStore

        store = ConnectionStore(self.db)
        when = datetime(2025, 3, 1, 12, 0, 0)
        store.mark_synced(self.connection.id, when)
        store.mark_synced("missing", when)

        self.db.expire_all()
        self.assertEqual(store.get(self.connection.id).last_sync_at, when)


if __name__ == "__main__":
    unittest.main()
