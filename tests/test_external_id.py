import unittest


class ExternalIdTests(unittest.TestCase):
    def test_generate_lowercases_provider(self):
        from app.models import ProviderType
        from app.services.external_id import generate_external_id

        self.assertEqual(
            generate_external_id(ProviderType.GITLAB, "https://gitlab.com/g/p", 42),
            "gitlab:https://gitlab.com/g/p:42",
        )

    def test_parse_recovers_parts_when_url_contains_colons(self):
        from app.models import ProviderType
        from app.services.external_id import generate_external_id, parse_external_id

        url = "https://git.example.com:8443/group/project"
        parsed = parse_external_id(generate_external_id(ProviderType.GITLAB, url, "77"))

        self.assertEqual(parsed.provider, ProviderType.GITLAB)
        self.assertEqual(parsed.repository_url, url)
        self.assertEqual(parsed.issue_id, "77")

    def test_parse_rejects_malformed_ids(self):
        from app.services.external_id import parse_external_id

        for value in ("", "github", "github:only-two", "svn:https://x/y:1", ":https://x/y:1", "github:https://x/y:"):
            with self.subTest(value=value):
                self.assertIsNone(parse_external_id(value))

    def test_manual_external_id_validation(self):
        from app.services.external_id import is_valid_manual_external_id

        self.assertTrue(is_valid_manual_external_id("github:https://github.com/o/r:12"))
        self.assertFalse(is_valid_manual_external_id("github:git@github.com:o/r:12"))
        self.assertFalse(is_valid_manual_external_id("jira:https://x/y:1"))
        self.assertFalse(is_valid_manual_external_id("github:https://github.com/o/r:" + "1" * 500))


if __name__ == "__main__":
    unittest.main()
